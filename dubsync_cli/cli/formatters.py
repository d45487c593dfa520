"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dubsync_cli.core.pipeline import PipelineResult
from dubsync_cli.models.config import SyncConfig
from dubsync_cli.models.stats import VariantStatus
from dubsync_cli.utils.formatting import format_duration, format_offset, format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "CatalogError": [
            "• Check the manifest path and the episode id.",
            "• Make sure every encrypted variant references a key.",
        ],
        "ConfigurationError": [
            "• Fix the reported value in the configuration file.",
            "• Run `dubsync init --force` to write a fresh default config.",
        ],
        "SessionLockedError": [
            "• Another dubsync process is writing the same output file.",
            "• Wait for it to finish or choose a different output path.",
        ],
        "AllVariantsFailedError": [
            "• No track could be downloaded. Check your network connection.",
            "• Segment URLs or keys in the manifest may have expired.",
            "• Run with -v to see why each segment failed.",
        ],
        "MuxToolError": [
            "• Make sure MKVToolNix is installed and `mkvmerge` is on your PATH.",
            "• Set `mkvmerge_path` in the config to use a specific binary.",
        ],
        "DecoderError": [
            "• Make sure ffmpeg is installed and on your PATH.",
            "• Set `ffmpeg_path` in the config to use a specific binary.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• The CDN might be temporarily unavailable.",
            "• Please try again in a few minutes.",
        ],
        "TimeoutError": [
            "• A download timed out, which may indicate network throttling.",
            "• Check your internet speed.",
            "• Try reducing the number of `--workers`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -v for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding the proxy credentials."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key == "proxy" and value and "@" in str(value):
            value = "[hidden]"
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip() or "[dim]defaults[/dim]",
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: SyncConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    speed = (
        f"{format_size(config.speed_limit)}/s" if config.speed_limit else "Unlimited"
    )
    table.add_row("Max Workers:", str(config.max_workers))
    table.add_row("Speed Limit:", speed)
    table.add_row("Resume:", "✓ Enabled" if config.resume else "✗ Disabled")
    table.add_row("Reference Locale:", config.reference_locale or "[dim]auto[/dim]")
    table.add_row("Max Offset:", f"±{config.max_offset_seconds:g}s")
    table.add_row("Confidence Threshold:", f"{config.confidence_threshold:.0%}")
    table.add_row("mkvmerge:", f"[dim]{config.mkvmerge_path}[/dim]")
    table.add_row("ffmpeg:", f"[dim]{config.ffmpeg_path}[/dim]")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


_STATUS_STYLES = {
    VariantStatus.COMPLETE: "[green]✓ complete[/green]",
    VariantStatus.FAILED: "[red]✗ failed[/red]",
    VariantStatus.CANCELLED: "[yellow]○ cancelled[/yellow]",
    VariantStatus.PENDING: "[dim]pending[/dim]",
}


def print_variant_table(result: PipelineResult):
    """Displays per-variant outcomes and the offsets applied while muxing."""
    console = Console()
    table = Table(box=box.ROUNDED, title="[bold]Variants[/bold]")
    table.add_column("Variant", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Segments", justify="right")
    table.add_column("Offset", justify="right")
    table.add_column("Confidence", justify="right")

    for vid, outcome in result.report.outcomes.items():
        alignment = result.alignments.get(vid)
        if vid == result.reference_id:
            offset, confidence = "[bold]reference[/bold]", ""
        elif alignment is None:
            offset, confidence = "[dim]-[/dim]", ""
        else:
            offset = format_offset(alignment.applied_offset)
            if not alignment.trusted:
                offset = f"[yellow]{offset} (untrusted)[/yellow]"
            confidence = f"{alignment.confidence:.0%}"
        table.add_row(
            vid,
            _STATUS_STYLES[outcome.status],
            f"{outcome.completed_segments}/{outcome.total_segments}",
            offset,
            confidence,
        )
    console.print(table)


def print_summary_panel(result: PipelineResult):
    """Displays the final summary of the session."""
    console = Console()
    report = result.report
    stats = report.stats

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("Output:", f"[bold]{result.output}[/bold]")
    stats_table.add_row(
        "✓ Segments:", f"[bold green]{stats.segments_fetched}[/bold green]"
    )
    if stats.segments_resumed > 0:
        stats_table.add_row(
            "○ Resumed:", f"[yellow]{stats.segments_resumed}[/yellow]"
        )
    if stats.retries > 0:
        stats_table.add_row("↻ Retries:", f"[yellow]{stats.retries}[/yellow]")
    if stats.segments_failed > 0:
        stats_table.add_row(
            "✗ Failed:", f"[bold red]{stats.segments_failed}[/bold red]"
        )

    stats_table.add_row("", "")  # Spacer

    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.total_bytes)}[/cyan]"
    )
    duration_s = report.duration_s
    avg_speed = stats.total_bytes / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    if stats.peak_speed_bps > 0:
        stats_table.add_row(
            "Peak Speed:",
            f"[magenta]{format_size(int(stats.peak_speed_bps))}/s[/magenta]",
        )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if result.warnings:
        title = "⚠ [bold]Completed with Warnings[/bold]"
        border_color = "yellow"
    else:
        title = "🎬 [bold]Sync Complete![/bold]"
        border_color = "green"

    console.print()
    print_variant_table(result)
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
