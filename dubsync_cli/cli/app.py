"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import shutil
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from dubsync_cli import __version__
from dubsync_cli.catalog.manifest import ManifestCatalog
from dubsync_cli.core.pipeline import SyncPipeline
from dubsync_cli.exceptions import AcquisitionCancelledError, DubsyncError
from dubsync_cli.storage.config_manager import ConfigManager
from dubsync_cli.storage.session_lock import SessionLock, temp_dir_for

from .formatters import print_config, print_summary_panel, print_validation_table

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("dubsync_cli")

app = typer.Typer(
    name="dubsync",
    help=(
        "Downloads every dub of an episode concurrently, aligns the audio tracks"
        " by fingerprint and muxes them into one file. Use 'dubsync <command>"
        " --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "dubsync"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Enable debug logging.",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Dub Sync CLI"""
    if version:
        console.print(f"[bold]dubsync-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("dubsync_cli").setLevel("DEBUG" if verbose else "INFO")

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]dubsync init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config_manager.load_config()
        print_config(CONFIG_FILE, config_manager._get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config without asking."
    ),
):
    """Write a configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    ConfigManager(CONFIG_FILE).save_new_config()
    console.print(
        f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]"
    )
    console.print(
        "Ready! Try: [cyan]dubsync download <MANIFEST> <EPISODE> -o out.mkv[/cyan]"
    )


@app.command(name="download")
def download_command(
    manifest: Path = typer.Argument(  # noqa: B008
        ..., help="JSON manifest describing the episodes and their variants."
    ),
    episode: str = typer.Argument(..., help="Episode id inside the manifest."),
    output: Path = typer.Option(  # noqa: B008
        ..., "-o", "--output", help="Path of the Matroska file to produce."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous segment downloads."
    ),
    speed_limit: str | None = typer.Option(
        None,
        "-l",
        "--speed-limit",
        help="Cap total bandwidth, e.g. '500KB' or '2MB' per second.",
    ),
    resume: bool | None = typer.Option(
        None,
        "--resume/--no-resume",
        help="Keep partial downloads when interrupted and continue them next time.",
    ),
    reference_locale: str | None = typer.Option(
        None,
        "-r",
        "--reference",
        help="Locale of the audio track every other track is aligned to.",
    ),
    max_offset: float | None = typer.Option(
        None, "--max-offset", help="Largest offset searched, in seconds."
    ),
    title: str | None = typer.Option(
        None, "-t", "--title", help="Container title (defaults to the episode title)."
    ),
):
    """Download, align and mux every variant of an episode."""
    cli_options = {
        "max_workers": workers,
        "speed_limit": speed_limit,
        "resume": resume,
        "reference_locale": reference_locale,
        "max_offset_seconds": max_offset,
    }

    async def _download_async():
        config = ConfigManager(CONFIG_FILE).load_config(cli_options)
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _request_cancel():
            console.print(
                "\n[yellow]⚠️  Stopping after in-flight segments "
                "(press Ctrl+C again to abort).[/yellow]"
            )
            cancel_event.set()
            loop.remove_signal_handler(signal.SIGINT)

        try:
            loop.add_signal_handler(signal.SIGINT, _request_cancel)
        except NotImplementedError:
            pass  # Windows event loops: Ctrl+C raises KeyboardInterrupt instead

        catalog = ManifestCatalog(
            manifest,
            proxy=config.proxy,
            request_timeout=config.request_timeout,
            user_agent=config.user_agent,
        )
        pipeline = SyncPipeline(config, catalog, cancel_event=cancel_event)
        console.print("[bold cyan]🎬 Starting sync session...[/bold cyan]")
        return await pipeline.run(episode, output, title=title)

    try:
        result = asyncio.run(_download_async())
    except AcquisitionCancelledError as e:
        console.print(f"\n[yellow]⚠️  {e}[/yellow]")
        raise typer.Exit(code=130) from e
    print_summary_panel(result)


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config = ConfigManager(CONFIG_FILE).load_config()
        print_validation_table(config)
    except DubsyncError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def clean(
    output: Path = typer.Argument(  # noqa: B008
        ..., help="Output path whose preserved partial downloads should be removed."
    ),
):
    """Remove the resume state left next to an output file."""
    lock = SessionLock(output)
    lock.acquire([])
    try:
        temp_dir = temp_dir_for(lock.target)
        if temp_dir.exists():
            shutil.rmtree(temp_dir)
            console.print(f"[green]✓ Removed {temp_dir}[/green]")
        else:
            console.print("[dim]No partial downloads found.[/dim]")
    finally:
        lock.release(remove_marker=True)
