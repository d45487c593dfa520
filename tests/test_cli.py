"""Tests for the Typer command-line interface."""

import configparser

import pytest
from typer.testing import CliRunner

from dubsync_cli import __version__
from dubsync_cli.cli import app as cli_app
from dubsync_cli.exceptions import CatalogError, SessionLockedError
from dubsync_cli.storage.session_lock import SessionLock, marker_path_for, temp_dir_for

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config" / "config.ini"
    monkeypatch.setattr(cli_app, "CONFIG_FILE", path)
    return path


def test_version():
    result = runner.invoke(cli_app.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_defaults(config_file):
    result = runner.invoke(cli_app.app, ["init"])

    assert result.exit_code == 0, result.output
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(config_file)
    assert parser["DEFAULT"]["max_workers"]
    assert parser["DEFAULT"]["resume"] == "false"


def test_init_asks_before_overwriting(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("[DEFAULT]\nmax_workers = 3\n")

    result = runner.invoke(cli_app.app, ["init"], input="n\n")

    assert result.exit_code != 0
    assert "max_workers = 3" in config_file.read_text()


def test_validate_reports_bad_values(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("[DEFAULT]\nmax_workers = 0\n")

    result = runner.invoke(cli_app.app, ["validate"])

    assert result.exit_code == 1
    assert "invalid" in result.output


def test_validate_accepts_defaults(config_file):
    result = runner.invoke(cli_app.app, ["validate"])
    assert result.exit_code == 0, result.output


def test_clean_removes_preserved_state(tmp_path):
    output = tmp_path / "episode.mkv"
    temp_dir = temp_dir_for(output.resolve())
    (temp_dir / "segments").mkdir(parents=True)
    (temp_dir / "segments" / "audio-ja-JP.0000").write_bytes(b"x")

    result = runner.invoke(cli_app.app, ["clean", str(output)])

    assert result.exit_code == 0, result.output
    assert not temp_dir.exists()
    assert not marker_path_for(output.resolve()).exists()


def test_clean_refuses_a_locked_target(tmp_path):
    output = tmp_path / "episode.mkv"
    lock = SessionLock(output)
    lock.acquire(["audio-ja-JP"])
    try:
        result = runner.invoke(cli_app.app, ["clean", str(output)])
    finally:
        lock.release()

    assert result.exit_code != 0
    assert isinstance(result.exception, SessionLockedError)


def test_download_with_missing_manifest_fails(tmp_path, config_file):
    result = runner.invoke(
        cli_app.app,
        [
            "download",
            str(tmp_path / "missing.json"),
            "ep1",
            "-o",
            str(tmp_path / "out.mkv"),
        ],
    )

    assert isinstance(result.exception, CatalogError)
    assert not (tmp_path / "out.mkv").exists()
