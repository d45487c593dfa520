"""Tests for configuration parsing, validation and the INI config manager."""

import pytest

from dubsync_cli.exceptions import ConfigurationError
from dubsync_cli.models.config import SyncConfig, parse_speed_limit
from dubsync_cli.storage.config_manager import ConfigManager


@pytest.mark.parametrize(
    "value, expected",
    [
        ("500KB", 512_000),
        ("2mb", 2 * 1024 * 1024),
        ("1.5 MB", int(1.5 * 1024 * 1024)),
        ("750", 750),
        (4096, 4096),
        ("", None),
        ("0", None),
        (None, None),
    ],
)
def test_parse_speed_limit(value, expected):
    assert parse_speed_limit(value) == expected


def test_invalid_speed_limit_is_rejected():
    with pytest.raises(ValueError):
        parse_speed_limit("fast")


class TestSyncConfig:
    def test_defaults(self):
        config = SyncConfig()
        assert 1 <= config.max_workers <= 32
        assert config.speed_limit is None
        assert config.similarity_threshold_bits == 10
        assert config.confidence_threshold == 0.5
        assert config.max_offset_seconds == 120.0

    def test_speed_limit_strings_are_converted(self):
        assert SyncConfig(speed_limit="1MB").speed_limit == 1024 * 1024

    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_workers", 0),
            ("similarity_threshold_bits", 33),
            ("confidence_threshold", 1.5),
            ("proxy", "socks5://localhost"),
            ("max_offset_seconds", 0),
        ],
    )
    def test_invalid_values_are_rejected(self, field, value):
        with pytest.raises(ValueError):
            SyncConfig(**{field: value})


class TestConfigManager:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = ConfigManager(tmp_path / "config.ini").load_config()
        assert config.config_path == str(tmp_path)

    def test_saved_config_round_trips_with_overrides(self, tmp_path):
        path = tmp_path / "config.ini"
        manager = ConfigManager(path)
        manager.save_new_config({"max_workers": 4, "reference_locale": "ja-JP"})

        config = ConfigManager(path).load_config(
            {"speed_limit": "200KB", "resume": True, "max_workers": None}
        )

        assert config.max_workers == 4
        assert config.reference_locale == "ja-JP"
        assert config.speed_limit == 200 * 1024
        assert config.resume is True

    def test_missing_keys_are_migrated(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\nmax_workers = 2\n")

        config = ConfigManager(path).load_config()

        assert config.max_workers == 2
        assert "mkvmerge_path" in path.read_text()

    def test_invalid_value_raises_configuration_error(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\nmax_workers = many\n")

        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_validation_failure_raises_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(tmp_path / "config.ini").load_config({"max_workers": 99})
