"""Tests for configuration loading from settings file, environment and overrides."""
import json

import pytest

from refresharr.config import (
    DEFAULT_DOWNLOAD_PATHS,
    DEFAULT_RADARR_URL,
    DEFAULT_SONARR_URL,
    Config,
    ConfigManager,
    parse_bool,
    parse_duration,
    parse_id_list,
)


def _load(env, overrides=None, settings_file=None, validate=True):
    return ConfigManager(settings_file=settings_file, env=env).load_config(overrides, validate=validate)


class TestParsers:
    @pytest.mark.parametrize("text,seconds", [
        ("500ms", 0.5),
        ("30s", 30.0),
        ("1m30s", 90.0),
        ("2", 2.0),
        ("0.25", 0.25),
        ("1h", 3600.0),
    ])
    def test_durations(self, text, seconds):
        assert parse_duration(text) == pytest.approx(seconds)

    @pytest.mark.parametrize("text", ["", "fast", "10x", "s30"])
    def test_invalid_durations(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_booleans(self):
        assert parse_bool("true") is True
        assert parse_bool("1") is True
        assert parse_bool("no") is False
        with pytest.raises(ValueError):
            parse_bool("maybe")

    def test_id_list(self):
        assert parse_id_list("1, 2,,3") == [1, 2, 3]
        assert parse_id_list("") == []
        with pytest.raises(ValueError):
            parse_id_list("1,abc")


class TestEnvironment:
    def test_defaults(self):
        cfg = _load({"SONARR_API_KEY": "abc"})

        assert cfg.sonarr.url == DEFAULT_SONARR_URL
        assert cfg.radarr.configured is False
        assert cfg.request_timeout == 30.0
        assert cfg.request_delay == 0.5
        assert cfg.concurrent_limit == 5
        assert cfg.quality_profile_id == 12
        assert cfg.add_missing_media is False
        assert cfg.download_paths == DEFAULT_DOWNLOAD_PATHS

    def test_environment_values(self):
        cfg = _load({
            "RADARR_API_KEY": "key",
            "RADARR_URL": "http://radarr:7878",
            "REQUEST_TIMEOUT": "10s",
            "REQUEST_DELAY": "250ms",
            "CONCURRENT_LIMIT": "3",
            "DRY_RUN": "true",
            "ADD_MISSING_MOVIES": "true",
            "QUALITY_PROFILE_ID": "4",
            "LOG_LEVEL": "debug",
        })

        assert cfg.radarr.url == "http://radarr:7878"
        assert cfg.request_timeout == 10.0
        assert cfg.request_delay == 0.25
        assert cfg.concurrent_limit == 3
        assert cfg.dry_run is True
        assert cfg.add_missing_media is True
        assert cfg.quality_profile_id == 4
        assert cfg.log_level == "debug"

    def test_invalid_environment_value_falls_back(self):
        """A malformed number is ignored with a warning rather than failing."""
        cfg = _load({"RADARR_API_KEY": "key", "CONCURRENT_LIMIT": "lots"})
        assert cfg.concurrent_limit == 5

    def test_no_service_configured(self):
        with pytest.raises(ValueError, match="at least one service"):
            _load({})

    def test_url_without_key(self):
        with pytest.raises(ValueError, match="SONARR_API_KEY"):
            _load({"RADARR_API_KEY": "k", "SONARR_URL": "http://sonarr"})

    def test_validation_can_be_skipped(self):
        cfg = _load({}, validate=False)
        assert isinstance(cfg, Config)


class TestOverrides:
    def test_override_precedence(self):
        cfg = _load(
            {"SONARR_API_KEY": "env", "CONCURRENT_LIMIT": "3"},
            overrides={"sonarr_api_key": "cli", "concurrent_limit": 8, "request_delay": None},
        )
        assert cfg.sonarr.api_key == "cli"
        assert cfg.concurrent_limit == 8
        assert cfg.request_delay == 0.5

    def test_false_flag_does_not_disable(self):
        cfg = _load({"SONARR_API_KEY": "k", "DRY_RUN": "true"}, overrides={"dry_run": False})
        assert cfg.dry_run is True

    def test_unknown_override(self):
        with pytest.raises(ValueError, match="Unknown configuration override"):
            _load({"SONARR_API_KEY": "k"}, overrides={"colour": "blue"})

    def test_invalid_concurrency_rejected(self):
        with pytest.raises(ValueError, match="concurrent limit"):
            _load({"SONARR_API_KEY": "k"}, overrides={"concurrent_limit": 0})

    def test_invalid_service_rejected(self):
        with pytest.raises(ValueError, match="service must be one of"):
            _load({"SONARR_API_KEY": "k"}, overrides={"service": "lidarr"})


class TestSettingsFile:
    def test_settings_file_then_environment(self, tmp_path):
        settings = tmp_path / "refresharr.json"
        settings.write_text(json.dumps({
            "radarr": {"api_key": "file-key"},
            "plex": {"url": "http://plex:32400", "token": "tok"},
            "request_delay": "1s",
            "concurrent_limit": 2,
            "add_missing_media": True,
            "download_paths": ["/dl"],
        }))

        cfg = _load({"CONCURRENT_LIMIT": "4"}, settings_file=str(settings))

        assert cfg.radarr.api_key == "file-key"
        assert cfg.radarr.url == DEFAULT_RADARR_URL
        assert cfg.plex.configured is True
        assert cfg.request_delay == 1.0
        assert cfg.concurrent_limit == 4
        assert cfg.add_missing_media is True
        assert cfg.download_paths == ["/dl"]

    def test_missing_settings_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            _load({}, settings_file=str(tmp_path / "absent.json"))

    def test_invalid_json(self, tmp_path):
        settings = tmp_path / "bad.json"
        settings.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid JSON"):
            _load({}, settings_file=str(settings))
