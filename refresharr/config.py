"""
Configuration management for RefreshArr.
Settings are layered: defaults, optional JSON settings file, environment
(including a .env file), then command line overrides.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

DEFAULT_SONARR_URL = "http://127.0.0.1:8989"
DEFAULT_RADARR_URL = "http://127.0.0.1:7878"

SERVICES = ("sonarr", "radarr", "auto")

DEFAULT_DOWNLOAD_PATHS = [
    "/downloads/complete",
    "/downloads",
    "/mnt/downloads",
    "/data/downloads",
]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|µs|ns|s|m|h)")
_DURATION_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str) -> float:
    """Parse '500ms', '30s', '1m30s' or a bare number of seconds into seconds."""
    text = str(value).strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value}")
    return total


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "t", "yes", "y", "on"):
        return True
    if text in ("0", "false", "f", "no", "n", "off", ""):
        return False
    raise ValueError(f"invalid boolean: {value}")


def parse_id_list(value: str) -> List[int]:
    """Parse a comma-separated list of IDs, e.g. '1,2, 3'."""
    ids = []
    for part in str(value or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            raise ValueError(f"invalid ID '{part}'")
    return ids


@dataclass
class ArrServiceConfig:
    """Connection settings for one Sonarr or Radarr instance."""
    url: str = ""
    api_key: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.url and self.api_key)


@dataclass
class PlexConfig:
    url: str = ""
    token: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.url and self.token)


@dataclass
class NotificationConfig:
    webhook_url: str = ""
    webhook_level: str = "summary"


@dataclass
class Config:
    """Complete runtime configuration."""
    sonarr: ArrServiceConfig = field(default_factory=ArrServiceConfig)
    radarr: ArrServiceConfig = field(default_factory=ArrServiceConfig)
    plex: PlexConfig = field(default_factory=PlexConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    request_timeout: float = 30.0
    request_delay: float = 0.5
    concurrent_limit: int = 5
    log_level: str = "info"
    logs_folder: Optional[str] = None
    dry_run: bool = False
    no_report: bool = False
    add_missing_media: bool = False
    quality_profile_id: int = 12
    service: str = "auto"
    series_ids: Optional[List[int]] = None
    movie_ids: Optional[List[int]] = None
    reports_dir: str = "reports"
    download_paths: Optional[List[str]] = None
    update_after_delete: bool = False

    def __post_init__(self):
        if self.series_ids is None:
            self.series_ids = []
        if self.movie_ids is None:
            self.movie_ids = []
        if self.download_paths is None:
            self.download_paths = list(DEFAULT_DOWNLOAD_PATHS)

    def validate(self) -> None:
        """Raise ValueError listing every problem found."""
        errors = []
        if not self.sonarr.api_key and not self.radarr.api_key:
            errors.append("at least one service must be configured (Sonarr or Radarr)")
        for name, svc in (("Sonarr", self.sonarr), ("Radarr", self.radarr)):
            if svc.api_key and not svc.url:
                errors.append(f"{name} URL is required when {name} API key is provided")
            if svc.url and not svc.api_key:
                errors.append(f"{name.upper()}_API_KEY is required when {name.upper()}_URL is provided")
        if self.request_timeout <= 0:
            errors.append("request timeout must be greater than 0")
        if self.request_delay < 0:
            errors.append("request delay must not be negative")
        if self.concurrent_limit <= 0:
            errors.append("concurrent limit must be greater than 0")
        if self.service not in SERVICES:
            errors.append(f"service must be one of {', '.join(SERVICES)}, got '{self.service}'")
        if errors:
            raise ValueError("Configuration validation failed: " + "; ".join(errors))


class ConfigManager:
    """Builds a Config from settings file, environment and overrides."""

    def __init__(self, settings_file: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                 use_dotenv: bool = True):
        self.settings_file = Path(settings_file) if settings_file else None
        self._env = env
        self.use_dotenv = use_dotenv
        self.config = Config()

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def load_config(self, overrides: Optional[Dict[str, Any]] = None, validate: bool = True) -> Config:
        if self.use_dotenv and self._env is None:
            load_dotenv()
        self.config = Config()
        if self.settings_file is not None:
            self._load_settings_file()
        self._load_environment()
        if overrides:
            self._apply_overrides(overrides)
        self._apply_default_urls()
        if validate:
            self.config.validate()
        return self.config

    def _load_settings_file(self) -> None:
        if not self.settings_file.exists():
            raise FileNotFoundError(f"Settings file not found: {self.settings_file}")
        try:
            with open(self.settings_file, 'r', encoding='utf-8') as f:
                settings = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in settings file: {e}")
        if not isinstance(settings, dict):
            raise ValueError("Settings file must contain a JSON object")
        logging.debug(f"Loaded settings from {self.settings_file}")

        cfg = self.config
        for name in ("sonarr", "radarr"):
            section = settings.get(name) or {}
            svc = getattr(cfg, name)
            svc.url = section.get("url", svc.url)
            svc.api_key = section.get("api_key", svc.api_key)
        plex = settings.get("plex") or {}
        cfg.plex.url = plex.get("url", cfg.plex.url)
        cfg.plex.token = plex.get("token", cfg.plex.token)
        cfg.notification.webhook_url = settings.get("webhook_url", cfg.notification.webhook_url)
        cfg.notification.webhook_level = settings.get("webhook_level", cfg.notification.webhook_level)

        if "request_timeout" in settings:
            cfg.request_timeout = parse_duration(settings["request_timeout"])
        if "request_delay" in settings:
            cfg.request_delay = parse_duration(settings["request_delay"])
        for key in ("concurrent_limit", "quality_profile_id"):
            if key in settings:
                setattr(cfg, key, int(settings[key]))
        for key in ("dry_run", "add_missing_media", "update_after_delete"):
            if key in settings:
                setattr(cfg, key, parse_bool(settings[key]))
        for key in ("log_level", "logs_folder", "reports_dir", "service"):
            if key in settings:
                setattr(cfg, key, settings[key])
        if "download_paths" in settings:
            cfg.download_paths = list(settings["download_paths"])

    def _load_environment(self) -> None:
        env = self.env
        cfg = self.config

        cfg.sonarr.url = env.get("SONARR_URL") or cfg.sonarr.url
        cfg.sonarr.api_key = env.get("SONARR_API_KEY") or cfg.sonarr.api_key
        cfg.radarr.url = env.get("RADARR_URL") or cfg.radarr.url
        cfg.radarr.api_key = env.get("RADARR_API_KEY") or cfg.radarr.api_key
        cfg.plex.url = env.get("PLEX_URL") or cfg.plex.url
        cfg.plex.token = env.get("PLEX_TOKEN") or cfg.plex.token
        cfg.notification.webhook_url = env.get("WEBHOOK_URL") or cfg.notification.webhook_url
        cfg.notification.webhook_level = env.get("WEBHOOK_LEVEL") or cfg.notification.webhook_level
        cfg.log_level = env.get("LOG_LEVEL") or cfg.log_level

        if env.get("REQUEST_TIMEOUT"):
            cfg.request_timeout = self._env_value("REQUEST_TIMEOUT", parse_duration, cfg.request_timeout)
        if env.get("REQUEST_DELAY"):
            cfg.request_delay = self._env_value("REQUEST_DELAY", parse_duration, cfg.request_delay)
        if env.get("CONCURRENT_LIMIT"):
            cfg.concurrent_limit = self._env_value("CONCURRENT_LIMIT", int, cfg.concurrent_limit)
        if env.get("QUALITY_PROFILE_ID"):
            cfg.quality_profile_id = self._env_value("QUALITY_PROFILE_ID", int, cfg.quality_profile_id)
        if env.get("DRY_RUN"):
            cfg.dry_run = self._env_value("DRY_RUN", parse_bool, cfg.dry_run)
        if env.get("ADD_MISSING_MOVIES"):
            cfg.add_missing_media = self._env_value("ADD_MISSING_MOVIES", parse_bool, cfg.add_missing_media)

    def _env_value(self, key: str, parser, default):
        raw = self.env.get(key)
        try:
            return parser(raw)
        except ValueError:
            logging.warning(f"Ignoring invalid {key}={raw!r}, using {default}")
            return default

    def _apply_overrides(self, overrides: Dict[str, Any]) -> None:
        cfg = self.config
        for key, value in overrides.items():
            if value is None:
                continue
            if key in ("sonarr_url", "sonarr_api_key", "radarr_url", "radarr_api_key"):
                service, attr = key.split("_", 1)
                setattr(getattr(cfg, service), "url" if attr == "url" else "api_key", value)
            elif key in ("dry_run", "no_report", "add_missing_media"):
                # Flags only switch these on
                if value:
                    setattr(cfg, key, True)
            elif hasattr(cfg, key):
                setattr(cfg, key, value)
            else:
                raise ValueError(f"Unknown configuration override: {key}")

    def _apply_default_urls(self) -> None:
        cfg = self.config
        if cfg.sonarr.api_key and not cfg.sonarr.url:
            cfg.sonarr.url = DEFAULT_SONARR_URL
        if cfg.radarr.api_key and not cfg.radarr.url:
            cfg.radarr.url = DEFAULT_RADARR_URL
