from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from canvas.tiles import DEFAULT_BASE_URL


class ConfigError(ValueError):
    """Invalid or unreadable configuration; fatal at startup."""


@dataclass
class StatusApiConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class WatchConfig:
    """
    Runtime settings. Intervals are in seconds, as in config/params.yaml.
    """
    refresh_rate: int = 60
    directory_refresh_rate: int = 300
    remind_time: int = 3600
    webhook_url: str = ""
    webhook_format: str = "config/webhook.json"
    pattern_directory: str = "data/patterns"
    tile_base_url: str = DEFAULT_BASE_URL
    tile_timeout: float = 10.0
    tile_workers: int = 8
    skip_transparent_tiles: bool = False
    log_level: str = "INFO"
    status_api: StatusApiConfig = field(default_factory=StatusApiConfig)

    @property
    def remind_interval(self) -> timedelta:
        return timedelta(seconds=self.remind_time)

    def validate(self) -> "WatchConfig":
        for key in ("refresh_rate", "directory_refresh_rate", "remind_time", "tile_workers"):
            if int(getattr(self, key)) <= 0:
                raise ConfigError(f"{key} must be > 0")
        if self.tile_timeout <= 0:
            raise ConfigError("tile_server.timeout must be > 0")
        if not self.pattern_directory:
            raise ConfigError("pattern_directory is required")
        return self


def _section(P: Dict[str, Any], key: str) -> Dict[str, Any]:
    sec = P.get(key) or {}
    if not isinstance(sec, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return sec


def _flag(sec: Dict[str, Any], key: str, default: bool, where: str) -> bool:
    value = sec.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be true or false, got {value!r}")
    return value


def config_from_dict(P: Dict[str, Any]) -> WatchConfig:
    d = WatchConfig()
    tiles = _section(P, "tile_server")
    logging_cfg = _section(P, "logging")
    api = _section(P, "status_api")
    skip_transparent = _flag(tiles, "skip_transparent", d.skip_transparent_tiles, "tile_server")
    api_enabled = _flag(api, "enabled", False, "status_api")
    try:
        cfg = WatchConfig(
            refresh_rate=int(P.get("refresh_rate", d.refresh_rate)),
            directory_refresh_rate=int(P.get("directory_refresh_rate", d.directory_refresh_rate)),
            remind_time=int(P.get("remind_time", d.remind_time)),
            webhook_url=str(P.get("webhook_url") or ""),
            webhook_format=str(P.get("webhook_format", d.webhook_format)),
            pattern_directory=str(P.get("pattern_directory", d.pattern_directory)),
            tile_base_url=str(tiles.get("base_url", d.tile_base_url)),
            tile_timeout=float(tiles.get("timeout", d.tile_timeout)),
            tile_workers=int(tiles.get("max_workers", d.tile_workers)),
            skip_transparent_tiles=skip_transparent,
            log_level=str(logging_cfg.get("level", d.log_level)),
            status_api=StatusApiConfig(
                enabled=api_enabled,
                host=str(api.get("host", "127.0.0.1")),
                port=int(api.get("port", 8000)),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid config value: {e}") from e
    return cfg.validate()


def load_config(path: Optional[str] = None) -> WatchConfig:
    """
    Read YAML config. Path precedence: explicit arg, env CONFIG_FILE,
    config/params.yaml. A missing file yields the defaults.
    """
    path = path or os.environ.get("CONFIG_FILE") or "config/params.yaml"
    if not Path(path).exists():
        return WatchConfig().validate()
    try:
        with open(path, "r") as f:
            P = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"unable to read config {path}: {e}") from e
    if not isinstance(P, dict):
        raise ConfigError(f"config {path} must be a YAML mapping")
    return config_from_dict(P)
