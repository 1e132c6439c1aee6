"""Configuration management for the user management service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class ServiceConfig:
    """Runtime settings for the HTTP service and its database."""

    database_path: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "ServiceConfig":
        """Create a :class:`ServiceConfig` from raw dictionary data."""

        unknown = set(data) - {"database_path", "host", "port", "log_level"}
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        return ServiceConfig(
            database_path=database_path,
            host=str(data.get("host", DEFAULT_HOST)),
            port=_parse_port(data.get("port", DEFAULT_PORT)),
            log_level=_parse_log_level(data.get("log_level", DEFAULT_LOG_LEVEL)),
        )


def _parse_port(value: object) -> int:
    try:
        port = int(str(value))
    except ValueError as exc:
        raise ValueError(f"Port must be an integer, got {value!r}") from exc
    if not 1 <= port <= 65535:
        raise ValueError("Port must be between 1 and 65535")
    return port


def _parse_log_level(value: object) -> str:
    level = str(value).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level {value!r}")
    return level


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServiceConfig:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ

    if config_path is None and env.get("USERMGMT_CONFIG"):
        config_path = Path(env["USERMGMT_CONFIG"]).expanduser()

    raw: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        raw = dict(loaded)
        base_path = config_path.parent

    config = ServiceConfig.from_dict(raw, base_path=base_path)

    if env.get("USERMGMT_DB_PATH"):
        config = replace(config, database_path=resolve_database_path(env["USERMGMT_DB_PATH"]))
    if env.get("USERMGMT_HOST"):
        config = replace(config, host=env["USERMGMT_HOST"].strip())
    if env.get("USERMGMT_PORT"):
        config = replace(config, port=_parse_port(env["USERMGMT_PORT"]))
    if env.get("USERMGMT_LOG_LEVEL"):
        config = replace(config, log_level=_parse_log_level(env["USERMGMT_LOG_LEVEL"]))

    return config


__all__ = ["ServiceConfig", "load_config"]
