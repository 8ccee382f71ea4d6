"""
Settings - configuration resolved once at startup.

Values come from a prioritized list of sources, highest first:

1. explicit overrides (CLI flags)
2. environment variables (``IMAGE_TRANSFORM_*``)
3. the ``key = value`` config file
4. hardcoded defaults

Nothing below re-reads the environment after ``load_settings`` returns.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config_manager import ConfigManager, get_config_manager
from .logging_utils import get_module_logger
from .paths import CONFIG_PATH

logger = get_module_logger("Settings")

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_BACKEND_VERSION = "1.0.0"

# settings field -> environment variable
ENV_KEYS: Dict[str, str] = {
    "api_base_url_latest": "IMAGE_TRANSFORM_API_BASE_URL_LATEST",
    "api_base_url_pinned": "IMAGE_TRANSFORM_API_BASE_URL_PINNED",
    "api_base_url": "IMAGE_TRANSFORM_API_BASE_URL",
    "pinned_falls_back_to_latest": "IMAGE_TRANSFORM_PINNED_FALLBACK",
    "log_level": "IMAGE_TRANSFORM_LOG_LEVEL",
}


@dataclass(frozen=True)
class Settings:
    """Plain settings struct threaded through the registry, client and supervisor."""

    api_base_url_latest: Optional[str] = None
    api_base_url_pinned: Optional[str] = None
    api_base_url: Optional[str] = None
    default_base_url: str = DEFAULT_BASE_URL
    pinned_falls_back_to_latest: bool = True
    pinned_version_label: str = DEFAULT_BACKEND_VERSION

    request_timeout: float = 30.0
    health_timeout: float = 5.0
    health_interval: float = 5.0
    version_interval: float = 30.0

    backend_host: str = "127.0.0.1"
    backend_port: int = 8000
    backend_startup_timeout: float = 15.0
    backend_stop_timeout: float = 5.0
    default_backend_version: str = DEFAULT_BACKEND_VERSION

    log_level: str = "info"

    @property
    def local_backend_url(self) -> str:
        return f"http://{self.backend_host}:{self.backend_port}"


def _coerce(config_manager: ConfigManager, raw: Dict[str, str], name: str, default: Any) -> Any:
    if isinstance(default, bool):
        return config_manager.get_bool(raw, name, default)
    if isinstance(default, int):
        return config_manager.get_int(raw, name, default)
    if isinstance(default, float):
        return config_manager.get_float(raw, name, default)
    return config_manager.get_str(raw, name, default)


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    config_manager: Optional[ConfigManager] = None,
) -> Settings:
    """Resolve a :class:`Settings` from overrides, environment, file and defaults.

    Args:
        config_path: ``key = value`` file; defaults to ``config.txt`` at the
            project root. A missing file is not an error.
        environ: Environment mapping, ``os.environ`` when omitted.
        overrides: Explicit values (already typed) that win over everything.
            ``None`` values are ignored so unset CLI flags fall through.
        config_manager: Parser for the config file.
    """
    config_manager = config_manager or get_config_manager()
    environ = os.environ if environ is None else environ
    path = config_path or CONFIG_PATH

    merged: Dict[str, str] = dict(config_manager.read_config(path))
    for name, env_key in ENV_KEYS.items():
        value = environ.get(env_key)
        if value:
            merged[name] = value

    values: Dict[str, Any] = {}
    for field in fields(Settings):
        default = field.default
        if default is None:
            values[field.name] = config_manager.get_str(merged, field.name, None)
        else:
            values[field.name] = _coerce(config_manager, merged, field.name, default)

    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name not in values:
            raise ValueError(f"Unknown setting '{name}'")
        values[name] = value

    settings = Settings(**values)
    logger.debug("Resolved settings from %s: %s", path, settings)
    return settings


__all__ = ["Settings", "load_settings", "DEFAULT_BASE_URL", "DEFAULT_BACKEND_VERSION", "ENV_KEYS"]
