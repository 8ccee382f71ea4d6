"""
Backend Registry - resolves which backend base URL requests go to.

Two named backends exist, "latest" and "pinned". Which one is active is a
two-valued flag persisted in the user's preferences file and re-read on
every resolution, so a switch made by another process is picked up on the
next call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from .config_manager import ConfigManager
from .logging_utils import get_module_logger
from .paths import PREFERENCES_FILE
from .settings import Settings

logger = get_module_logger("BackendRegistry")

SELECTION_KEY = "backend_selection"


class BackendId(str, Enum):
    LATEST = "latest"
    PINNED = "pinned"

    @classmethod
    def parse(cls, value: Union[str, "BackendId", None]) -> Optional["BackendId"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


DEFAULT_SELECTION = BackendId.LATEST


@dataclass(frozen=True)
class BackendOption:
    id: BackendId
    label: str
    url: str


class SelectionStore:
    """Persists the latest/pinned flag; unreadable or unknown values read as the default."""

    def __init__(self, path: Path = PREFERENCES_FILE, config_manager: Optional[ConfigManager] = None):
        self.path = Path(path)
        self._config_manager = config_manager or ConfigManager()

    async def load(self) -> BackendId:
        config = await self._config_manager.read_config_async(self.path)
        raw = config.get(SELECTION_KEY)
        if raw is None:
            return DEFAULT_SELECTION
        selection = BackendId.parse(raw)
        if selection is None:
            logger.warning("Ignoring unknown backend selection %r in %s", raw, self.path)
            return DEFAULT_SELECTION
        return selection

    async def save(self, selection: BackendId) -> bool:
        return await self._config_manager.write_config_async(
            self.path, {SELECTION_KEY: selection.value}
        )


class BackendRegistry:
    """Resolves base URLs from :class:`Settings` and the persisted selection."""

    def __init__(self, settings: Settings, store: Optional[SelectionStore] = None):
        self.settings = settings
        self.store = store or SelectionStore()

    def _latest_url(self) -> str:
        s = self.settings
        return s.api_base_url_latest or s.api_base_url or s.default_base_url

    def _pinned_url(self) -> str:
        s = self.settings
        fallback = self._latest_url() if s.pinned_falls_back_to_latest else s.default_base_url
        return s.api_base_url_pinned or s.api_base_url or fallback

    def resolve_url(self, selection: Union[BackendId, str]) -> str:
        backend = BackendId.parse(selection)
        if backend is None:
            raise ValueError(f"Unknown backend selection: {selection!r}")
        url = self._pinned_url() if backend is BackendId.PINNED else self._latest_url()
        return url.rstrip("/")

    def list_options(self) -> List[BackendOption]:
        return [
            BackendOption(BackendId.LATEST, "Latest", self.resolve_url(BackendId.LATEST)),
            BackendOption(
                BackendId.PINNED,
                f"v{self.settings.pinned_version_label} (Pinned)",
                self.resolve_url(BackendId.PINNED),
            ),
        ]

    async def get_selection(self) -> BackendId:
        return await self.store.load()

    async def set_selection(self, selection: Union[BackendId, str]) -> BackendId:
        backend = BackendId.parse(selection)
        if backend is None:
            raise ValueError(f"Unknown backend selection: {selection!r}")
        if not await self.store.save(backend):
            logger.warning("Backend selection %s could not be persisted", backend.value)
        logger.info("Backend version set to: %s", backend.value)
        return backend

    async def active_url(self) -> str:
        return self.resolve_url(await self.get_selection())


__all__ = [
    "BackendId",
    "BackendOption",
    "BackendRegistry",
    "SelectionStore",
    "DEFAULT_SELECTION",
]
