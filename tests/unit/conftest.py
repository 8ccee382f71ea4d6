"""Unit test fixtures.

Provides:
- Settings and registry factories whose persisted state lives in tmp_path
- A helper for aiohttp ``TestServer`` apps standing in for the backend
- Fake supervised processes for the version supervisor
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import pytest
from aiohttp.test_utils import TestServer

from image_transform.core.backend_process import StartResult
from image_transform.core.config_manager import ConfigManager
from image_transform.core.process_state import ProcessState
from image_transform.core.registry import BackendRegistry, SelectionStore
from image_transform.core.settings import Settings


def server_url(server: TestServer) -> str:
    """Base URL of a started TestServer, without trailing slash."""
    return f"http://{server.host}:{server.port}"


# =============================================================================
# Settings / Registry
# =============================================================================

@pytest.fixture
def preferences_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "preferences.txt"


@pytest.fixture
def make_registry(preferences_path: Path) -> Callable[..., BackendRegistry]:
    """Factory: ``make_registry(api_base_url_latest=..., ...)``."""

    def _make(**settings_kwargs: Any) -> BackendRegistry:
        store = SelectionStore(preferences_path, config_manager=ConfigManager())
        return BackendRegistry(Settings(**settings_kwargs), store=store)

    return _make


# =============================================================================
# Fake supervised processes
# =============================================================================

class FakeBackendProcess:
    """Stands in for BackendProcess; records lifecycle calls in a shared log."""

    def __init__(self, version: str, command: Sequence[str], log: List[Tuple[str, str]], start_ok: bool = True):
        self.version = version
        self.command = list(command)
        self._log = log
        self._start_ok = start_ok
        self._running = False

    @property
    def state(self) -> ProcessState:
        return ProcessState.RUNNING if self._running else ProcessState.STOPPED

    def is_running(self) -> bool:
        return self._running

    async def start(self) -> StartResult:
        self._log.append(("start", self.version))
        self._running = self._start_ok
        if self._start_ok:
            return StartResult(True, f"Backend {self.version} running")
        return StartResult(False, "Backend did not become ready within 15s")

    async def stop(self) -> None:
        self._log.append(("stop", self.version))
        self._running = False


class FakeProcessFactory:
    """Callable process factory that keeps every process it created."""

    def __init__(self, start_ok: bool = True):
        self.start_ok = start_ok
        self.log: List[Tuple[str, str]] = []
        self.created: List[FakeBackendProcess] = []

    def __call__(self, version: str, command: Sequence[str]) -> FakeBackendProcess:
        process = FakeBackendProcess(version, command, self.log, start_ok=self.start_ok)
        self.created.append(process)
        return process

    def running(self) -> List[FakeBackendProcess]:
        return [p for p in self.created if p.is_running()]


def installed_command(version: str, settings: Settings) -> Optional[List[str]]:
    return ["image-backend", "--version", version]


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory()
