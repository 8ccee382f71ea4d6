"""
Version Supervisor - persisted backend version and the bundled backend process.

The supervisor owns at most one :class:`BackendProcess`. Every start first
stops the previous instance under a lock, so two supervised backends never
run at once.
"""

from __future__ import annotations

import asyncio
import json
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiofiles

from .backend_process import BackendProcess, StartResult
from .health import HealthMonitor
from .logging_utils import get_module_logger
from .paths import BACKEND_CONFIG_FILE, backend_resources_dirs, is_packaged, versions_manifest_candidates
from .process_state import ProcessState
from .registry import BackendRegistry
from .settings import Settings

logger = get_module_logger("VersionSupervisor")

BACKEND_EXECUTABLE = "image-backend.exe" if sys.platform == "win32" else "image-backend"
_VERSION_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")


@dataclass(frozen=True)
class VersionsManifest:
    available: Tuple[str, ...]
    default: str
    latest: str

    @classmethod
    def single(cls, version: str) -> "VersionsManifest":
        return cls(available=(version,), default=version, latest=version)

    def to_dict(self) -> Dict[str, Any]:
        return {"available": list(self.available), "default": self.default, "latest": self.latest}


@dataclass(frozen=True)
class SetVersionResult:
    success: bool
    backend_started: bool = False
    restarted: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "backendStarted": self.backend_started,
            "restarted": self.restarted,
        }
        if self.message:
            payload["message"] = self.message
        return payload


CommandFactory = Callable[[str, Settings], Optional[List[str]]]
ProcessFactory = Callable[[str, Sequence[str]], BackendProcess]


def is_valid_version(version: Any) -> bool:
    return isinstance(version, str) and bool(_VERSION_PATTERN.match(version))


def default_backend_command(version: str, settings: Settings) -> Optional[List[str]]:
    """Locate ``backend/<version>/image-backend`` under the bundled resources."""
    for base in backend_resources_dirs():
        executable = base / version / BACKEND_EXECUTABLE
        if executable.is_file():
            return [
                str(executable),
                "--host", settings.backend_host,
                "--port", str(settings.backend_port),
            ]
    return None


class VersionSupervisor:
    """
    Persists the selected backend version and supervises the bundled backend.

    Usage:
        supervisor = VersionSupervisor(settings)
        await supervisor.try_start()                 # stored version
        result = await supervisor.set_version("2.0.0")
        if result.restarted and not result.backend_started:
            ...                                      # offer a retry
        await supervisor.stop()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        packaged: Optional[bool] = None,
        config_path: Path = BACKEND_CONFIG_FILE,
        manifest_paths: Optional[Sequence[Path]] = None,
        command_factory: Optional[CommandFactory] = None,
        process_factory: Optional[ProcessFactory] = None,
        monitor: Optional[HealthMonitor] = None,
    ):
        """
        Args:
            settings: Default version, local host/port and timeouts.
            packaged: Whether a version switch restarts the bundled backend.
                Detected from the running executable when omitted.
            config_path: JSON file holding ``{"version": ...}``.
            manifest_paths: Manifest locations in lookup order.
            command_factory: Builds the launch command for a version, or
                returns None when that version is not installed.
            process_factory: Builds the supervised process; tests pass fakes.
            monitor: Probes the local backend's ``/health`` during startup.
        """
        self.settings = settings
        self.packaged = is_packaged() if packaged is None else packaged
        self.config_path = Path(config_path)
        self.manifest_paths = list(manifest_paths) if manifest_paths is not None else versions_manifest_candidates()
        self._command_factory = command_factory or default_backend_command
        self._process_factory = process_factory or self._create_process
        self._monitor = monitor or HealthMonitor(BackendRegistry(settings))

        self._process: Optional[BackendProcess] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read-only state

    @property
    def state(self) -> ProcessState:
        return self._process.state if self._process else ProcessState.STOPPED

    @property
    def current_version(self) -> Optional[str]:
        return self._process.version if self._process else None

    @property
    def backend_url(self) -> str:
        return self.settings.local_backend_url

    @property
    def backend_port(self) -> int:
        return self.settings.backend_port

    # ------------------------------------------------------------------
    # Persisted selection and manifest

    async def get_stored_version(self) -> str:
        default = self.settings.default_backend_version
        try:
            async with aiofiles.open(self.config_path, "r", encoding="utf-8") as fh:
                data = json.loads(await fh.read())
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            logger.warning("Unreadable backend config %s: %s", self.config_path, e)
            return default

        version = data.get("version") if isinstance(data, dict) else None
        return version if is_valid_version(version) else default

    async def _write_stored_version(self, version: str) -> None:
        await asyncio.to_thread(self.config_path.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(self.config_path, "w", encoding="utf-8") as fh:
            await fh.write(json.dumps({"version": version}))

    async def _find_manifest(self) -> Optional[Path]:
        for path in self.manifest_paths:
            if await asyncio.to_thread(path.is_file):
                return path
        return None

    async def get_versions_manifest(self) -> VersionsManifest:
        default = self.settings.default_backend_version
        path = await self._find_manifest()
        if path is None:
            logger.debug("No versions manifest found in %s", self.manifest_paths)
            return VersionsManifest.single(default)

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as fh:
                data = json.loads(await fh.read())
        except (OSError, ValueError) as e:
            logger.error("Failed to read versions manifest %s: %s", path, e)
            return VersionsManifest.single(default)

        if not isinstance(data, dict):
            logger.error("Versions manifest %s is not an object", path)
            return VersionsManifest.single(default)

        available = data.get("available")
        if not isinstance(available, list) or not available:
            available = [default]
        return VersionsManifest(
            available=tuple(str(v) for v in available),
            default=str(data.get("default") or default),
            latest=str(data.get("latest") or default),
        )

    # ------------------------------------------------------------------
    # Process lifecycle

    def _create_process(self, version: str, command: Sequence[str]) -> BackendProcess:
        async def ready() -> bool:
            status = await self._monitor.check_health(base_url=self.backend_url)
            return status.online

        return BackendProcess(
            version,
            command,
            ready_probe=ready,
            startup_timeout=self.settings.backend_startup_timeout,
            stop_timeout=self.settings.backend_stop_timeout,
            env={"BACKEND_VERSION": version, "PORT": str(self.settings.backend_port)},
        )

    async def _stop_current(self) -> None:
        if self._process is None:
            return
        process, self._process = self._process, None
        await process.stop()

    async def _start_locked(self, version: str) -> StartResult:
        # the running backend is only replaced once a launch command exists
        if not is_valid_version(version):
            return StartResult(False, f"Invalid backend version: {version!r}")

        command = self._command_factory(version, self.settings)
        if not command:
            message = f"Backend version {version} is not installed"
            logger.warning(message)
            return StartResult(False, message)

        await self._stop_current()
        process = self._process_factory(version, command)
        self._process = process
        result = await process.start()
        if not result.started:
            self._process = None
        return result

    async def try_start(self, version: Optional[str] = None) -> StartResult:
        """Start ``version`` (stored selection when omitted) unless it is already running."""
        target = version or await self.get_stored_version()
        async with self._lock:
            if self._process is not None and self._process.version == target and self._process.is_running():
                return StartResult(True, f"Backend {target} already running")
            return await self._start_locked(target)

    async def set_version(self, version: str) -> SetVersionResult:
        if not is_valid_version(version):
            return SetVersionResult(False, message=f"Invalid backend version: {version!r}")

        try:
            await self._write_stored_version(version)
        except OSError as e:
            logger.error("Failed to persist backend version %s: %s", version, e)
            return SetVersionResult(False, message=str(e))
        logger.info("Stored backend version %s", version)

        if not self.packaged:
            return SetVersionResult(
                True,
                backend_started=False,
                restarted=False,
                message="Version saved; no bundled backend is supervised in this build",
            )

        async with self._lock:
            result = await self._start_locked(version)
        return SetVersionResult(True, backend_started=result.started, restarted=True, message=result.message)

    async def stop(self) -> None:
        async with self._lock:
            await self._stop_current()


__all__ = [
    "VersionSupervisor",
    "VersionsManifest",
    "SetVersionResult",
    "StartResult",
    "default_backend_command",
    "is_valid_version",
]
