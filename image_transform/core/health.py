"""
Health Monitor - backend liveness probing.

``HealthMonitor`` performs single probes that never raise. ``HealthPoller``
schedules them: one check at start, then one per interval, plus reactive
checks via ``trigger()`` that run independently of the timer phase.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

import aiohttp

from .asyncio_utils import create_logged_task
from .logging_utils import get_module_logger
from .registry import BackendRegistry

logger = get_module_logger("HealthMonitor")

UNKNOWN_VERSION = "unknown"
_PROBE_ERRORS = (asyncio.TimeoutError, aiohttp.ClientError, OSError, ValueError)


@dataclass(frozen=True)
class HealthStatus:
    online: bool
    message: str

    @classmethod
    def backend_online(cls) -> "HealthStatus":
        return cls(True, "Backend is online")


class HealthMonitor:
    """Single-shot probes of ``/health`` and ``/version``."""

    def __init__(
        self,
        registry: BackendRegistry,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.registry = registry
        self.timeout = registry.settings.health_timeout if timeout is None else timeout
        self._session = session

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def _get_status(self, url: str) -> int:
        async with self._session_scope() as session:
            async with session.get(url) as response:
                await response.read()
                return response.status

    async def _get_json(self, url: str) -> Optional[object]:
        async with self._session_scope() as session:
            async with session.get(url) as response:
                if not 200 <= response.status < 300:
                    return None
                return await response.json(content_type=None)

    async def check_health(self, base_url: Optional[str] = None) -> HealthStatus:
        """Probe ``{base}/health``; the active backend unless ``base_url`` is given."""
        base = (base_url or await self.registry.active_url()).rstrip("/")
        logger.debug("Checking backend health at %s", base)

        try:
            status = await asyncio.wait_for(self._get_status(f"{base}/health"), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug("Backend health check timed out")
            return HealthStatus(False, "Backend health check timed out")
        except _PROBE_ERRORS as exc:
            logger.debug("Backend is offline: %s", exc)
            return HealthStatus(False, f"Backend is not reachable at {base}")

        if 200 <= status < 300:
            return HealthStatus.backend_online()
        logger.debug("Backend returned error status: %d", status)
        return HealthStatus(False, f"Backend returned status {status}")

    async def get_backend_version(self, base_url: Optional[str] = None) -> str:
        """Version string reported by ``{base}/version``, or ``"unknown"``."""
        base = (base_url or await self.registry.active_url()).rstrip("/")
        try:
            data = await asyncio.wait_for(self._get_json(f"{base}/version"), timeout=self.timeout)
        except _PROBE_ERRORS as exc:
            logger.debug("Failed to get backend version: %s", exc)
            return UNKNOWN_VERSION

        if isinstance(data, dict):
            version = data.get("version")
            if isinstance(version, str) and version:
                return version
        return UNKNOWN_VERSION


StatusCallback = Callable[[HealthStatus], Awaitable[None]]


class HealthPoller:
    """
    Cancellable scheduled health checks.

    Usage:
        poller = HealthPoller(monitor, interval=5.0, on_status=show_status)
        await poller.start()
        ...
        poller.trigger()          # after a failed transform
        ...
        await poller.stop()
    """

    def __init__(
        self,
        monitor: HealthMonitor,
        interval: Optional[float] = None,
        version_interval: Optional[float] = None,
        on_status: Optional[StatusCallback] = None,
        callback_timeout: float = 5.0,
    ):
        """
        Args:
            monitor: Performs each probe under its own timeout.
            interval: Seconds between scheduled health checks.
            version_interval: Seconds between version refreshes; 0 disables.
            on_status: Awaited after every check with the new status.
            callback_timeout: Deadline for ``on_status``.
        """
        settings = monitor.registry.settings
        self.monitor = monitor
        self.interval = settings.health_interval if interval is None else interval
        self.version_interval = settings.version_interval if version_interval is None else version_interval
        self.callback_timeout = callback_timeout
        self._on_status = on_status

        self._last_status: Optional[HealthStatus] = None
        self._backend_version = UNKNOWN_VERSION
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._version_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def last_status(self) -> Optional[HealthStatus]:
        return self._last_status

    @property
    def backend_version(self) -> str:
        return self._backend_version

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._poll_task = create_logged_task(self._poll_loop(), logger=logger, context="health-poll")
        if self.version_interval > 0:
            self._version_task = create_logged_task(
                self._version_loop(), logger=logger, context="version-poll"
            )
        logger.info("Health poller started (interval=%.1fs)", self.interval)

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in (self._poll_task, self._version_task, *self._pending) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._version_task = None
        self._pending.clear()
        logger.info("Health poller stopped")

    def trigger(self) -> asyncio.Task:
        """Run a check now, outside the scheduled cadence. Not awaited by the caller."""
        return create_logged_task(
            self.check_now(), logger=logger, context="health-reactive", pending=self._pending
        )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for reactive checks already in flight, up to ``timeout`` seconds."""
        pending = [t for t in self._pending if not t.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()

    async def check_now(self) -> HealthStatus:
        status = await self.monitor.check_health()
        await self.record(status)
        return status

    async def refresh_version(self) -> str:
        self._backend_version = await self.monitor.get_backend_version()
        return self._backend_version

    async def record(self, status: HealthStatus) -> None:
        """Publish ``status`` (from a probe or from a successful transform)."""
        previous = self._last_status
        self._last_status = status
        if previous is None or previous.online != status.online:
            logger.info("Backend is %s: %s", "ONLINE" if status.online else "OFFLINE", status.message)

        if self._on_status is None:
            return
        try:
            await asyncio.wait_for(self._on_status(status), timeout=self.callback_timeout)
        except asyncio.TimeoutError:
            logger.warning("Status callback timed out after %.1fs", self.callback_timeout)
        except Exception as e:
            logger.warning("Status callback error: %s", e)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.check_now()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Health poll error: %s", e)
            await asyncio.sleep(self.interval)

    async def _version_loop(self) -> None:
        while self._running:
            await self.refresh_version()
            await asyncio.sleep(self.version_interval)


__all__ = ["HealthStatus", "HealthMonitor", "HealthPoller", "UNKNOWN_VERSION"]
