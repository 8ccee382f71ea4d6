"""
Backend Process - one supervised instance of the bundled backend.

The process counts as Running only once its ``/health`` endpoint answers;
spawning alone leaves it in STARTING.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from .errors import ProcessError
from .logging_utils import get_module_logger
from .process_state import ProcessInfo, ProcessState

ReadinessProbe = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class StartResult:
    started: bool
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"started": self.started}
        if self.message:
            payload["message"] = self.message
        return payload


class BackendProcess:

    def __init__(
        self,
        version: str,
        command: Sequence[str],
        ready_probe: ReadinessProbe,
        startup_timeout: float = 15.0,
        stop_timeout: float = 5.0,
        poll_interval: float = 0.25,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
    ):
        self.version = version
        self.command = list(command)
        self.startup_timeout = startup_timeout
        self.stop_timeout = stop_timeout
        self.poll_interval = poll_interval
        self.env = dict(env) if env is not None else None
        self.cwd = cwd
        self._ready_probe = ready_probe

        self.logger = get_module_logger("BackendProcess", component=f"BackendProcess {version}")
        self.info = ProcessInfo(version=version)

        self.process: Optional[asyncio.subprocess.Process] = None
        self.stdout_task: Optional[asyncio.Task] = None
        self.stderr_task: Optional[asyncio.Task] = None
        self.monitor_task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def state(self) -> ProcessState:
        return self.info.state

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def is_running(self) -> bool:
        return (
            self.info.is_running()
            and self.process is not None
            and self.process.returncode is None
        )

    async def start(self) -> StartResult:
        if self.process is not None:
            self.logger.warning("Process already started")
            return StartResult(self.is_running(), "Backend process already started")

        self.logger.info("Starting backend %s", self.version)
        self.info.transition_to(ProcessState.STARTING)
        self._stopping = False

        env = os.environ.copy()
        if self.env:
            env.update(self.env)

        self.logger.debug("Command: %s", " ".join(self.command))
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=str(self.cwd) if self.cwd else None,
            )
        except OSError as e:
            message = f"Failed to launch backend {self.version}: {e}"
            self.logger.error(message)
            self.info.transition_to(ProcessState.STOPPED)
            self.info.error_message = message
            return StartResult(False, message)

        self.logger.info("Process started with PID: %d", self.process.pid)
        self.stdout_task = asyncio.create_task(self._stream_reader(self.process.stdout, "stdout"))
        self.stderr_task = asyncio.create_task(self._stream_reader(self.process.stderr, "stderr"))
        self.monitor_task = asyncio.create_task(self._process_monitor())

        try:
            await self._wait_until_ready()
        except ProcessError as e:
            message = str(e)
            self.logger.error("Backend %s failed to start: %s", self.version, message)
            await self.stop()
            self.info.error_message = message
            return StartResult(False, message)

        self.info.transition_to(ProcessState.RUNNING)
        self.logger.info("Backend %s is running", self.version)
        return StartResult(True, f"Backend {self.version} running (PID {self.process.pid})")

    async def _wait_until_ready(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout

        while True:
            if self.process is None or self.process.returncode is not None:
                code = self.process.returncode if self.process else None
                raise ProcessError(f"Backend exited with code {code} before becoming ready")
            if await self._ready_probe():
                return
            if loop.time() >= deadline:
                raise ProcessError(
                    f"Backend did not become ready within {self.startup_timeout:.0f}s"
                )
            await asyncio.sleep(self.poll_interval)

    async def _stream_reader(self, stream: Optional[asyncio.StreamReader], name: str) -> None:
        if stream is None:
            return

        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode(errors="replace").strip()
                if not text:
                    continue
                if name == "stderr":
                    self.logger.warning("Backend stderr: %s", text)
                else:
                    self.logger.debug("Backend output: %s", text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("%s reader error: %s", name, e)

    async def _process_monitor(self) -> None:
        if not self.process:
            return

        returncode = await self.process.wait()
        if self._stopping:
            return

        if returncode == 0:
            self.logger.info("Backend exited normally")
        else:
            self.logger.error("Backend crashed with exit code: %d", returncode)
            self.info.error_message = f"Process exited with code {returncode}"
        self.info.transition_to(ProcessState.STOPPED)

    async def stop(self) -> None:
        """Terminate, then kill after ``stop_timeout``. Safe when already stopped."""
        if self.process is None:
            self.logger.debug("Process not running")
            return

        self._stopping = True
        process = self.process
        self.logger.info("Stopping backend %s", self.version)

        try:
            if process.returncode is None:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
                    self.logger.info("Process stopped gracefully")
                except asyncio.TimeoutError:
                    self.logger.warning("Process did not terminate, killing...")
                    process.kill()
                    await process.wait()
        except ProcessLookupError:
            self.logger.debug("Process already gone")
        finally:
            for task in (self.stdout_task, self.stderr_task, self.monitor_task):
                if task and not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

            self.process = None
            self.info.transition_to(ProcessState.STOPPED)
            self.logger.info("Backend stopped: %s", self.version)


__all__ = ["BackendProcess", "StartResult", "ReadinessProbe"]
