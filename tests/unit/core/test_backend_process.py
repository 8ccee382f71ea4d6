"""Unit tests for BackendProcess using real short-lived child processes."""

import asyncio
import sys

import pytest

from image_transform.core.backend_process import BackendProcess
from image_transform.core.process_state import ProcessState

pytestmark = pytest.mark.subprocess

SLEEPER = [sys.executable, "-c", "import time; time.sleep(30)"]


def probe(result: bool):
    async def _probe() -> bool:
        return result
    return _probe


async def wait_for_state(process: BackendProcess, state: ProcessState, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while process.state is not state:
        if loop.time() > deadline:
            raise AssertionError(f"state stayed {process.state}")
        await asyncio.sleep(0.02)


@pytest.mark.asyncio
async def test_running_once_ready_then_stop():
    process = BackendProcess("1.0.0", SLEEPER, ready_probe=probe(True), stop_timeout=2.0)

    result = await process.start()

    assert result.started
    assert process.state is ProcessState.RUNNING
    assert process.is_running()
    assert process.pid is not None

    await process.stop()

    assert process.state is ProcessState.STOPPED
    assert not process.is_running()
    assert process.pid is None


@pytest.mark.asyncio
async def test_not_ready_within_timeout():
    process = BackendProcess(
        "1.0.0", SLEEPER, ready_probe=probe(False), startup_timeout=0.3, poll_interval=0.05
    )

    result = await process.start()

    assert not result.started
    assert "did not become ready" in result.message
    assert process.state is ProcessState.STOPPED
    assert process.info.error_message == result.message


@pytest.mark.asyncio
async def test_exit_before_ready():
    command = [sys.executable, "-c", "import sys; sys.exit(3)"]
    process = BackendProcess("1.0.0", command, ready_probe=probe(False), startup_timeout=5.0, poll_interval=0.05)

    result = await process.start()

    assert not result.started
    assert "exited with code 3" in result.message
    assert process.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_launch_failure(tmp_path):
    process = BackendProcess("1.0.0", [str(tmp_path / "missing-backend")], ready_probe=probe(True))

    result = await process.start()

    assert not result.started
    assert result.message.startswith("Failed to launch backend 1.0.0")
    assert process.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_crash_after_running_is_detected():
    command = [sys.executable, "-c", "import sys, time; time.sleep(0.3); sys.exit(2)"]
    process = BackendProcess("1.0.0", command, ready_probe=probe(True))

    assert (await process.start()).started
    await wait_for_state(process, ProcessState.STOPPED)

    assert process.info.error_message == "Process exited with code 2"
    await process.stop()


@pytest.mark.asyncio
async def test_environment_passed_to_child(tmp_path):
    marker = tmp_path / "env.txt"
    command = [
        sys.executable, "-c",
        "import os, pathlib, sys, time; "
        "pathlib.Path(sys.argv[1]).write_text(os.environ['BACKEND_VERSION']); time.sleep(30)",
        str(marker),
    ]

    async def ready() -> bool:
        return marker.exists()

    process = BackendProcess("2.0.0", command, ready_probe=ready, env={"BACKEND_VERSION": "2.0.0"})
    try:
        assert (await process.start()).started
        assert marker.read_text() == "2.0.0"
    finally:
        await process.stop()


@pytest.mark.asyncio
async def test_stop_when_never_started_is_safe():
    process = BackendProcess("1.0.0", SLEEPER, ready_probe=probe(True))
    await process.stop()
    assert process.state is ProcessState.STOPPED
