"""Shared pytest configuration and fixtures for the image transform test suite."""

import os
import socket
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Per-user state (preferences, backend-config.json, logs) goes to a throwaway
# directory; must be set before image_transform.core.paths is imported.
TEST_STATE_DIR = Path(tempfile.mkdtemp(prefix="image-transform-tests-"))
os.environ["IMAGE_TRANSFORM_STATE_DIR"] = str(TEST_STATE_DIR)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "subprocess: mark test as spawning real child processes"
    )


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def free_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep IMAGE_TRANSFORM_* variables from the developer's shell out of tests."""
    from image_transform.core.settings import ENV_KEYS

    for env_key in ENV_KEYS.values():
        monkeypatch.delenv(env_key, raising=False)
