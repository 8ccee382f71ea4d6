"""Centralized path constants for the image transform client."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def _is_nuitka() -> bool:
    """Check if running as a Nuitka compiled binary."""
    return '__compiled__' in globals() or (getattr(sys, 'frozen', False) and not hasattr(sys, '_MEIPASS'))


def _is_pyinstaller() -> bool:
    """Check if running as a PyInstaller bundle."""
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def _is_frozen() -> bool:
    """Check if running as a frozen/compiled application (PyInstaller or Nuitka)."""
    return _is_pyinstaller() or _is_nuitka()


def is_packaged() -> bool:
    """True when running from an installed bundle that ships its own backends."""
    return _is_frozen()


def _get_packaged_resources_dir() -> Path:
    """Resources directory of a packaged build.

    PyInstaller extracts data next to ``sys._MEIPASS``; other bundles keep
    ``resources/`` beside the executable.
    """
    if _is_pyinstaller():
        return Path(sys._MEIPASS) / "resources"
    return Path(sys.executable).resolve().parent / "resources"


PROJECT_ROOT = Path(__file__).resolve().parents[2]
PACKAGE_ROOT = PROJECT_ROOT / "image_transform"

# Configuration
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# Bundled resources (packaged layout first, development checkout second)
PACKAGED_RESOURCES_DIR = _get_packaged_resources_dir()
DEV_RESOURCES_DIR = PROJECT_ROOT / "resources"
BACKEND_RESOURCES_SUBDIR = "backend"
VERSIONS_MANIFEST_NAME = "versions.json"

# User-specific state
_USER_STATE_ENV = os.environ.get("IMAGE_TRANSFORM_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".image_transform")
BACKEND_CONFIG_FILE = USER_STATE_DIR / "backend-config.json"
PREFERENCES_FILE = USER_STATE_DIR / "preferences.txt"
LOGS_DIR = USER_STATE_DIR / "logs"
CLIENT_LOG_FILE = LOGS_DIR / "image_transform.log"


def versions_manifest_candidates() -> list[Path]:
    """Manifest locations in lookup order."""
    return [
        PACKAGED_RESOURCES_DIR / BACKEND_RESOURCES_SUBDIR / VERSIONS_MANIFEST_NAME,
        DEV_RESOURCES_DIR / BACKEND_RESOURCES_SUBDIR / VERSIONS_MANIFEST_NAME,
    ]


def backend_resources_dirs() -> list[Path]:
    """Directories that may hold per-version backend executables."""
    return [
        PACKAGED_RESOURCES_DIR / BACKEND_RESOURCES_SUBDIR,
        DEV_RESOURCES_DIR / BACKEND_RESOURCES_SUBDIR,
    ]


def ensure_directories() -> None:
    """Create necessary directories if they don't exist."""

    USER_STATE_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    'PROJECT_ROOT',
    'PACKAGE_ROOT',
    'CONFIG_PATH',
    'PACKAGED_RESOURCES_DIR',
    'DEV_RESOURCES_DIR',
    'USER_STATE_DIR',
    'BACKEND_CONFIG_FILE',
    'PREFERENCES_FILE',
    'LOGS_DIR',
    'CLIENT_LOG_FILE',
    'versions_manifest_candidates',
    'backend_resources_dirs',
    'ensure_directories',
    'is_packaged',
    '_is_frozen',
    '_is_nuitka',
    '_is_pyinstaller',
]
