"""Plain ``key = value`` files: the settings file and the preferences file.

A ``#`` starts a comment at the beginning of a line, or after whitespace
inside a value (so ``http://host/#frag`` survives). Writes merge keys into
the existing text, keeping comments and ordering.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import aiofiles

from .logging_utils import get_module_logger

logger = get_module_logger("ConfigManager")

T = TypeVar("T")

TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
FALSE_WORDS = frozenset({"false", "0", "no", "off"})
INLINE_COMMENT = " #"


def format_value(value: Any) -> str:
    return str(value).lower() if isinstance(value, bool) else str(value)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _split_entry(line: str) -> Optional[Tuple[str, str]]:
    """``(key, raw value)`` for an assignment; None for blanks, comments and junk."""
    text = line.strip()
    if not text or text.startswith("#"):
        return None
    key, sep, value = text.partition("=")
    if not sep:
        return None
    return key.strip(), value.strip()


def parse_lines(lines: Iterable[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in lines:
        entry = _split_entry(line)
        if entry is None:
            continue
        key, value = entry
        value = value.split(INLINE_COMMENT, 1)[0].strip()
        values[key] = _unquote(value)
    return values


def merge_lines(lines: Iterable[str], updates: Dict[str, Any]) -> List[str]:
    """Rewrite the assignments of updated keys in place and append new keys."""
    merged: List[str] = []
    written = set()

    for line in lines:
        entry = _split_entry(line)
        if entry is not None and entry[0] in updates:
            key = entry[0]
            indent = line[: len(line) - len(line.lstrip())]
            line = f"{indent}{key} = {format_value(updates[key])}\n"
            written.add(key)
        elif not line.endswith("\n"):
            line += "\n"
        merged.append(line)

    for key, value in updates.items():
        if key not in written:
            merged.append(f"{key} = {format_value(value)}\n")
            logger.debug("Added new config key: %s = %s", key, value)
    return merged


def _parse_bool(raw: str) -> bool:
    word = raw.strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ValueError(raw)


class ConfigManager:
    """Reads and merges ``key = value`` files. Writes through one instance are serialized."""

    def __init__(self):
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def lock(self) -> asyncio.Lock:
        """Write lock for the running event loop; a new loop gets a fresh lock."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Blocking read for startup code that runs before the event loop."""
        try:
            text = Path(config_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read config %s: %s", config_path, e)
            return {}
        return parse_lines(text.splitlines())

    @staticmethod
    async def _read_lines(config_path: Path) -> List[str]:
        try:
            async with aiofiles.open(config_path, "r", encoding="utf-8") as fh:
                return await fh.readlines()
        except FileNotFoundError:
            return []

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        try:
            lines = await self._read_lines(Path(config_path))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read config %s: %s", config_path, e)
            return {}
        return parse_lines(lines)

    async def write_config_async(self, config_path: Path, updates: Dict[str, Any]) -> bool:
        """Merge ``updates`` into ``config_path``, creating it and its parents if needed."""
        config_path = Path(config_path)
        async with self.lock:
            try:
                await asyncio.to_thread(config_path.parent.mkdir, parents=True, exist_ok=True)
                merged = merge_lines(await self._read_lines(config_path), updates)
                async with aiofiles.open(config_path, "w", encoding="utf-8") as fh:
                    await fh.write("".join(merged))
            except (OSError, UnicodeDecodeError) as e:
                logger.error("Failed to write config %s: %s", config_path, e)
                return False
        return True

    @staticmethod
    def _typed(config: Dict[str, str], key: str, default: T, convert: Callable[[str], T], kind: str) -> T:
        raw = config.get(key)
        if raw is None:
            return default
        try:
            return convert(raw)
        except ValueError:
            logger.warning("Invalid %s value for %s: %r, using default %r", kind, key, raw, default)
            return default

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        return self._typed(config, key, default, _parse_bool, "bool")

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        return self._typed(config, key, default, int, "int")

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        return self._typed(config, key, default, float, "float")

    def get_str(self, config: Dict[str, str], key: str, default: Optional[str] = "") -> Optional[str]:
        return config.get(key) or default


_shared = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _shared
