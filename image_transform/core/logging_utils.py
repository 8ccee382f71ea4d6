"""Component-tagged loggers for the image transform client.

Every logger handed out here lives under the ``image_transform`` namespace
and prefixes its messages with the component that emitted them::

    [TransformationClient] POST http://127.0.0.1:8000/transform (photo.png, 5120 bytes)
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, Tuple, Union

LOGGER_NAMESPACE = "image_transform"
DEFAULT_COMPONENT = "Client"


def qualified_name(name: Optional[str]) -> str:
    if not name or name == LOGGER_NAMESPACE:
        return LOGGER_NAMESPACE
    if name.startswith(LOGGER_NAMESPACE + "."):
        return name
    return f"{LOGGER_NAMESPACE}.{name}"


def component_for(logger_name: str) -> str:
    # image_transform.app.master -> master
    parent, _, leaf = logger_name.rpartition(".")
    return leaf if parent else DEFAULT_COMPONENT


class StructuredLogger(logging.LoggerAdapter):
    """Adapter that tags each message with ``[component]``."""

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        super().__init__(logger, {})
        self.component = component or component_for(logger.name)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        tag = f"[{self.component}]"
        text = str(msg)
        if not text.startswith(tag):
            text = f"{tag} {text}"
        return text, kwargs

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(self.logger.getChild(suffix), component=f"{self.component}.{suffix}")

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"StructuredLogger({self.logger.name!r}, component={self.component!r})"


LoggerLike = Union[StructuredLogger, logging.Logger, None]


def as_structured_logger(logger: LoggerLike, default_name: Optional[str] = None) -> StructuredLogger:
    if isinstance(logger, StructuredLogger):
        return logger
    if logger is None:
        return get_module_logger(default_name)
    return StructuredLogger(logger)


def get_module_logger(name: Optional[str] = None, component: Optional[str] = None) -> StructuredLogger:
    """Logger ``image_transform.<name>``, tagged with ``component`` or the last name segment."""
    return StructuredLogger(logging.getLogger(qualified_name(name)), component=component)


__all__ = [
    "StructuredLogger",
    "LoggerLike",
    "as_structured_logger",
    "get_module_logger",
    "LOGGER_NAMESPACE",
]
