"""
Transformation Client - one POST /transform per call.

Flow: validate (no network on failure) -> resolve base URL -> multipart POST
under a single deadline covering send and body read -> classify.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import aiohttp

from .errors import (
    BackendConnectionError,
    ProtocolError,
    RequestTimeoutError,
    ServerError,
    TransformError,
)
from .logging_utils import get_module_logger
from .registry import BackendRegistry
from .specs import DEFAULT_RESULT_FORMAT, CropShape, ImageFile, TransformationResult, TransformationSpecs
from .validation import validate_request

logger = get_module_logger("TransformationClient")

TIMEOUT_MESSAGE = "Request timed out. The server took too long to respond. Please try again."
CONNECT_MESSAGE = (
    "Cannot connect to the image processing server. "
    "Please ensure the backend is running at {url}"
)
UNEXPECTED_MESSAGE = "An unexpected error occurred"
ERROR_TEXT_LIMIT = 200


@dataclass(frozen=True)
class _RawResponse:
    status: int
    content_type: str
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def classify_network_error(exc: BaseException, url: str) -> TransformError:
    """Map a transport failure to a classified error.

    Independent of anything the server said; server payloads are handled by
    :func:`extract_server_error`.
    """
    if isinstance(exc, TransformError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return RequestTimeoutError(TIMEOUT_MESSAGE)
    if isinstance(exc, aiohttp.ClientConnectorError):
        return BackendConnectionError(CONNECT_MESSAGE.format(url=url), url=url)
    return TransformError(str(exc) or UNEXPECTED_MESSAGE)


def extract_server_error(status: int, content_type: str, body: bytes) -> str:
    """Best message for a non-2xx response: JSON ``error``, else text, else status."""
    message = f"Server error: {status}"
    try:
        if "application/json" in content_type:
            payload = json.loads(body)
            if isinstance(payload, dict) and payload.get("error"):
                message = str(payload["error"])
        else:
            text = body.decode("utf-8", errors="replace")
            if text:
                message = f"Server error: {text[:ERROR_TEXT_LIMIT]}"
    except ValueError:
        logger.debug("Could not parse error body for status %d", status)
    return message


def parse_result(body: bytes, specs: TransformationSpecs) -> TransformationResult:
    try:
        data: Any = json.loads(body)
    except ValueError as exc:
        raise ProtocolError("Invalid response from server: body is not valid JSON") from exc

    if not isinstance(data, dict) or not isinstance(data.get("image"), str):
        raise ProtocolError("Invalid response from server: missing or invalid image data")

    fmt = data.get("format")
    if fmt is not None and not isinstance(fmt, str):
        raise ProtocolError("Invalid response from server: format must be a string")

    if not data["image"]:
        raise ProtocolError("Server returned empty image data")

    crop_shape = None
    if specs.crop_enabled:
        shape = specs.crop.shape
        crop_shape = shape.value if isinstance(shape, CropShape) else shape

    return TransformationResult(
        image=data["image"],
        format=fmt or DEFAULT_RESULT_FORMAT,
        crop_shape=crop_shape,
    )


class TransformationClient:
    """
    Executes transform requests against the active backend.

    Usage:
        client = TransformationClient(registry)
        image = await ImageFile.load("photo.png")
        result = await client.transform(image, specs)
        await result.save("out/")
    """

    def __init__(
        self,
        registry: BackendRegistry,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            registry: Source of the active base URL.
            timeout: Whole-request deadline in seconds; defaults to
                ``settings.request_timeout``.
            session: Shared session. When omitted each call opens its own.
        """
        self.registry = registry
        self.timeout = registry.settings.request_timeout if timeout is None else timeout
        self._session = session

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    @staticmethod
    def _build_form(image: ImageFile, specs: TransformationSpecs) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("image", image.data, filename=image.name, content_type=image.content_type)
        form.add_field("transformations", json.dumps(specs.to_dict()))
        return form

    async def _post(self, url: str, form: aiohttp.FormData) -> _RawResponse:
        async with self._session_scope() as session:
            async with session.post(url, data=form) as response:
                body = await response.read()
                return _RawResponse(response.status, response.content_type or "", body)

    async def transform(self, image: ImageFile, specs: TransformationSpecs) -> TransformationResult:
        validate_request(image, specs)

        base_url = await self.registry.active_url()
        url = f"{base_url}/transform"
        form = self._build_form(image, specs)

        logger.info("POST %s (%s, %d bytes)", url, image.name, image.size)
        try:
            raw = await asyncio.wait_for(self._post(url, form), timeout=self.timeout)
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as exc:
            error = classify_network_error(exc, base_url)
            logger.warning("Transform request failed: %s", error.message)
            raise error from exc

        if not raw.ok:
            message = extract_server_error(raw.status, raw.content_type, raw.body)
            logger.warning("Backend returned %d: %s", raw.status, message)
            raise ServerError(message, status=raw.status)

        result = parse_result(raw.body, specs)
        logger.info("Transform complete (%s, %d base64 chars)", result.format, len(result.image))
        return result


__all__ = [
    "TransformationClient",
    "classify_network_error",
    "extract_server_error",
    "parse_result",
    "TIMEOUT_MESSAGE",
    "CONNECT_MESSAGE",
]
