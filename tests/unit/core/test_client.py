"""Unit tests for TransformationClient against aiohttp test backends.

Covers:
- Multipart request shape and result parsing
- Server error message extraction (JSON, text, bare status)
- Protocol errors on malformed 2xx bodies
- Timeout and connection failure classification
- No network traffic when validation fails
"""

from __future__ import annotations

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from image_transform.core.client import (
    CONNECT_MESSAGE,
    TIMEOUT_MESSAGE,
    TransformationClient,
    classify_network_error,
    extract_server_error,
)
from image_transform.core.errors import (
    BackendConnectionError,
    ProtocolError,
    RequestTimeoutError,
    ServerError,
    TransformError,
    ValidationError,
)
from image_transform.core.specs import ColorSpec, CropSpec, ImageFile, ResizeSpec, TransformationSpecs
from tests.unit.conftest import server_url

ENCODED = base64.b64encode(b"transformed pixels").decode()


def make_specs(**kwargs) -> TransformationSpecs:
    return TransformationSpecs(
        color=ColorSpec(hue=kwargs.get("hue", 30), saturation=kwargs.get("saturation", 1.2)),
        resize=ResizeSpec(width=kwargs.get("width", 800), height=kwargs.get("height", 600)),
        grayscale=kwargs.get("grayscale"),
        crop=kwargs.get("crop"),
    )


def make_image() -> ImageFile:
    return ImageFile(name="photo.png", content_type="image/png", data=b"\x89PNG fake bytes")


def backend_app(handler) -> web.Application:
    app = web.Application()
    app.router.add_post("/transform", handler)
    return app


def json_handler(payload, status=200):
    async def handler(request: web.Request) -> web.Response:
        await request.read()
        return web.json_response(payload, status=status)
    return handler


class TestTransformSuccess:

    @pytest.mark.asyncio
    async def test_multipart_request_and_result(self, make_registry):
        received = {}

        async def handler(request: web.Request) -> web.Response:
            form = await request.post()
            upload = form["image"]
            received["filename"] = upload.filename
            received["content_type"] = upload.content_type
            received["data"] = upload.file.read()
            received["transformations"] = json.loads(form["transformations"])
            return web.json_response({"image": ENCODED, "format": "png"})

        async with TestServer(backend_app(handler)) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            result = await client.transform(make_image(), make_specs(grayscale=False))

        assert received["filename"] == "photo.png"
        assert received["content_type"] == "image/png"
        assert received["data"] == b"\x89PNG fake bytes"
        assert received["transformations"] == {
            "color": {"hue": 30, "saturation": 1.2},
            "resize": {"width": 800, "height": 600},
            "grayscale": False,
        }
        assert result.image == ENCODED
        assert result.format == "png"
        assert result.crop_shape is None
        assert result.decode() == b"transformed pixels"

    @pytest.mark.asyncio
    async def test_crop_shape_echoed(self, make_registry):
        async with TestServer(backend_app(json_handler({"image": ENCODED, "format": "png"}))) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            specs = make_specs(crop=CropSpec(enabled=True, shape="circle", width=200, height=200))
            result = await client.transform(make_image(), specs)

        assert result.crop_shape == "circle"

    @pytest.mark.asyncio
    async def test_missing_format_defaults_to_png(self, make_registry):
        async with TestServer(backend_app(json_handler({"image": ENCODED}))) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            result = await client.transform(make_image(), make_specs())

        assert result.format == "png"

    @pytest.mark.asyncio
    async def test_pinned_selection_falls_back_to_latest(self, make_registry):
        async with TestServer(backend_app(json_handler({"image": ENCODED, "format": "webp"}))) as server:
            registry = make_registry(api_base_url_latest=server_url(server))
            await registry.set_selection("pinned")
            result = await TransformationClient(registry).transform(make_image(), make_specs())

        assert result.format == "webp"


class TestServerErrors:

    @pytest.mark.asyncio
    async def test_json_error_field(self, make_registry):
        handler = json_handler({"error": "Invalid image file"}, status=400)
        async with TestServer(backend_app(handler)) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            with pytest.raises(ServerError) as exc_info:
                await client.transform(make_image(), make_specs())

        assert exc_info.value.message == "Invalid image file"
        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_plain_text_body(self, make_registry):
        async def handler(request):
            return web.Response(status=500, text="x" * 300)

        async with TestServer(backend_app(handler)) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            with pytest.raises(ServerError) as exc_info:
                await client.transform(make_image(), make_specs())

        assert exc_info.value.message == "Server error: " + "x" * 200

    @pytest.mark.asyncio
    async def test_empty_body_reports_status(self, make_registry):
        async def handler(request):
            return web.Response(status=502)

        async with TestServer(backend_app(handler)) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            with pytest.raises(ServerError) as exc_info:
                await client.transform(make_image(), make_specs())

        assert exc_info.value.message == "Server error: 502"

    def test_extract_server_error_json_without_error_field(self):
        assert extract_server_error(422, "application/json", b'{"detail": "x"}') == "Server error: 422"

    def test_extract_server_error_broken_json(self):
        assert extract_server_error(500, "application/json", b"{oops") == "Server error: 500"


class TestProtocolErrors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,message", [
        ({"format": "png"}, "missing or invalid image data"),
        ({"image": 42}, "missing or invalid image data"),
        ({"image": "", "format": "png"}, "Server returned empty image data"),
        ({"image": ENCODED, "format": 7}, "format must be a string"),
        (["not", "an", "object"], "missing or invalid image data"),
    ])
    async def test_malformed_success_body(self, make_registry, body, message):
        async with TestServer(backend_app(json_handler(body))) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            with pytest.raises(ProtocolError) as exc_info:
                await client.transform(make_image(), make_specs())

        assert message in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_json_success_body(self, make_registry):
        async def handler(request):
            return web.Response(status=200, text="<html>proxy page</html>", content_type="text/html")

        async with TestServer(backend_app(handler)) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)))
            with pytest.raises(ProtocolError):
                await client.transform(make_image(), make_specs())


class TestNetworkFailures:

    @pytest.mark.asyncio
    async def test_timeout(self, make_registry):
        async def handler(request):
            await asyncio.sleep(0.5)
            return web.json_response({"image": ENCODED})

        async with TestServer(backend_app(handler)) as server:
            client = TransformationClient(make_registry(api_base_url_latest=server_url(server)), timeout=0.05)
            with pytest.raises(RequestTimeoutError) as exc_info:
                await client.transform(make_image(), make_specs())

        assert exc_info.value.message == TIMEOUT_MESSAGE

    @pytest.mark.asyncio
    async def test_connection_refused(self, make_registry, free_port):
        url = f"http://127.0.0.1:{free_port}"
        client = TransformationClient(make_registry(api_base_url_latest=url))

        with pytest.raises(BackendConnectionError) as exc_info:
            await client.transform(make_image(), make_specs())

        assert exc_info.value.message == CONNECT_MESSAGE.format(url=url)
        assert exc_info.value.url == url

    def test_classify_passthrough_and_fallback(self):
        original = ServerError("boom", status=500)
        assert classify_network_error(original, "http://x") is original

        generic = classify_network_error(RuntimeError("socket closed"), "http://x")
        assert type(generic) is TransformError
        assert generic.message == "socket closed"

        assert isinstance(classify_network_error(asyncio.TimeoutError(), "http://x"), RequestTimeoutError)


class TestValidationShortCircuit:

    @pytest.mark.asyncio
    async def test_invalid_hue_sends_nothing(self):
        registry = MagicMock()
        registry.active_url = AsyncMock(return_value="http://unused")
        client = TransformationClient(registry, timeout=1.0)

        with pytest.raises(ValidationError) as exc_info:
            await client.transform(make_image(), make_specs(hue=200))

        assert exc_info.value.message == "Hue must be between -180 and 180 (got 200)"
        registry.active_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsupported_file_sends_nothing(self):
        registry = MagicMock()
        registry.active_url = AsyncMock(return_value="http://unused")
        client = TransformationClient(registry, timeout=1.0)
        bmp = ImageFile(name="photo.bmp", content_type="image/bmp", data=b"BM")

        with pytest.raises(ValidationError):
            await client.transform(bmp, make_specs())

        registry.active_url.assert_not_awaited()
