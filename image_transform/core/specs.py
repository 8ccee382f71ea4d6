"""
Request and result types exchanged with the transform backend.

``TransformationSpecs.to_dict`` produces the JSON carried in the multipart
``transformations`` field; ``from_dict`` accepts the same shape from untyped
callers (scripts, ``--specs`` on the CLI) without coercing values, so the
validator sees exactly what was supplied.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import aiofiles

from .errors import ProtocolError, ValidationError

DEFAULT_RESULT_FORMAT = "png"


class CropShape(str, Enum):
    RECTANGLE = "rectangle"
    SQUARE = "square"
    CIRCLE = "circle"
    ELLIPSE = "ellipse"


VALID_CROP_SHAPES = tuple(shape.value for shape in CropShape)


@dataclass
class ColorSpec:
    hue: Any = 0
    saturation: Any = 1


@dataclass
class ResizeSpec:
    width: Any
    height: Any


@dataclass
class CropSpec:
    enabled: Any = False
    shape: Any = CropShape.RECTANGLE.value
    width: Any = 0
    height: Any = 0


def _require_mapping(data: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError(f"'{name}' must be an object", field=name, value=data)
    return data


def _require_key(data: Mapping[str, Any], key: str, prefix: str) -> Any:
    if key not in data:
        raise ValidationError(f"Missing required field '{prefix}.{key}'", field=f"{prefix}.{key}")
    return data[key]


@dataclass
class TransformationSpecs:
    """Declarative transform request. Field types are checked by the validator."""

    color: ColorSpec
    resize: ResizeSpec
    grayscale: Any = None
    crop: Optional[CropSpec] = None

    @classmethod
    def from_dict(cls, data: Any) -> "TransformationSpecs":
        data = _require_mapping(data, "transformations")
        color = _require_mapping(_require_key(data, "color", "transformations"), "color")
        resize = _require_mapping(_require_key(data, "resize", "transformations"), "resize")

        crop: Optional[CropSpec] = None
        raw_crop = data.get("crop")
        if raw_crop is not None:
            raw_crop = _require_mapping(raw_crop, "crop")
            crop = CropSpec(
                enabled=raw_crop.get("enabled", False),
                shape=raw_crop.get("shape", CropShape.RECTANGLE.value),
                width=raw_crop.get("width", 0),
                height=raw_crop.get("height", 0),
            )

        return cls(
            color=ColorSpec(
                hue=_require_key(color, "hue", "color"),
                saturation=_require_key(color, "saturation", "color"),
            ),
            resize=ResizeSpec(
                width=_require_key(resize, "width", "resize"),
                height=_require_key(resize, "height", "resize"),
            ),
            grayscale=data.get("grayscale"),
            crop=crop,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "color": {"hue": self.color.hue, "saturation": self.color.saturation},
            "resize": {"width": self.resize.width, "height": self.resize.height},
        }
        if self.grayscale is not None:
            payload["grayscale"] = self.grayscale
        if self.crop is not None:
            shape = self.crop.shape
            payload["crop"] = {
                "enabled": self.crop.enabled,
                "shape": shape.value if isinstance(shape, CropShape) else shape,
                "width": self.crop.width,
                "height": self.crop.height,
            }
        return payload

    @property
    def crop_enabled(self) -> bool:
        return self.crop is not None and bool(self.crop.enabled)


@dataclass(frozen=True)
class ImageFile:
    """Raw image bytes plus the metadata the validator needs."""

    name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    async def load(cls, path: Union[str, Path], content_type: Optional[str] = None) -> "ImageFile":
        """Read ``path`` and guess its MIME type from the extension."""
        path = Path(path)
        async with aiofiles.open(path, "rb") as fh:
            data = await fh.read()
        if content_type is None:
            content_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, content_type=content_type or "application/octet-stream", data=data)


@dataclass(frozen=True)
class TransformationResult:
    image: str = field(repr=False)
    format: str = DEFAULT_RESULT_FORMAT
    crop_shape: Optional[str] = None

    @property
    def default_filename(self) -> str:
        return f"transformed-image.{self.format}"

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.image, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProtocolError(f"Server returned image data that is not valid base64: {exc}") from exc

    async def save(self, path: Union[str, Path]) -> Path:
        """Write the decoded image to ``path`` (a directory gets the default file name)."""
        target = Path(path)
        if await asyncio.to_thread(target.is_dir):
            target = target / self.default_filename
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as fh:
            await fh.write(self.decode())
        return target

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"image": self.image, "format": self.format}
        if self.crop_shape is not None:
            payload["cropShape"] = self.crop_shape
        return payload


__all__ = [
    "CropShape",
    "VALID_CROP_SHAPES",
    "ColorSpec",
    "ResizeSpec",
    "CropSpec",
    "TransformationSpecs",
    "ImageFile",
    "TransformationResult",
    "DEFAULT_RESULT_FORMAT",
]
