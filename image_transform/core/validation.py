"""Pre-flight checks run before any network call.

All checks are synchronous and fail fast on the first violation with a
:class:`ValidationError` naming the constraint and the offending value.
"""

from __future__ import annotations

import numbers
from typing import Any

from .errors import ValidationError
from .specs import VALID_CROP_SHAPES, ImageFile, TransformationSpecs

MAX_FILE_SIZE = 50 * 1024 * 1024
SUPPORTED_FORMATS = ("image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif")

HUE_RANGE = (-180, 180)
SATURATION_RANGE = (0, 3)
MAX_DIMENSION = 10000


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Integral):
        return True
    return isinstance(value, float) and value.is_integer()


def _check_range(value: Any, low: float, high: float, label: str, field: str) -> None:
    if not _is_number(value):
        raise ValidationError(f"{label} must be a number (got {value!r})", field=field, value=value)
    # written as a negated range test so NaN is rejected too
    if not (low <= value <= high):
        raise ValidationError(
            f"{label} must be between {low} and {high} (got {value})", field=field, value=value
        )


def _check_dimensions(width: Any, height: Any, label: str, field: str) -> None:
    for name, value in (("width", width), ("height", height)):
        if not _is_whole_number(value):
            raise ValidationError(
                f"{label} {name} must be a whole number (got {value!r})",
                field=f"{field}.{name}",
                value=value,
            )
        if value <= 0:
            raise ValidationError(
                f"{label} width and height must be positive numbers (got {name}={value})",
                field=f"{field}.{name}",
                value=value,
            )
        if value > MAX_DIMENSION:
            raise ValidationError(
                f"{label} width and height must not exceed {MAX_DIMENSION} pixels (got {name}={value})",
                field=f"{field}.{name}",
                value=value,
            )


def validate_file(image: ImageFile) -> None:
    if image.content_type not in SUPPORTED_FORMATS:
        raise ValidationError(
            f"Unsupported image format: {image.content_type}. Supported formats: PNG, JPEG, WebP, GIF",
            field="image",
            value=image.content_type,
        )

    if image.size > MAX_FILE_SIZE:
        size_mb = image.size / (1024 * 1024)
        max_mb = MAX_FILE_SIZE // (1024 * 1024)
        raise ValidationError(
            f"Image file is too large: {size_mb:.2f}MB. Maximum allowed size: {max_mb}MB",
            field="image",
            value=image.size,
        )


def validate_specs(specs: TransformationSpecs) -> None:
    """Check hue, saturation, grayscale, crop and resize, in that order."""
    _check_range(specs.color.hue, *HUE_RANGE, "Hue", "color.hue")
    _check_range(specs.color.saturation, *SATURATION_RANGE, "Saturation", "color.saturation")

    if specs.grayscale is not None and not isinstance(specs.grayscale, bool):
        raise ValidationError(
            f"Grayscale must be a boolean value (got {specs.grayscale!r})",
            field="grayscale",
            value=specs.grayscale,
        )

    if specs.crop_enabled:
        crop = specs.crop
        if crop.shape not in VALID_CROP_SHAPES:
            raise ValidationError(
                f"Crop shape must be one of: {', '.join(VALID_CROP_SHAPES)} (got {crop.shape!r})",
                field="crop.shape",
                value=crop.shape,
            )
        _check_dimensions(crop.width, crop.height, "Crop", "crop")

    # resize is ignored by the backend when cropping, but it is always sent
    _check_dimensions(specs.resize.width, specs.resize.height, "Resize", "resize")


def validate_request(image: ImageFile, specs: TransformationSpecs) -> None:
    """File first, then specs."""
    validate_file(image)
    validate_specs(specs)


__all__ = [
    "validate_file",
    "validate_specs",
    "validate_request",
    "MAX_FILE_SIZE",
    "SUPPORTED_FORMATS",
    "MAX_DIMENSION",
]
