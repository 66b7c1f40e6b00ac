"""
Cardshelf - Bounding Box Decoding

Object-detection responses come in several loosely-structured shapes. Each
prediction is decoded by trying the known shapes in order:

- CornerBox: left/top/right/bottom (aliases xmin/ymin/xmax/ymax, x1/y1/x2/y2, x0/y0)
- CenterBox: x/y center with width/height

When width and height are both <= 1 the coordinates are fractions of the
image size. A nested "bbox" object is unwrapped first. Anything else is
unrecognized (None).
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, NamedTuple

import structlog

from cardshelf.config import settings

logger = structlog.get_logger(__name__)

_LEFT_KEYS = ("left", "xmin", "x1", "x0")
_TOP_KEYS = ("top", "ymin", "y1", "y0")
_RIGHT_KEYS = ("right", "xmax", "x2")
_BOTTOM_KEYS = ("bottom", "ymax", "y2")


class DetectionError(ValueError):
    """No usable card region in the detection result."""


class BoundingBox(NamedTuple):
    """Pixel-space box, top-left origin."""
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height


class CornerBox(NamedTuple):
    left: float
    top: float
    right: float
    bottom: float


class CenterBox(NamedTuple):
    x: float
    y: float
    width: float
    height: float


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _first_number(raw: Mapping[str, Any], keys: Iterable[str]) -> float | None:
    for key in keys:
        number = _number(raw.get(key))
        if number is not None:
            return number
    return None


def _decode_shape(raw: Mapping[str, Any]) -> CornerBox | CenterBox | None:
    left = _first_number(raw, _LEFT_KEYS)
    top = _first_number(raw, _TOP_KEYS)
    right = _first_number(raw, _RIGHT_KEYS)
    bottom = _first_number(raw, _BOTTOM_KEYS)
    if None not in (left, top, right, bottom):
        return CornerBox(left, top, right, bottom)

    x, y = _number(raw.get("x")), _number(raw.get("y"))
    width, height = _number(raw.get("width")), _number(raw.get("height"))
    if None not in (x, y, width, height):
        return CenterBox(x, y, width, height)
    return None


def decode_bbox(prediction: Any, image_width: int, image_height: int) -> BoundingBox | None:
    """Decode one prediction into a pixel BoundingBox, or None if unrecognized."""
    if not isinstance(prediction, Mapping):
        return None
    raw = prediction.get("bbox")
    if not isinstance(raw, Mapping):
        raw = prediction

    shape = _decode_shape(raw)
    if shape is None:
        return None

    width, height = _number(raw.get("width")), _number(raw.get("height"))
    normalized = width is not None and height is not None and width <= 1 and height <= 1
    sx = image_width if normalized else 1
    sy = image_height if normalized else 1

    if isinstance(shape, CornerBox):
        left, right = shape.left * sx, shape.right * sx
        top, bottom = shape.top * sy, shape.bottom * sy
        return BoundingBox(
            x=round(left), y=round(top),
            width=round(right - left), height=round(bottom - top),
        )

    box_width, box_height = shape.width * sx, shape.height * sy
    return BoundingBox(
        x=round(shape.x * sx - box_width / 2),
        y=round(shape.y * sy - box_height / 2),
        width=round(box_width),
        height=round(box_height),
    )


def collect_predictions(payload: Any) -> list[Any]:
    """Every entry of every "predictions" list anywhere in a nested payload."""
    predictions: list[Any] = []
    stack = [payload]
    while stack:
        current = stack.pop()
        if isinstance(current, list):
            stack.extend(current)
            continue
        if not isinstance(current, Mapping):
            continue
        if isinstance(current.get("predictions"), list):
            predictions.extend(current["predictions"])
        stack.extend(v for v in current.values() if isinstance(v, (Mapping, list)))
    return predictions


def select_largest(
    predictions: Iterable[Any],
    image_width: int,
    image_height: int,
) -> BoundingBox | None:
    """Largest positive-area box among the decodable predictions."""
    best: BoundingBox | None = None
    for prediction in predictions:
        box = decode_bbox(prediction, image_width, image_height)
        if box is None or box.width <= 0 or box.height <= 0:
            continue
        if best is None or box.area > best.area:
            best = box
    return best


def pad_and_clamp(
    box: BoundingBox,
    image_width: int,
    image_height: int,
    pad_ratio: Decimal = settings.CROP_PAD_RATIO,
) -> BoundingBox:
    """
    Grow the box by pad_ratio of its longest edge on every side, then clamp
    it to the image.

    Raises:
        DetectionError: If the clamped box is too small to crop.
    """
    pad = round(float(pad_ratio) * max(box.width, box.height))
    x = max(0, box.x - pad)
    y = max(0, box.y - pad)
    width = min(image_width - x, box.width + pad * 2)
    height = min(image_height - y, box.height + pad * 2)

    if width <= settings.CROP_MIN_EDGE_PX or height <= settings.CROP_MIN_EDGE_PX:
        raise DetectionError("Detected bbox too small after clamping.")

    logger.debug(
        "bbox_padded",
        x=x, y=y, width=width, height=height, pad=pad,
        source="detection",
    )
    return BoundingBox(x=x, y=y, width=width, height=height)
