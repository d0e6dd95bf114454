"""Bounding box arithmetic used to build edit regions."""

from typing import Iterable

from .errors import InvalidArgument
from .schemas import BoundingBox


def union(boxes: Iterable[BoundingBox]) -> BoundingBox:
    """Smallest box containing every input box.

    Raises:
        InvalidArgument: If no boxes are given.
    """
    boxes = list(boxes)
    if not boxes:
        raise InvalidArgument("union requires at least one bounding box")

    min_x = min(b.x for b in boxes)
    min_y = min(b.y for b in boxes)
    max_x = max(b.right for b in boxes)
    max_y = max(b.bottom for b in boxes)

    return BoundingBox(x=min_x, y=min_y, w=max_x - min_x, h=max_y - min_y)


def expand(box: BoundingBox, margin: int) -> BoundingBox:
    """Grow a box by ``margin`` pixels on every side, never past the origin."""
    if margin < 0:
        raise InvalidArgument(f"margin must be non-negative, got {margin}")

    return BoundingBox(
        x=max(0, box.x - margin),
        y=max(0, box.y - margin),
        w=box.w + 2 * margin,
        h=box.h + 2 * margin,
    )


def clamp(box: BoundingBox, width: int, height: int) -> BoundingBox:
    """Fit a box inside a ``width`` x ``height`` image with at least 1x1 area."""
    if width <= 0 or height <= 0:
        raise InvalidArgument(f"image dimensions must be positive, got {width}x{height}")

    x = max(0, min(box.x, width - 1))
    y = max(0, min(box.y, height - 1))
    w = max(1, min(box.w, width - x))
    h = max(1, min(box.h, height - y))

    return BoundingBox(x=x, y=y, w=w, h=h)


def full_frame(width: int, height: int) -> BoundingBox:
    """Box covering a whole ``width`` x ``height`` image."""
    return clamp(BoundingBox(x=0, y=0, w=width, h=height), width, height)
