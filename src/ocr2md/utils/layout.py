"""
Layout module for the OCR pipeline.

Provides:
- Block type enumeration
- Bounding boxes in page pixel space
- Reading-order sorting of recognized blocks
"""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import List, Optional, Tuple, Dict, Any, Sequence

logger = logging.getLogger(__name__)

DEFAULT_ROW_TOLERANCE = 12


# ============================================================================
# Data Classes and Enums
# ============================================================================

class BlockType(Enum):
    """Types of recognized blocks."""
    TEXT = "text"
    FORMULA = "formula"
    TABLE = "table"
    UNKNOWN = "unknown"


@dataclass
class BoundingBox:
    """Axis-aligned box, top-left corner plus size, in image pixels."""
    x: int
    y: int
    width: int
    height: int

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.x2, self.y2)

    @classmethod
    def from_polygon(
        cls,
        points: Sequence[Sequence[float]],
        image_width: Optional[int] = None,
        image_height: Optional[int] = None
    ) -> 'BoundingBox':
        """
        Build the enclosing box of a polygon, clipped to the image if its
        size is given. A degenerate point set gives a zero-sized box.
        """
        if not points:
            return cls(0, 0, 0, 0)

        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        x1, y1 = max(0, int(min(xs))), max(0, int(min(ys)))
        x2, y2 = max(0, int(max(xs))), max(0, int(max(ys)))

        if image_width is not None:
            x1, x2 = min(x1, image_width), min(x2, image_width)
        if image_height is not None:
            y1, y2 = min(y1, image_height), min(y2, image_height)

        return cls(x1, y1, x2 - x1, y2 - y1)

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BoundingBox':
        return cls(int(data["x"]), int(data["y"]), int(data["width"]), int(data["height"]))


# ============================================================================
# Reading Order
# ============================================================================

def _top_left(block: Any) -> Tuple[int, int]:
    bbox = block.bbox
    if bbox is None:
        return (0, 0)
    return (bbox.y, bbox.x)


def sort_by_reading_order(blocks: List[Any], row_tolerance: int = DEFAULT_ROW_TOLERANCE) -> List[Any]:
    """
    Sort blocks top-to-bottom, left-to-right, in place.

    Two blocks whose top edges are within row_tolerance pixels belong to the
    same row and compare by left edge; otherwise the higher one comes first.
    Blocks without a bounding box sort as if anchored at (0, 0).

    Returns:
        The same list, for chaining
    """
    def compare(a: Any, b: Any) -> int:
        ay, ax = _top_left(a)
        by, bx = _top_left(b)

        if abs(ay - by) <= row_tolerance:
            return (ax > bx) - (ax < bx)
        return (ay > by) - (ay < by)

    blocks.sort(key=cmp_to_key(compare))
    return blocks
