"""
Maps classifier answers (1-based box labels) back to click coordinates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Sequence

from .errors import ElementNotFound, IndexOutOfRange, InvalidImageData
from .segmentation import Component


@dataclass(frozen=True)
class ScaleFactors:
    """Displayed size divided by native raster size, per axis."""
    scale_x: float = 1.0
    scale_y: float = 1.0

    @classmethod
    def from_sizes(
        cls,
        display_width: float,
        display_height: float,
        native_width: int,
        native_height: int,
    ) -> "ScaleFactors":
        if native_width <= 0 or native_height <= 0:
            raise InvalidImageData(f"Native image size must be positive, got {native_width}x{native_height}")
        if display_width <= 0 or display_height <= 0:
            raise ElementNotFound(f"Challenge image has no visible size ({display_width}x{display_height})")
        return cls(scale_x=display_width / native_width, scale_y=display_height / native_height)


@dataclass(frozen=True)
class TargetPoint:
    """Click position relative to the displayed challenge image."""
    x: float
    y: float
    index: int

    def rounded(self) -> tuple:
        return (int(round(self.x)), int(round(self.y)))


class BoxLayout:
    """Ordered glyph boxes; position i is selection index i + 1."""

    def __init__(self, boxes: Sequence[Component]):
        self._boxes: tuple = tuple(boxes)

    def __len__(self) -> int:
        return len(self._boxes)

    def __iter__(self) -> Iterator[Component]:
        return iter(self._boxes)

    @property
    def boxes(self) -> List[Component]:
        return list(self._boxes)

    def labeled(self) -> Iterator[tuple]:
        """Yield (index, box) pairs starting at 1."""
        return enumerate(self._boxes, start=1)

    def index_map(self) -> Dict[int, Component]:
        return dict(self.labeled())

    def box(self, index: int) -> Component:
        if not 1 <= index <= len(self._boxes):
            raise IndexOutOfRange(index, len(self._boxes))
        return self._boxes[index - 1]

    def resolve_target(self, index: int, scale: ScaleFactors = ScaleFactors()) -> TargetPoint:
        """Center of the selected box, scaled into display space."""
        box = self.box(index)
        center_x, center_y = box.center
        return TargetPoint(x=center_x * scale.scale_x, y=center_y * scale.scale_y, index=index)
