"""
Connected-component extraction over a binary mask.

Blobs are found with an iterative 8-connected flood fill so a component that
spans the whole image never hits a recursion limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .raster import Mask


DEFAULT_MIN_CONTOUR_AREA = 50

# (dx, dy) for the 8 neighbours
NEIGHBOR_OFFSETS = (
    (1, 0), (-1, 0), (0, 1), (0, -1),
    (1, 1), (-1, -1), (1, -1), (-1, 1),
)


@dataclass(frozen=True)
class Component:
    """A maximal 8-connected foreground region with inclusive pixel bounds."""
    min_x: int
    min_y: int
    max_x: int
    max_y: int
    area: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)


def _flood_fill(
    foreground: List[bool],
    visited: bytearray,
    width: int,
    height: int,
    start: int,
) -> Component:
    """Collect the component containing flat index `start` and mark it visited."""
    start_x, start_y = start % width, start // width
    min_x = max_x = start_x
    min_y = max_y = start_y
    area = 0

    visited[start] = 1
    stack = [start]
    while stack:
        index = stack.pop()
        x, y = index % width, index // width
        area += 1
        if x < min_x:
            min_x = x
        elif x > max_x:
            max_x = x
        if y < min_y:
            min_y = y
        elif y > max_y:
            max_y = y

        for dx, dy in NEIGHBOR_OFFSETS:
            nx, ny = x + dx, y + dy
            if nx < 0 or nx >= width or ny < 0 or ny >= height:
                continue
            neighbor = ny * width + nx
            if visited[neighbor] or not foreground[neighbor]:
                continue
            visited[neighbor] = 1
            stack.append(neighbor)

    return Component(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y, area=area)


def extract_components(mask: Mask) -> List[Component]:
    """All components in discovery order (row-major position of their first pixel)."""
    width, height = mask.width, mask.height
    flat = mask.foreground().ravel()
    foreground = flat.tolist()
    visited = bytearray(width * height)

    components: List[Component] = []
    for seed in np.flatnonzero(flat).tolist():
        if visited[seed]:
            continue
        components.append(_flood_fill(foreground, visited, width, height, seed))
    return components


def find_components(mask: Mask, min_area: int = DEFAULT_MIN_CONTOUR_AREA) -> List[Component]:
    """
    Extract glyph boxes from a mask.

    Args:
        mask: Binarized challenge image
        min_area: Components with this many pixels or fewer are treated as noise

    Returns:
        Surviving components sorted left to right by min_x; ties keep scan order
    """
    kept = [c for c in extract_components(mask) if c.area > min_area]
    # list.sort is stable, so equal min_x keeps discovery order
    kept.sort(key=lambda c: c.min_x)
    return kept
