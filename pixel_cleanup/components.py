"""Connected component labelling with an explicit-stack flood fill."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Tuple

import numpy as np

from .color import RGBA
from .errors import InvalidOptionError
from .raster import (
    OPAQUE_THRESHOLD,
    ForegroundPredicate,
    foreground_mask,
    validate_buffer,
)

NEIGHBORS_4 = ((0, -1), (0, 1), (-1, 0), (1, 0))
NEIGHBORS_8 = NEIGHBORS_4 + ((-1, -1), (1, -1), (-1, 1), (1, 1))

FALLBACK_MERGE_COLOR = RGBA(0, 0, 0, 255)


class Bounds(NamedTuple):
    min_x: int
    min_y: int
    max_x: int
    max_y: int


@dataclass(frozen=True)
class ConnectedComponent:
    id: int
    pixels: Tuple[Tuple[int, int], ...]   # (x, y)
    size: int
    bounds: Bounds


def _neighbor_offsets(connectivity: int):
    if connectivity == 4:
        return NEIGHBORS_4
    if connectivity == 8:
        return NEIGHBORS_8
    raise InvalidOptionError(f"Connectivity must be 4 or 8, got {connectivity}")


def find_connected_components(
    buffer: np.ndarray,
    predicate: ForegroundPredicate,
    connectivity: int = 8,
) -> List[ConnectedComponent]:
    """Label maximal foreground regions.

    Seeds are taken in row-major order and component ids follow seed
    order.  The fill uses an explicit stack so very large regions do not
    hit the recursion limit.
    """
    validate_buffer(buffer)
    offsets = _neighbor_offsets(connectivity)
    mask = foreground_mask(buffer, predicate)
    height, width = mask.shape
    visited = np.zeros((height, width), dtype=bool)
    components: List[ConnectedComponent] = []

    seeds_y, seeds_x = np.nonzero(mask)
    for seed_y, seed_x in zip(seeds_y.tolist(), seeds_x.tolist()):
        if visited[seed_y, seed_x]:
            continue

        pixels: List[Tuple[int, int]] = []
        stack = [(seed_x, seed_y)]
        min_x = max_x = seed_x
        min_y = max_y = seed_y
        while stack:
            x, y = stack.pop()
            if visited[y, x] or not mask[y, x]:
                continue
            visited[y, x] = True
            pixels.append((x, y))
            if x < min_x:
                min_x = x
            elif x > max_x:
                max_x = x
            if y < min_y:
                min_y = y
            elif y > max_y:
                max_y = y

            for dx, dy in offsets:
                nx = x + dx
                ny = y + dy
                if 0 <= nx < width and 0 <= ny < height and not visited[ny, nx]:
                    stack.append((nx, ny))

        components.append(
            ConnectedComponent(
                id=len(components),
                pixels=tuple(pixels),
                size=len(pixels),
                bounds=Bounds(min_x, min_y, max_x, max_y),
            )
        )

    return components


def component_mask(component: ConnectedComponent, shape: Tuple[int, int]) -> np.ndarray:
    mask = np.zeros(shape, dtype=bool)
    if component.pixels:
        xs, ys = zip(*component.pixels)
        mask[list(ys), list(xs)] = True
    return mask


def remove_small_components(
    buffer: np.ndarray,
    min_size: int,
    predicate: ForegroundPredicate,
    connectivity: int = 8,
) -> np.ndarray:
    """Make every component smaller than *min_size* fully transparent."""
    components = find_connected_components(buffer, predicate, connectivity)
    result = buffer.copy()
    for component in components:
        if component.size < min_size:
            result[component_mask(component, buffer.shape[:2])] = 0
    return result


def find_nearest_neighbor_color(
    buffer: np.ndarray,
    component: ConnectedComponent,
    radius: int = 3,
) -> RGBA:
    """Most frequent opaque colour around *component*.

    Samples the bounding box grown by *radius* on every side, skipping
    the component's own pixels.  Equal counts go to the colour met first
    in row-major order.
    """
    validate_buffer(buffer)
    height, width = buffer.shape[:2]
    min_x, min_y, max_x, max_y = component.bounds
    x0 = max(0, min_x - radius)
    y0 = max(0, min_y - radius)
    x1 = min(width, max_x + radius + 1)
    y1 = min(height, max_y + radius + 1)

    window = buffer[y0:y1, x0:x1]
    own = component_mask(component, buffer.shape[:2])[y0:y1, x0:x1]
    eligible = (window[:, :, 3] >= OPAQUE_THRESHOLD) & ~own

    counts: Dict[Tuple[int, ...], int] = {}
    for pixel in window[eligible].tolist():
        key = tuple(pixel)
        counts[key] = counts.get(key, 0) + 1

    best = FALLBACK_MERGE_COLOR
    best_count = 0
    for key, count in counts.items():
        if count > best_count:
            best_count = count
            best = RGBA(*key)
    return best
