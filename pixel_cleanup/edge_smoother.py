"""Edge smoothing: find staircase steps along edges and soften them."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .config import EdgeSmootherOptions, SmoothingMode
from .contours import sobel_edge_detection
from .errors import InvalidOptionError
from .executor import OperationExecutor, execute_with_fallback
from .raster import OPAQUE_THRESHOLD, ProgressCallback, round_half_up, validate_buffer

logger = logging.getLogger(__name__)

# Sobel magnitudes: below EDGE_MIN is flat, neighbour pairs differing by
# more than STEP_DELTA mark an asymmetric (stepped) edge.
EDGE_MIN = 10.0
STEP_DELTA = 20.0

# A convex corner tip of a solid shape has at most this many opaque neighbours.
CORNER_MAX_NEIGHBORS = 3

_RING = ((-1, -1), (0, -1), (1, -1), (-1, 0), (1, 0), (-1, 1), (0, 1), (1, 1))


def edge_map_local(image_data: np.ndarray) -> np.ndarray:
    """Sobel map shared by the executor and the fallback path."""
    return sobel_edge_detection(image_data)


def detect_staircase_patterns(edge_map: np.ndarray) -> np.ndarray:
    """Flag interior edge pixels whose left/right or up/down gradients are lopsided."""
    height, width = edge_map.shape
    patterns = np.zeros((height, width), dtype=bool)
    if height < 3 or width < 3:
        return patterns

    center = edge_map[1:-1, 1:-1]
    left = edge_map[1:-1, :-2]
    right = edge_map[1:-1, 2:]
    up = edge_map[:-2, 1:-1]
    down = edge_map[2:, 1:-1]

    horizontal = (np.abs(left - right) > STEP_DELTA) & ((left > EDGE_MIN) | (right > EDGE_MIN))
    vertical = (np.abs(up - down) > STEP_DELTA) & ((up > EDGE_MIN) | (down > EDGE_MIN))
    patterns[1:-1, 1:-1] = (center >= EDGE_MIN) & (horizontal | vertical)
    return patterns


def _shifted(plane: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """Interior view of *plane* offset by (dx, dy)."""
    height, width = plane.shape[:2]
    return plane[1 + dy:height - 1 + dy, 1 + dx:width - 1 + dx]


def _blend_toward_neighbors(
    buffer: np.ndarray,
    patterns: np.ndarray,
    strength: float,
    preserve_corners: bool,
) -> np.ndarray:
    result = buffer.copy()
    height, width = patterns.shape
    if height < 3 or width < 3:
        return result

    opaque = buffer[:, :, 3] >= OPAQUE_THRESHOLD
    rgb = buffer[:, :, :3].astype(np.float64)

    sums = np.zeros((height - 2, width - 2, 3), dtype=np.float64)
    count = np.zeros((height - 2, width - 2), dtype=np.int32)
    for dx, dy in _RING:
        neighbor_opaque = _shifted(opaque, dx, dy)
        sums += _shifted(rgb, dx, dy) * neighbor_opaque[:, :, None]
        count += neighbor_opaque

    selected = patterns[1:-1, 1:-1] & opaque[1:-1, 1:-1] & (count > 0)
    if preserve_corners:
        selected &= count > CORNER_MAX_NEIGHBORS
    if not selected.any():
        return result

    s = strength / 100.0
    average = round_half_up(sums[selected] / count[selected][:, None])
    original = rgb[1:-1, 1:-1][selected]
    blended = round_half_up(original * (1.0 - s) + average * s)

    interior = result[1:-1, 1:-1]
    interior[selected, :3] = np.clip(blended, 0, 255).astype(np.uint8)
    logger.debug("Blended %d staircase pixel(s) at strength %.0f%%", int(selected.sum()), strength)
    return result


def _remove_stair_elbows(buffer: np.ndarray, patterns: np.ndarray) -> np.ndarray:
    """Drop the elbow pixel of L-shaped steps in one-pixel lines.

    An elbow has exactly two opaque neighbours, one horizontal and one
    vertical; without it the line stays diagonally connected.
    """
    result = buffer.copy()
    height, width = patterns.shape
    if height < 3 or width < 3:
        return result

    opaque = buffer[:, :, 3] >= OPAQUE_THRESHOLD
    count = sum(_shifted(opaque, dx, dy).astype(np.int32) for dx, dy in _RING)
    horizontal = _shifted(opaque, -1, 0).astype(np.int32) + _shifted(opaque, 1, 0)
    vertical = _shifted(opaque, 0, -1).astype(np.int32) + _shifted(opaque, 0, 1)

    elbow = patterns[1:-1, 1:-1] & opaque[1:-1, 1:-1] & (count == 2) & (horizontal == 1) & (vertical == 1)
    result[1:-1, 1:-1][elbow] = 0
    logger.debug("Removed %d stair elbow pixel(s)", int(elbow.sum()))
    return result


def smooth_edges(
    buffer: np.ndarray,
    options: EdgeSmootherOptions,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """Soften jagged edges.

    ``subtle``, ``standard`` and ``smooth`` blend each stepped pixel toward
    the mean of its opaque neighbours by ``strength`` percent, keeping its
    alpha.  ``pixel-perfect`` never blends; it removes stair elbows instead.
    """
    validate_buffer(buffer)
    mode = options.mode
    if not isinstance(mode, SmoothingMode):
        raise InvalidOptionError(f"Unknown smoothing mode: {mode!r}")

    edge_map = execute_with_fallback(
        executor if options.use_worker else None,
        "detect-edges",
        {"image_data": buffer},
        lambda: edge_map_local(buffer),
        on_progress,
    )
    patterns = detect_staircase_patterns(np.asarray(edge_map, dtype=np.float32))

    if mode is SmoothingMode.PIXEL_PERFECT:
        return _remove_stair_elbows(buffer, patterns)
    return _blend_toward_neighbors(buffer, patterns, options.strength, options.preserve_corners)
