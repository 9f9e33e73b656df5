"""Outline perfecting: close gaps, straighten lines, smooth curves, sharpen corners.

Stages always run in that order, each on the output of the previous one.
The straighten, smooth and sharpen stages trace alpha contours of their
input and paint into a copy; they never make a pixel transparent.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from .config import OutlinePerfecterOptions
from .contours import Contour, detect_edges, find_all_contours
from .executor import OperationExecutor, execute_with_fallback
from .morphology import closing
from .raster import OPAQUE_THRESHOLD, ProgressCallback, is_opaque, report_progress, round_half_up, validate_buffer

logger = logging.getLogger(__name__)

EDGE_THRESHOLD = 30
SNAP_TOLERANCE = 10.0   # degrees
MIN_CONTOUR_POINTS = 3


def _alpha_contours(buffer: np.ndarray) -> List[Contour]:
    return find_all_contours(detect_edges(buffer, EDGE_THRESHOLD, use_alpha=True))


def _angle_difference(a: float, b: float, period: float) -> float:
    diff = abs(a - b) % period
    return min(diff, period - diff)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def close_gaps(
    buffer: np.ndarray,
    max_gap_size: int,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """Morphological closing with a ``2 * max_gap_size + 1`` kernel."""
    kernel_size = max_gap_size * 2 + 1
    return execute_with_fallback(
        executor,
        "morphology",
        {"image_data": buffer, "operation": "closing", "kernel_size": kernel_size},
        lambda: closing(buffer, kernel_size, is_opaque),
        on_progress,
    )


def straighten_lines(
    buffer: np.ndarray,
    snap_angles: Sequence[float],
    segment_length: int = 4,
) -> np.ndarray:
    """Redraw contour chords that run close to a snap angle as exact straight runs.

    Chords join contour points ``segment_length`` apart.  Snap angles are
    undirected, so 0 also matches chords pointing at 180 degrees.
    """
    height, width = buffer.shape[:2]
    result = buffer.copy()
    snapped = 0

    for contour in _alpha_contours(buffer):
        points = contour.points
        if len(points) < MIN_CONTOUR_POINTS:
            continue

        for i in range(0, len(points) - segment_length, segment_length):
            x1, y1 = points[i]
            x2, y2 = points[i + segment_length]
            dx = x2 - x1
            dy = y2 - y1
            length = math.hypot(dx, dy)
            if length < 2:
                continue

            heading = math.degrees(math.atan2(dy, dx)) % 360.0
            nearest = min(snap_angles, key=lambda s: _angle_difference(heading, s, 180.0))
            if _angle_difference(heading, nearest, 180.0) >= SNAP_TOLERANCE:
                continue

            # keep the chord's direction of travel
            direction = nearest if _angle_difference(heading, nearest, 360.0) <= 90 else nearest + 180.0
            rad = math.radians(direction)
            steps = math.ceil(length)
            t = np.arange(steps + 1, dtype=np.float64) / steps
            xs = round_half_up(x1 + math.cos(rad) * length * t).astype(np.intp)
            ys = round_half_up(y1 + math.sin(rad) * length * t).astype(np.intp)
            inside = (xs >= 0) & (xs < width) & (ys >= 0) & (ys < height)

            color = buffer[y1, x1]
            result[ys[inside], xs[inside], :3] = color[:3]
            result[ys[inside], xs[inside], 3] = 255
            snapped += 1

    logger.debug("Straightened %d chord(s)", snapped)
    return result


def smooth_curves(buffer: np.ndarray, strength: float) -> np.ndarray:
    """Paint a moving-average version of every contour over the image."""
    height, width = buffer.shape[:2]
    result = buffer.copy()
    window = max(3, int(math.floor(5 * strength / 100.0)))
    half = window // 2

    for contour in _alpha_contours(buffer):
        if len(contour.points) < window:
            continue
        points = np.asarray(contour.points, dtype=np.float64)
        total = np.zeros_like(points)
        for shift in range(-half, half + 1):
            total += np.roll(points, -shift, axis=0)
        smoothed = round_half_up(total / (2 * half + 1)).astype(np.intp)

        source = points.astype(np.intp)
        inside = (
            (smoothed[:, 0] >= 0) & (smoothed[:, 0] < width)
            & (smoothed[:, 1] >= 0) & (smoothed[:, 1] < height)
        )
        colors = buffer[source[inside, 1], source[inside, 0], :3]
        result[smoothed[inside, 1], smoothed[inside, 0], :3] = colors
        result[smoothed[inside, 1], smoothed[inside, 0], 3] = 255

    return result


def _is_axis_step(dx: int, dy: int) -> bool:
    return dx == 0 or dy == 0


def sharpen_corners(buffer: np.ndarray, corner_threshold: float) -> np.ndarray:
    """Make rounded contour corners solid and grow them by one pixel.

    A vertex counts as rounded when its turning angle lies strictly
    between ``corner_threshold`` and ``180 - corner_threshold``; for a
    threshold of 90 or more that range is empty and nothing changes.
    A right angle between a horizontal and a vertical run is already
    sharp and is never touched.
    """
    height, width = buffer.shape[:2]
    result = buffer.copy()
    sharpened = 0

    for contour in _alpha_contours(buffer):
        points = contour.points
        n = len(points)
        if n < MIN_CONTOUR_POINTS:
            continue

        for i, (x, y) in enumerate(points):
            px, py = points[i - 1]
            nx, ny = points[(i + 1) % n]
            incoming = math.degrees(math.atan2(y - py, x - px))
            outgoing = math.degrees(math.atan2(ny - y, nx - x))
            turn = abs(outgoing - incoming)
            if turn > 180:
                turn = 360 - turn
            if not corner_threshold < turn < 180.0 - corner_threshold:
                continue
            if _is_axis_step(x - px, y - py) and _is_axis_step(nx - x, ny - y):
                continue

            result[y, x, :3] = buffer[y, x, :3]
            result[y, x, 3] = 255
            y0, y1 = max(0, y - 1), min(height, y + 2)
            x0, x1 = max(0, x - 1), min(width, x + 2)
            region = result[y0:y1, x0:x1]
            region[region[:, :, 3] < OPAQUE_THRESHOLD] = result[y, x].copy()
            sharpened += 1

    logger.debug("Sharpened %d corner vertex/vertices", sharpened)
    return result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def perfect_outline(
    buffer: np.ndarray,
    options: Optional[OutlinePerfecterOptions] = None,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    validate_buffer(buffer)
    options = options or OutlinePerfecterOptions()
    result = buffer

    if options.close_gaps:
        report_progress(on_progress, 0, "close-gaps")
        result = close_gaps(result, options.max_gap_size, executor)
    if options.straighten_lines:
        report_progress(on_progress, 25, "straighten-lines")
        result = straighten_lines(result, options.snap_angles, options.segment_length)
    if options.smooth_curves:
        report_progress(on_progress, 50, "smooth-curves")
        result = smooth_curves(result, options.smooth_strength)
    if options.sharpen_corners:
        report_progress(on_progress, 75, "sharpen-corners")
        result = sharpen_corners(result, options.corner_threshold)

    report_progress(on_progress, 100, None)
    return result if result is not buffer else buffer.copy()
