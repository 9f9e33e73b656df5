"""Edge detection and Moore-neighbourhood contour tracing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np
from scipy import ndimage

from .raster import OPAQUE_THRESHOLD, round_half_up, validate_buffer

# Moore ring, clockwise from the top-left neighbour.
MOORE_NEIGHBORS = (
    (-1, -1),
    (0, -1),
    (1, -1),
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
)


@dataclass(frozen=True)
class Contour:
    points: Tuple[Tuple[int, int], ...]   # (x, y) in trace order
    closed: bool


def luminance(buffer: np.ndarray) -> np.ndarray:
    """Integer luma ``0.299 r + 0.587 g + 0.114 b`` per pixel (float64 plane)."""
    rgb = buffer[:, :, :3].astype(np.float64)
    return round_half_up(0.299 * rgb[:, :, 0] + 0.587 * rgb[:, :, 1] + 0.114 * rgb[:, :, 2])


def sobel_edge_detection(buffer: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude of the luminance; the 1-pixel border is 0."""
    validate_buffer(buffer)
    height, width = buffer.shape[:2]
    magnitude = np.zeros((height, width), dtype=np.float32)
    if height < 3 or width < 3:
        return magnitude

    gray = luminance(buffer)
    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    interior = np.sqrt(gx * gx + gy * gy)
    magnitude[1:-1, 1:-1] = interior[1:-1, 1:-1]
    return magnitude


def alpha_edge_detection(buffer: np.ndarray, threshold: int = OPAQUE_THRESHOLD) -> np.ndarray:
    """Binary map of opaque pixels that touch background or the image border."""
    validate_buffer(buffer)
    opaque = buffer[:, :, 3] >= threshold
    interior = ndimage.binary_erosion(opaque, structure=np.ones((3, 3), dtype=bool), border_value=0)
    return (opaque & ~interior).astype(np.uint8)


def detect_edges(buffer: np.ndarray, threshold: float = 30, use_alpha: bool = True) -> np.ndarray:
    """Alpha edges, or the Sobel map binarised at ``> threshold``."""
    if use_alpha:
        return alpha_edge_detection(buffer, OPAQUE_THRESHOLD)
    return (sobel_edge_detection(buffer) > threshold).astype(np.uint8)


def trace_contour(edge_map: np.ndarray, start_x: int, start_y: int) -> Optional[Contour]:
    """Walk the boundary that passes through ``(start_x, start_y)``.

    After each step the search resumes two positions back from the
    direction just taken.  The walk is closed when it comes back to the
    start after at least three points; it stops open on a dead end, on
    re-entering an earlier point, or after ``width * height`` steps.
    """
    height, width = edge_map.shape
    if not (0 <= start_x < width and 0 <= start_y < height) or not edge_map[start_y, start_x]:
        return None

    edges = edge_map.astype(bool)
    visited = np.zeros((height, width), dtype=bool)
    x, y = start_x, start_y
    points: List[Tuple[int, int]] = [(x, y)]
    visited[y, x] = True
    direction = 0

    for _ in range(width * height):
        step = None
        for i in range(8):
            candidate = (direction + i) % 8
            dx, dy = MOORE_NEIGHBORS[candidate]
            nx = x + dx
            ny = y + dy
            if 0 <= nx < width and 0 <= ny < height and edges[ny, nx]:
                step = (nx, ny)
                direction = (candidate + 6) % 8
                break

        if step is None:
            break
        nx, ny = step
        if nx == start_x and ny == start_y and len(points) > 2:
            return Contour(points=tuple(points), closed=True)
        if visited[ny, nx]:
            break

        points.append(step)
        visited[ny, nx] = True
        x, y = nx, ny

    if len(points) > 1:
        return Contour(points=tuple(points), closed=False)
    return None


def find_all_contours(edge_map: np.ndarray) -> List[Contour]:
    """Trace from every edge pixel not yet covered by an earlier contour."""
    visited = np.zeros(edge_map.shape, dtype=bool)
    contours: List[Contour] = []

    ys, xs = np.nonzero(edge_map)
    for y, x in zip(ys.tolist(), xs.tolist()):
        if visited[y, x]:
            continue
        contour = trace_contour(edge_map, x, y)
        if contour is None:
            continue
        contours.append(contour)
        for px, py in contour.points:
            visited[py, px] = True

    return contours
