"""Morphological operators over RGBA raster buffers.

Every operator is parameterised by a foreground predicate and works on
square structuring elements of odd side.  Dilation propagates colour,
not only alpha: a background pixel reached by the kernel takes the RGBA
of the foreground pixel that reached it.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy import ndimage

from .errors import InvalidOptionError
from .raster import (
    ForegroundPredicate,
    check_kernel_size,
    foreground_mask,
    is_opaque,
    validate_buffer,
)

logger = logging.getLogger(__name__)

MAX_THINNING_ROUNDS = 1000
_SQRT2 = math.sqrt(2.0)


def erode(buffer: np.ndarray, kernel_size: int, predicate: ForegroundPredicate) -> np.ndarray:
    """Zero every foreground pixel whose kernel window is not entirely foreground.

    Neighbours outside the image count as background, so foreground
    touching the border always erodes (for ``kernel_size >= 3``).
    """
    validate_buffer(buffer)
    check_kernel_size(kernel_size)
    mask = foreground_mask(buffer, predicate)
    structure = np.ones((kernel_size, kernel_size), dtype=bool)
    survivors = ndimage.binary_erosion(mask, structure=structure, border_value=0)

    result = buffer.copy()
    result[mask & ~survivors] = 0
    return result


def dilate(buffer: np.ndarray, kernel_size: int, predicate: ForegroundPredicate) -> np.ndarray:
    """Grow foreground into neighbouring background pixels, copying colour.

    When several foreground pixels can reach the same background pixel,
    the one that comes first in row-major order wins.  That source sits
    at the largest ``(dy, dx)`` kernel offset from the target, so offsets
    are applied in ascending order and later writes override earlier ones.
    """
    validate_buffer(buffer)
    radius = check_kernel_size(kernel_size)
    mask = foreground_mask(buffer, predicate)
    height, width = mask.shape

    result = buffer.copy()
    target = ~mask
    if not mask.any() or not target.any():
        return result

    padded_mask = np.pad(mask, radius, mode="constant", constant_values=False)
    padded = np.pad(buffer, ((radius, radius), (radius, radius), (0, 0)), mode="constant")

    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            if dx == 0 and dy == 0:
                continue
            y0 = radius - dy
            x0 = radius - dx
            source_mask = padded_mask[y0:y0 + height, x0:x0 + width]
            hit = target & source_mask
            if hit.any():
                result[hit] = padded[y0:y0 + height, x0:x0 + width][hit]
    return result


def opening(buffer: np.ndarray, kernel_size: int, predicate: ForegroundPredicate) -> np.ndarray:
    """Erode then dilate: removes small protrusions."""
    return dilate(erode(buffer, kernel_size, predicate), kernel_size, predicate)


def closing(buffer: np.ndarray, kernel_size: int, predicate: ForegroundPredicate) -> np.ndarray:
    """Dilate then erode: fills small gaps and holes."""
    return erode(dilate(buffer, kernel_size, predicate), kernel_size, predicate)


def _thinning_pass(binary: np.ndarray, first: bool) -> bool:
    """One Zhang-Suen sub-iteration over the interior.  Returns True if anything was removed."""
    p = binary
    center = p[1:-1, 1:-1]
    # P2..P9, clockwise from the pixel above
    p2 = p[:-2, 1:-1]
    p3 = p[:-2, 2:]
    p4 = p[1:-1, 2:]
    p5 = p[2:, 2:]
    p6 = p[2:, 1:-1]
    p7 = p[2:, :-2]
    p8 = p[1:-1, :-2]
    p9 = p[:-2, :-2]
    ring = (p2, p3, p4, p5, p6, p7, p8, p9, p2)

    transitions = np.zeros(center.shape, dtype=np.int32)
    for current, following in zip(ring[:-1], ring[1:]):
        transitions += (current == 0) & (following == 1)
    neighbors = sum(n.astype(np.int32) for n in ring[:-1])

    if first:
        step = ((p2 & p4 & p6) == 0) & ((p4 & p6 & p8) == 0)
    else:
        step = ((p2 & p4 & p8) == 0) & ((p2 & p6 & p8) == 0)

    remove = (center == 1) & (transitions == 1) & (neighbors >= 2) & (neighbors <= 6) & step
    if not remove.any():
        return False
    center[remove] = 0
    return True


def skeletonize(buffer: np.ndarray, predicate: ForegroundPredicate) -> np.ndarray:
    """Zhang-Suen thinning down to a one-pixel-wide skeleton.

    Skeleton pixels keep their original colour, everything else is zeroed.
    The outermost rows and columns are never thinned.
    """
    validate_buffer(buffer)
    binary = foreground_mask(buffer, predicate).astype(np.uint8)

    if binary.shape[0] >= 3 and binary.shape[1] >= 3:
        rounds = 0
        changed = True
        while changed and rounds < MAX_THINNING_ROUNDS:
            rounds += 1
            removed_first = _thinning_pass(binary, first=True)
            removed_second = _thinning_pass(binary, first=False)
            changed = removed_first or removed_second
        if changed:
            logger.warning("Thinning stopped at the %d round limit", MAX_THINNING_ROUNDS)

    skeleton = np.zeros_like(buffer)
    keep = binary.astype(bool)
    skeleton[keep] = buffer[keep]
    return skeleton


def distance_transform(buffer: np.ndarray, predicate: ForegroundPredicate) -> np.ndarray:
    """Chamfer distance (1 / sqrt(2) steps) from each pixel to the nearest background.

    Background pixels are 0.  Each pass is sequential along a row only
    through the horizontal neighbour, so ``d[x] = min(c[x], d[x-1] + 1)``
    unrolls to a running minimum of ``c[j] - j`` shifted back by ``x``.
    """
    validate_buffer(buffer)
    mask = foreground_mask(buffer, predicate)
    height, width = mask.shape
    dist = np.where(mask, np.inf, 0.0)
    cols = np.arange(width, dtype=np.float64)

    # forward: top-left to bottom-right
    for y in range(height):
        row = dist[y]
        if y > 0:
            above = dist[y - 1]
            cand = above + 1.0
            if width > 1:
                cand[1:] = np.minimum(cand[1:], above[:-1] + _SQRT2)
                cand[:-1] = np.minimum(cand[:-1], above[1:] + _SQRT2)
            row = np.minimum(row, cand)
        dist[y] = np.minimum.accumulate(row - cols) + cols

    # backward: bottom-right to top-left
    for y in range(height - 1, -1, -1):
        row = dist[y]
        if y < height - 1:
            below = dist[y + 1]
            cand = below + 1.0
            if width > 1:
                cand[:-1] = np.minimum(cand[:-1], below[1:] + _SQRT2)
                cand[1:] = np.minimum(cand[1:], below[:-1] + _SQRT2)
            row = np.minimum(row, cand)
        reversed_row = row[::-1]
        dist[y] = (np.minimum.accumulate(reversed_row - cols) + cols)[::-1]

    return dist.astype(np.float32)


MORPHOLOGY_OPERATIONS = {
    "erode": erode,
    "dilate": dilate,
    "opening": opening,
    "closing": closing,
}


def apply_morphology(
    image_data: np.ndarray,
    operation: str,
    kernel_size: int,
    predicate: ForegroundPredicate = is_opaque,
) -> np.ndarray:
    """Dispatch a named operator; the entry point used by executors."""
    try:
        func = MORPHOLOGY_OPERATIONS[operation]
    except KeyError:
        raise InvalidOptionError(f"Unknown morphology operation: {operation!r}") from None
    return func(image_data, kernel_size, predicate)
