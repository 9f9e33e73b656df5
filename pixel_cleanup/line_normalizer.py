"""Line thickness normalisation.

Thickness at a skeleton pixel is twice its distance to the nearest
background pixel.  Lines thicker than the target are carved down around
each skeleton pixel, thinner ones are painted out with the skeleton's
colour.

Skeleton pixels are visited in row-major order and every step works on
the partially updated result, so a pixel carved away by one skeleton
pixel may be repainted by a later one.  Output depends on that order.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np

from .config import LineNormalizerOptions
from .morphology import distance_transform, skeletonize
from .raster import OPAQUE_THRESHOLD, is_opaque, validate_buffer

logger = logging.getLogger(__name__)


def _disk(radius: int) -> np.ndarray:
    """Boolean ``(2r+1, 2r+1)`` mask of offsets with Euclidean length <= *radius*."""
    span = np.arange(-radius, radius + 1)
    dy, dx = np.meshgrid(span, span, indexing="ij")
    return np.sqrt(dx * dx + dy * dy) <= radius


def _window(x: int, y: int, radius: int, width: int, height: int):
    """Clip the square window around (x, y) to the image.

    Returns the image slices and the matching slices into a
    ``(2r+1, 2r+1)`` kernel.
    """
    x0 = max(0, x - radius)
    y0 = max(0, y - radius)
    x1 = min(width, x + radius + 1)
    y1 = min(height, y + radius + 1)
    image = (slice(y0, y1), slice(x0, x1))
    kernel = (slice(y0 - (y - radius), y1 - (y - radius)), slice(x0 - (x - radius), x1 - (x - radius)))
    return image, kernel


def normalize_line_thickness(
    buffer: np.ndarray,
    options: Optional[LineNormalizerOptions] = None,
) -> np.ndarray:
    validate_buffer(buffer)
    options = options or LineNormalizerOptions()
    target = options.target_width
    height, width = buffer.shape[:2]

    thickness = distance_transform(buffer, is_opaque).astype(np.float64) * 2.0
    skeleton = skeletonize(buffer, is_opaque)
    result = buffer.copy()

    # a fully opaque image has no background to measure against
    max_radius = max(height, width)
    too_thick = thickness > target
    too_thin = thickness < target
    disks = {}

    carved = painted = 0
    ys, xs = np.nonzero(skeleton[:, :, 3] >= OPAQUE_THRESHOLD)
    for y, x in zip(ys.tolist(), xs.tolist()):
        current = thickness[y, x]
        if current == target:
            continue

        half_gap = abs(current - target) / 2.0
        radius = min(math.ceil(half_gap), max_radius) if math.isfinite(half_gap) else max_radius
        if radius not in disks:
            disks[radius] = _disk(radius)
        image_slice, kernel_slice = _window(x, y, radius, width, height)
        disk = disks[radius][kernel_slice]

        if current > target:
            carve = disk & too_thick[image_slice]
            result[image_slice][carve] = 0
            carved += int(carve.sum())
        else:
            region = result[image_slice]
            paint = disk & too_thin[image_slice] & (region[:, :, 3] < OPAQUE_THRESHOLD)
            region[paint] = skeleton[y, x]
            painted += int(paint.sum())

    logger.debug(
        "Line normalisation to %.1fpx: %d skeleton pixel(s), %d carved, %d painted",
        target, len(xs), carved, painted,
    )
    return result
