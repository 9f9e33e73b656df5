"""Stray pixel removal: delete or absorb tiny isolated clusters."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .components import (
    component_mask,
    find_connected_components,
    find_nearest_neighbor_color,
    remove_small_components,
)
from .config import StrayPixelOptions
from .executor import OperationExecutor, execute_with_fallback
from .raster import ProgressCallback, is_opaque, validate_buffer

logger = logging.getLogger(__name__)

CONNECTIVITY = 8
PREVIEW_COLOR = (255, 0, 0, 200)


def remove_stray_pixels_local(
    image_data: np.ndarray,
    min_size: int,
    merge: bool,
    merge_radius: int = 3,
) -> np.ndarray:
    """Synchronous implementation shared by the executor and the fallback path."""
    validate_buffer(image_data)
    if not merge:
        return remove_small_components(image_data, min_size, is_opaque, CONNECTIVITY)

    result = image_data.copy()
    merged = 0
    for component in find_connected_components(image_data, is_opaque, CONNECTIVITY):
        if component.size >= min_size:
            continue
        # sampled from the input, so earlier merges do not feed later ones
        color = find_nearest_neighbor_color(image_data, component, merge_radius)
        result[component_mask(component, image_data.shape[:2])] = color
        merged += 1
    logger.debug("Merged %d stray component(s) into their surroundings", merged)
    return result


def remove_stray_pixels(
    buffer: np.ndarray,
    options: Optional[StrayPixelOptions] = None,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """Remove 8-connected opaque clusters smaller than ``options.min_size``.

    In delete mode the clusters become fully transparent; in merge mode
    they take the most common opaque colour around them.
    """
    validate_buffer(buffer)
    options = options or StrayPixelOptions()

    def run_locally() -> np.ndarray:
        return remove_stray_pixels_local(buffer, options.min_size, options.merge, options.merge_radius)

    return execute_with_fallback(
        executor if options.use_worker else None,
        "remove-stray-pixels",
        {
            "image_data": buffer,
            "min_size": options.min_size,
            "merge": options.merge,
            "merge_radius": options.merge_radius,
        },
        run_locally,
        on_progress,
    )


def preview_stray_pixels(buffer: np.ndarray, min_size: int) -> np.ndarray:
    """Highlight the pixels ``remove_stray_pixels`` would touch in translucent red."""
    validate_buffer(buffer)
    result = buffer.copy()
    for component in find_connected_components(buffer, is_opaque, CONNECTIVITY):
        if component.size < min_size:
            result[component_mask(component, buffer.shape[:2])] = PREVIEW_COLOR
    return result
