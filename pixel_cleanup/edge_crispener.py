"""Edge crispening: remove fuzzy halos and semi-transparent fringes."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from .config import EdgeCrispenerMethod, EdgeCrispenerOptions
from .errors import InvalidOptionError
from .executor import OperationExecutor, execute_with_fallback
from .morphology import erode
from .raster import OPAQUE_THRESHOLD, ProgressCallback, is_opaque, round_half_up, validate_buffer

logger = logging.getLogger(__name__)


def threshold_edges(buffer: np.ndarray, threshold: int) -> np.ndarray:
    """Binarise alpha: below *threshold* becomes transparent black, the rest opaque."""
    validate_buffer(buffer)
    result = buffer.copy()
    alpha = buffer[:, :, 3]
    result[alpha < threshold] = 0
    result[alpha >= threshold, 3] = 255
    return result


def decontaminate_edges(buffer: np.ndarray, background: Sequence[int]) -> np.ndarray:
    """Un-blend *background* from semi-transparent pixels, then snap alpha.

    Solves ``sample = color * alpha + background * (1 - alpha)`` for
    ``color``.  Results are clamped to [0, 255]; pixels at alpha >= 128
    become opaque and the rest fully transparent.
    """
    validate_buffer(buffer)
    result = buffer.copy()
    alpha = buffer[:, :, 3]

    partial = (alpha > 0) & (alpha < 255)
    if partial.any():
        a = alpha[partial].astype(np.float64)[:, None] / 255.0
        samples = buffer[partial, :3].astype(np.float64)
        bg = np.asarray(background[:3], dtype=np.float64)[None, :]
        restored = round_half_up((samples - bg * (1.0 - a)) / a)
        result[partial, :3] = np.clip(restored, 0, 255).astype(np.uint8)

    solid = alpha >= OPAQUE_THRESHOLD
    result[solid, 3] = 255
    result[partial & ~solid] = 0
    return result


def crisp_edges(
    buffer: np.ndarray,
    options: EdgeCrispenerOptions,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    validate_buffer(buffer)
    method = options.method

    if method is EdgeCrispenerMethod.THRESHOLD:
        return threshold_edges(buffer, options.threshold)

    if method is EdgeCrispenerMethod.ERODE:
        kernel_size = options.erode_pixels * 2 + 1
        return execute_with_fallback(
            executor if options.use_worker else None,
            "morphology",
            {"image_data": buffer, "operation": "erode", "kernel_size": kernel_size},
            lambda: erode(buffer, kernel_size, is_opaque),
            on_progress,
        )

    if method is EdgeCrispenerMethod.DECONTAMINATE:
        return decontaminate_edges(buffer, options.background_color)

    raise InvalidOptionError(f"Unknown edge crispener method: {method!r}")
