"""Raster buffer helpers shared by every cleanup algorithm.

A raster buffer is an ``(height, width, 4)`` uint8 numpy array holding
RGBA samples in row-major order.  Foreground predicates are called once
with the four ``(H, W)`` channel planes and must return a boolean mask.
They have to be written with array operators (``&``, ``|``, comparisons);
``and``, ``or`` and ``if`` on a whole plane raise "truth value of an array
is ambiguous".  Wrap a per-pixel function with ``pixelwise`` instead.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from .errors import InvalidBufferError, InvalidOptionError

logger = logging.getLogger(__name__)

ForegroundPredicate = Callable[..., object]
ProgressCallback = Callable[[float, Optional[str]], None]

# Alpha at or above this value counts as "ink".
OPAQUE_THRESHOLD = 128


def is_opaque(r, g, b, a):
    """Default foreground predicate: ``a >= 128``."""
    return a >= OPAQUE_THRESHOLD


def pixelwise(func: Callable[[int, int, int, int], bool]) -> ForegroundPredicate:
    """Adapt a scalar ``(r, g, b, a) -> bool`` function to the plane calling convention."""
    return np.vectorize(func, otypes=[bool])


def validate_buffer(buffer: np.ndarray) -> np.ndarray:
    """Raise unless *buffer* is an ``(H, W, 4)`` uint8 array."""
    if not isinstance(buffer, np.ndarray):
        raise InvalidBufferError(f"Expected numpy array, got {type(buffer).__name__}")
    if buffer.ndim != 3 or buffer.shape[2] != 4:
        raise InvalidBufferError(f"Expected (H, W, 4) RGBA buffer, got shape {buffer.shape}")
    if buffer.dtype != np.uint8:
        raise InvalidBufferError(f"Expected uint8 samples, got {buffer.dtype}")
    return buffer


def foreground_mask(buffer: np.ndarray, predicate: ForegroundPredicate) -> np.ndarray:
    """Evaluate *predicate* over every pixel, returning an ``(H, W)`` bool mask."""
    r = buffer[:, :, 0]
    g = buffer[:, :, 1]
    b = buffer[:, :, 2]
    a = buffer[:, :, 3]
    mask = np.asarray(predicate(r, g, b, a), dtype=bool)
    if mask.shape != buffer.shape[:2]:
        mask = np.broadcast_to(mask, buffer.shape[:2]).copy()
    return mask


def check_kernel_size(kernel_size: int) -> int:
    if kernel_size < 1 or kernel_size % 2 == 0:
        raise InvalidOptionError(f"Kernel size must be a positive odd integer, got {kernel_size}")
    return kernel_size // 2


def round_half_up(values):
    """Round .5 away from negative infinity, matching canvas arithmetic."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def clear_pixels(buffer: np.ndarray, mask: np.ndarray) -> None:
    """Zero all four channels where *mask* is set (in place)."""
    buffer[mask] = 0


def report_progress(
    on_progress: Optional[ProgressCallback],
    percent: float,
    stage: Optional[str] = None,
) -> None:
    """Invoke a progress observer; its failures never affect the result."""
    if on_progress is None:
        return
    try:
        on_progress(percent, stage)
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Progress callback failed: %s", exc)
