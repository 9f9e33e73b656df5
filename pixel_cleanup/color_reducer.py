"""Colour noise reduction: merge near-duplicates, lock to a palette, or quantize.

Quantization is a k-means in LAB space:

1. Seed k centroids from randomly chosen opaque pixels
2. Assign every opaque pixel to its nearest centroid by Delta-E
3. Move each centroid to the rounded RGB mean of its members
4. Stop once centroids move less than 0.5 Delta-E (or after 20 rounds)

The random generator is seeded from the options, so repeated calls on the
same buffer give identical output.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from .color import (
    Color,
    delta_e_lab,
    extract_unique_colors,
    nearest_palette_indices,
    pack_rgba,
    rgb_to_lab_array,
)
from .config import ColorReducerMode, ColorReducerOptions
from .errors import InvalidOptionError, MissingOptionError
from .executor import OperationExecutor, execute_with_fallback
from .raster import (
    OPAQUE_THRESHOLD,
    ProgressCallback,
    report_progress,
    round_half_up,
    validate_buffer,
)

logger = logging.getLogger(__name__)

CONVERGENCE_DELTA_E = 0.5
MAX_KMEANS_ITERATIONS = 20


def _opaque_rows(buffer: np.ndarray):
    flat = buffer.reshape(-1, 4)
    return flat, flat[:, 3] >= OPAQUE_THRESHOLD


# ---------------------------------------------------------------------------
# Auto-clean
# ---------------------------------------------------------------------------


def auto_clean_colors(buffer: np.ndarray, threshold: float, use_lab: bool = True) -> np.ndarray:
    """Collapse groups of similar colours into their count-weighted average.

    Colours are visited most-common first; each joins the first group
    whose founding colour lies within *threshold*, or founds a new group.
    """
    validate_buffer(buffer)
    uniques = extract_unique_colors(buffer)
    result = buffer.copy()
    if not uniques:
        return result

    table = np.array([(c.r, c.g, c.b, c.a) for c in uniques], dtype=np.uint8)
    counts = np.array([c.count for c in uniques], dtype=np.float64)
    space = rgb_to_lab_array(table[:, :3]) if use_lab else table[:, :3].astype(np.float64)

    group_of = np.empty(len(uniques), dtype=np.intp)
    founders: List[int] = []
    for index in range(len(uniques)):
        if founders:
            distances = delta_e_lab(space[founders], space[index])
            close = np.nonzero(distances < threshold)[0]
            if len(close):
                group_of[index] = close[0]
                continue
        group_of[index] = len(founders)
        founders.append(index)

    n_groups = len(founders)
    weights = np.bincount(group_of, weights=counts, minlength=n_groups)
    dominant = np.empty((n_groups, 4), dtype=np.uint8)
    for channel in range(4):
        totals = np.bincount(group_of, weights=table[:, channel] * counts, minlength=n_groups)
        dominant[:, channel] = round_half_up(totals / weights).astype(np.uint8)

    flat, opaque = _opaque_rows(buffer)
    keys = pack_rgba(flat[opaque])
    table_keys = pack_rgba(table)
    order = np.argsort(table_keys)
    positions = np.searchsorted(table_keys[order], keys)
    out = result.reshape(-1, 4)
    out[opaque] = dominant[group_of[order][positions]]

    logger.debug("Auto-clean merged %d colours into %d", len(uniques), n_groups)
    return result


# ---------------------------------------------------------------------------
# Palette lock
# ---------------------------------------------------------------------------


def lock_to_palette(buffer: np.ndarray, palette: Sequence[Sequence[int]], use_lab: bool = True) -> np.ndarray:
    """Replace the RGB of every opaque pixel with its nearest palette entry."""
    validate_buffer(buffer)
    pal = np.array([tuple(c)[:3] for c in palette], dtype=np.uint8)
    result = buffer.copy()
    flat, opaque = _opaque_rows(buffer)
    if not opaque.any():
        return result

    rgb = flat[opaque, :3]
    packed = (rgb[:, 0].astype(np.uint32) << 16) | (rgb[:, 1].astype(np.uint32) << 8) | rgb[:, 2]
    unique_keys, first, inverse = np.unique(packed, return_index=True, return_inverse=True)
    nearest = nearest_palette_indices(rgb[first], palette, use_lab)

    out = result.reshape(-1, 4)
    out[opaque, :3] = pal[nearest[inverse.reshape(-1)]]
    logger.debug("Locked %d distinct colours to a %d-entry palette", len(unique_keys), len(pal))
    return result


# ---------------------------------------------------------------------------
# Quantize
# ---------------------------------------------------------------------------


def kmeans_palette(
    buffer: np.ndarray,
    k: int,
    max_iterations: int = MAX_KMEANS_ITERATIONS,
    seed: int = 0,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Color]:
    """Cluster the opaque pixels into *k* colours using Delta-E assignment."""
    flat, opaque = _opaque_rows(buffer)
    pixels = flat[opaque, :3]
    if len(pixels) == 0:
        return []

    rng = np.random.default_rng(seed)
    centroids = pixels[rng.integers(0, len(pixels), size=k)].astype(np.int64)

    # assignments only depend on distinct colours
    distinct, inverse, weights = np.unique(pixels, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    distinct_f = distinct.astype(np.float64)

    for iteration in range(max_iterations):
        report_progress(on_progress, 100.0 * iteration / max_iterations, "quantize")
        assignment = nearest_palette_indices(distinct_f, centroids, use_lab=True)

        members = np.bincount(assignment, weights=weights, minlength=k)
        updated = centroids.copy()
        filled = members > 0
        for channel in range(3):
            sums = np.bincount(assignment, weights=distinct_f[:, channel] * weights, minlength=k)
            updated[filled, channel] = round_half_up(sums[filled] / members[filled]).astype(np.int64)

        shift = delta_e_lab(rgb_to_lab_array(centroids[filled]), rgb_to_lab_array(updated[filled]))
        centroids = updated
        converged = bool(np.all(shift <= CONVERGENCE_DELTA_E))
        average_shift = float(shift.sum()) / k
        if converged or average_shift < CONVERGENCE_DELTA_E:
            logger.debug("k-means converged after %d iteration(s)", iteration + 1)
            break

    return [Color(int(c[0]), int(c[1]), int(c[2])) for c in centroids]


def quantize_colors_local(
    image_data: np.ndarray,
    n_colors: int,
    seed: int = 0,
    max_iterations: int = MAX_KMEANS_ITERATIONS,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """Synchronous quantizer shared by the executor and the fallback path."""
    validate_buffer(image_data)
    if len(extract_unique_colors(image_data)) <= n_colors:
        return image_data.copy()
    palette = kmeans_palette(image_data, n_colors, max_iterations, seed, on_progress)
    return lock_to_palette(image_data, palette, use_lab=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def reduce_color_noise(
    buffer: np.ndarray,
    options: ColorReducerOptions,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    validate_buffer(buffer)
    mode = options.mode

    if mode is ColorReducerMode.AUTO_CLEAN:
        return auto_clean_colors(buffer, options.threshold, options.use_lab)

    if mode is ColorReducerMode.PALETTE_LOCK:
        if not options.palette:
            raise MissingOptionError("Palette required for palette-lock mode")
        return lock_to_palette(buffer, options.palette, options.use_lab)

    if mode is ColorReducerMode.QUANTIZE:
        def run_locally() -> np.ndarray:
            return quantize_colors_local(
                buffer, options.n_colors, options.seed, options.max_iterations, on_progress
            )

        return execute_with_fallback(
            executor if options.use_worker else None,
            "quantize-colors",
            {
                "image_data": buffer,
                "n_colors": options.n_colors,
                "seed": options.seed,
                "max_iterations": options.max_iterations,
            },
            run_locally,
            on_progress,
        )

    raise InvalidOptionError(f"Unknown color reducer mode: {mode!r}")
