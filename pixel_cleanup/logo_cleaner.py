"""One-click logo cleaner: the five cleanup stages chained under a preset.

Stage order is fixed:

    stray removal -> colour reduction -> edge crispening
        -> edge smoothing -> outline perfecting

Stages without options are skipped.  A stage that fails aborts the whole
run with its own exception; no partially cleaned buffer is returned.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

import numpy as np

from .color_reducer import reduce_color_noise
from .config import LogoCleanerOptions, resolve_options
from .edge_crispener import crisp_edges
from .edge_smoother import smooth_edges
from .executor import OperationExecutor
from .outline_perfecter import perfect_outline
from .raster import ProgressCallback, report_progress, validate_buffer
from .stray_pixels import remove_stray_pixels

logger = logging.getLogger(__name__)

# (options field, progress label, stage function)
STAGES: Tuple[Tuple[str, str, Callable], ...] = (
    ("stray_removal", "Removing stray pixels", remove_stray_pixels),
    ("color_reduction", "Reducing color noise", reduce_color_noise),
    ("edge_crispening", "Crisping edges", crisp_edges),
    ("edge_smoothing", "Smoothing edges", smooth_edges),
    ("outline_perfecting", "Perfecting outline", perfect_outline),
)


def clean_logo(
    buffer: np.ndarray,
    options: Optional[LogoCleanerOptions] = None,
    executor: Optional[OperationExecutor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """Run every configured stage over *buffer* and return a new buffer.

    Explicit stage options replace the preset's options for that stage
    only.  With no preset and no stage options the input is returned as
    a copy.
    """
    validate_buffer(buffer)
    resolved = resolve_options(options)

    planned: List[Tuple[str, str, Callable, object]] = [
        (name, label, func, getattr(resolved, name))
        for name, label, func in STAGES
        if getattr(resolved, name) is not None
    ]
    logger.debug(
        "Logo cleaner (preset=%s): %s",
        resolved.preset.value if resolved.preset else None,
        ", ".join(name for name, _, _, _ in planned) or "no stages",
    )

    result = buffer
    for index, (name, label, func, stage_options) in enumerate(planned):
        report_progress(on_progress, 100.0 * index / len(planned), label)
        logger.debug("Logo cleaner: %s", label)
        try:
            result = func(result, stage_options, executor=executor)
        except Exception:
            logger.error("Logo cleaner pipeline failed during %s", name, exc_info=True)
            raise

    report_progress(on_progress, 100, None)
    return result if result is not buffer else buffer.copy()
