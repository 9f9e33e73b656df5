"""Public interface for the pixel cleanup toolkit."""

from __future__ import annotations

from .color import delta_e, extract_unique_colors, find_nearest_palette_color, rgb_to_lab
from .color_reducer import reduce_color_noise
from .components import find_connected_components, remove_small_components
from .config import (
    NAMED_PALETTES,
    PRESETS,
    ColorReducerOptions,
    EdgeCrispenerOptions,
    EdgeSmootherOptions,
    LineNormalizerOptions,
    LogoCleanerOptions,
    OutlinePerfecterOptions,
    StrayPixelOptions,
)
from .contours import detect_edges, find_all_contours, trace_contour
from .edge_crispener import crisp_edges
from .edge_smoother import smooth_edges
from .errors import (
    CleanupError,
    ContractViolation,
    ExecutorError,
    InvalidBufferError,
    InvalidOptionError,
    MissingOptionError,
    UnknownPresetError,
)
from .executor import LocalExecutor, ProcessPoolOperationExecutor
from .line_normalizer import normalize_line_thickness
from .logo_cleaner import clean_logo
from .morphology import closing, dilate, distance_transform, erode, opening, skeletonize
from .outline_perfecter import perfect_outline
from .raster import is_opaque, pixelwise
from .stray_pixels import preview_stray_pixels, remove_stray_pixels

__all__ = [
    "CleanupError",
    "ColorReducerOptions",
    "ContractViolation",
    "EdgeCrispenerOptions",
    "EdgeSmootherOptions",
    "ExecutorError",
    "InvalidBufferError",
    "InvalidOptionError",
    "LineNormalizerOptions",
    "LocalExecutor",
    "LogoCleanerOptions",
    "MissingOptionError",
    "NAMED_PALETTES",
    "OutlinePerfecterOptions",
    "PRESETS",
    "ProcessPoolOperationExecutor",
    "StrayPixelOptions",
    "UnknownPresetError",
    "clean_logo",
    "closing",
    "crisp_edges",
    "delta_e",
    "detect_edges",
    "dilate",
    "distance_transform",
    "erode",
    "extract_unique_colors",
    "find_all_contours",
    "find_connected_components",
    "find_nearest_palette_color",
    "is_opaque",
    "normalize_line_thickness",
    "opening",
    "perfect_outline",
    "pixelwise",
    "preview_stray_pixels",
    "reduce_color_noise",
    "remove_small_components",
    "remove_stray_pixels",
    "rgb_to_lab",
    "skeletonize",
    "smooth_edges",
    "trace_contour",
]
