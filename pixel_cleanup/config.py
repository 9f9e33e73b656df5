"""Cleanup configuration: option records, mode enums, presets, known palettes."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .color import Color, parse_palette
from .errors import InvalidOptionError, UnknownPresetError


# ---------------------------------------------------------------------------
# Named palettes (hex, no '#' prefix stored internally)
# ---------------------------------------------------------------------------
NAMED_PALETTES: Dict[str, List[str]] = {
    "gameboy": [
        "0f380f", "306230", "8bac0f", "9bbc0f",
    ],
    "pico8": [
        "000000", "1d2b53", "7e2553", "008751",
        "ab5236", "5f574f", "c2c3c7", "fff1e8",
        "ff004d", "ffa300", "ffec27", "00e436",
        "29adff", "83769c", "ff77a8", "ffccaa",
    ],
}


def named_palette(name: str) -> Tuple[Color, ...]:
    try:
        entries = NAMED_PALETTES[name]
    except KeyError:
        raise InvalidOptionError(f"Unknown palette: {name!r}") from None
    return tuple(parse_palette(entries))


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------


class ColorReducerMode(str, Enum):
    AUTO_CLEAN = "auto-clean"
    PALETTE_LOCK = "palette-lock"
    QUANTIZE = "quantize"


class EdgeCrispenerMethod(str, Enum):
    THRESHOLD = "threshold"
    ERODE = "erode"
    DECONTAMINATE = "decontaminate"


class SmoothingMode(str, Enum):
    SUBTLE = "subtle"
    STANDARD = "standard"
    SMOOTH = "smooth"
    PIXEL_PERFECT = "pixel-perfect"


class LogoCleanerPreset(str, Enum):
    LOGO_MINIMAL = "logo-minimal"
    LOGO_STANDARD = "logo-standard"
    LOGO_AGGRESSIVE = "logo-aggressive"
    ICON_APP_STORE = "icon-app-store"
    GAME_ASSET = "game-asset"
    PRINT_READY = "print-ready"


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidOptionError(f"Unknown {label}: {value!r}") from None


def _check_range(name: str, value: float, low: float, high: Optional[float] = None) -> None:
    if value < low or (high is not None and value > high):
        bound = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise InvalidOptionError(f"{name} must be {bound}, got {value}")


# ---------------------------------------------------------------------------
# Operation options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrayPixelOptions:
    min_size: int = 3          # clusters smaller than this are strays
    merge: bool = False        # recolour from neighbours instead of deleting
    merge_radius: int = 3
    use_worker: bool = True

    def __post_init__(self):
        _check_range("min_size", self.min_size, 1)
        _check_range("merge_radius", self.merge_radius, 0)


@dataclass(frozen=True)
class ColorReducerOptions:
    mode: ColorReducerMode
    threshold: float = 15.0                       # auto-clean similarity (Delta-E or RGB)
    n_colors: int = 16                            # quantize target
    palette: Optional[Tuple[Color, ...]] = None   # palette-lock target
    use_lab: bool = True
    use_worker: bool = True
    seed: int = 0                                 # k-means centroid seeding
    max_iterations: int = 20

    def __post_init__(self):
        object.__setattr__(self, "mode", _coerce(ColorReducerMode, self.mode, "color reducer mode"))
        if self.palette is not None:
            object.__setattr__(self, "palette", tuple(Color(*tuple(c)[:3]) for c in self.palette))
        _check_range("threshold", self.threshold, 0)
        _check_range("n_colors", self.n_colors, 1)
        _check_range("max_iterations", self.max_iterations, 1)


@dataclass(frozen=True)
class EdgeCrispenerOptions:
    method: EdgeCrispenerMethod
    threshold: int = 200                          # alpha cutoff for the threshold method
    erode_pixels: int = 1
    background_color: Color = Color(255, 255, 255)
    use_worker: bool = True

    def __post_init__(self):
        object.__setattr__(self, "method", _coerce(EdgeCrispenerMethod, self.method, "edge crispener method"))
        object.__setattr__(self, "background_color", Color(*tuple(self.background_color)[:3]))
        _check_range("threshold", self.threshold, 0, 255)
        _check_range("erode_pixels", self.erode_pixels, 0)


@dataclass(frozen=True)
class EdgeSmootherOptions:
    mode: SmoothingMode
    strength: float = 50.0     # percent blend toward the neighbour mean
    preserve_corners: bool = False  # skip tips with <= 3 opaque neighbours
    use_worker: bool = True

    def __post_init__(self):
        object.__setattr__(self, "mode", _coerce(SmoothingMode, self.mode, "smoothing mode"))
        _check_range("strength", self.strength, 0, 100)


@dataclass(frozen=True)
class LineNormalizerOptions:
    target_width: float = 2.0  # pixels

    def __post_init__(self):
        _check_range("target_width", self.target_width, 1)


@dataclass(frozen=True)
class OutlinePerfecterOptions:
    close_gaps: bool = True
    max_gap_size: int = 3
    straighten_lines: bool = False
    snap_angles: Tuple[float, ...] = (0, 45, 90, 135)
    segment_length: int = 4    # contour points spanned by one straightening chord
    smooth_curves: bool = False
    smooth_strength: float = 50.0
    sharpen_corners: bool = False
    corner_threshold: float = 120.0

    def __post_init__(self):
        object.__setattr__(self, "snap_angles", tuple(self.snap_angles))
        _check_range("max_gap_size", self.max_gap_size, 0)
        _check_range("segment_length", self.segment_length, 1)
        _check_range("smooth_strength", self.smooth_strength, 0, 100)
        _check_range("corner_threshold", self.corner_threshold, 0, 180)
        if self.straighten_lines and not self.snap_angles:
            raise InvalidOptionError("straighten_lines requires at least one snap angle")


@dataclass(frozen=True)
class LogoCleanerOptions:
    """Per-stage options; any stage left as None falls back to the preset."""
    preset: Optional[LogoCleanerPreset] = None
    stray_removal: Optional[StrayPixelOptions] = None
    color_reduction: Optional[ColorReducerOptions] = None
    edge_crispening: Optional[EdgeCrispenerOptions] = None
    edge_smoothing: Optional[EdgeSmootherOptions] = None
    outline_perfecting: Optional[OutlinePerfecterOptions] = None

    def __post_init__(self):
        if self.preset is not None:
            try:
                preset = LogoCleanerPreset(self.preset)
            except ValueError:
                raise UnknownPresetError(f"Unknown logo cleaner preset: {self.preset!r}") from None
            object.__setattr__(self, "preset", preset)


STAGE_FIELDS = (
    "stray_removal",
    "color_reduction",
    "edge_crispening",
    "edge_smoothing",
    "outline_perfecting",
)


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------
PRESETS: Dict[LogoCleanerPreset, LogoCleanerOptions] = {
    LogoCleanerPreset.LOGO_MINIMAL: LogoCleanerOptions(
        stray_removal=StrayPixelOptions(min_size=2),
        color_reduction=ColorReducerOptions(mode="auto-clean", threshold=10),
        edge_crispening=EdgeCrispenerOptions(method="threshold", threshold=180),
        edge_smoothing=EdgeSmootherOptions(mode="subtle", strength=30),
        outline_perfecting=OutlinePerfecterOptions(close_gaps=True, max_gap_size=2),
    ),
    LogoCleanerPreset.LOGO_STANDARD: LogoCleanerOptions(
        stray_removal=StrayPixelOptions(min_size=3),
        color_reduction=ColorReducerOptions(mode="auto-clean", threshold=15),
        edge_crispening=EdgeCrispenerOptions(method="threshold", threshold=200),
        edge_smoothing=EdgeSmootherOptions(mode="standard", strength=50),
        outline_perfecting=OutlinePerfecterOptions(close_gaps=True, max_gap_size=3),
    ),
    LogoCleanerPreset.LOGO_AGGRESSIVE: LogoCleanerOptions(
        stray_removal=StrayPixelOptions(min_size=5, merge=True),
        color_reduction=ColorReducerOptions(mode="quantize", n_colors=8),
        edge_crispening=EdgeCrispenerOptions(method="erode", erode_pixels=2),
        edge_smoothing=EdgeSmootherOptions(mode="smooth", strength=70),
        outline_perfecting=OutlinePerfecterOptions(
            close_gaps=True,
            max_gap_size=5,
            straighten_lines=True,
            smooth_curves=True,
            smooth_strength=60,
            sharpen_corners=True,
            corner_threshold=120,
        ),
    ),
    LogoCleanerPreset.ICON_APP_STORE: LogoCleanerOptions(
        stray_removal=StrayPixelOptions(min_size=2),
        color_reduction=ColorReducerOptions(mode="quantize", n_colors=16),
        edge_crispening=EdgeCrispenerOptions(method="threshold", threshold=220),
        edge_smoothing=EdgeSmootherOptions(mode="pixel-perfect", strength=20),
        outline_perfecting=OutlinePerfecterOptions(close_gaps=True, max_gap_size=1),
    ),
    LogoCleanerPreset.GAME_ASSET: LogoCleanerOptions(
        stray_removal=StrayPixelOptions(min_size=1),
        color_reduction=ColorReducerOptions(mode="auto-clean", threshold=12),
        edge_crispening=EdgeCrispenerOptions(method="threshold", threshold=200),
        edge_smoothing=EdgeSmootherOptions(mode="subtle", strength=25),
        outline_perfecting=OutlinePerfecterOptions(close_gaps=True, max_gap_size=2),
    ),
    LogoCleanerPreset.PRINT_READY: LogoCleanerOptions(
        stray_removal=StrayPixelOptions(min_size=4),
        color_reduction=ColorReducerOptions(mode="auto-clean", threshold=8),
        edge_crispening=EdgeCrispenerOptions(method="decontaminate", background_color=Color(255, 255, 255)),
        edge_smoothing=EdgeSmootherOptions(mode="smooth", strength=60),
        outline_perfecting=OutlinePerfecterOptions(
            close_gaps=True,
            max_gap_size=3,
            straighten_lines=True,
            smooth_curves=True,
            smooth_strength=50,
            sharpen_corners=True,
            corner_threshold=130,
        ),
    ),
}


def preset_options(preset) -> LogoCleanerOptions:
    try:
        key = LogoCleanerPreset(preset)
    except ValueError:
        raise UnknownPresetError(f"Unknown logo cleaner preset: {preset!r}") from None
    return PRESETS[key]


def resolve_options(options: Optional[LogoCleanerOptions]) -> LogoCleanerOptions:
    """Fill unset stages from the preset, one stage at a time."""
    if options is None:
        return LogoCleanerOptions()
    if options.preset is None:
        return options
    base = preset_options(options.preset)
    overrides = {
        name: getattr(options, name) if getattr(options, name) is not None else getattr(base, name)
        for name in STAGE_FIELDS
    }
    return replace(options, **overrides)
