"""Perceptual colour model: sRGB -> CIE L*a*b* (D65), Delta-E and palettes."""

from __future__ import annotations

import math
from typing import Iterable, List, NamedTuple, Sequence

import numpy as np

from .errors import InvalidOptionError
from .raster import OPAQUE_THRESHOLD, validate_buffer


class Color(NamedTuple):
    r: int
    g: int
    b: int


class RGBA(NamedTuple):
    r: int
    g: int
    b: int
    a: int


class LabColor(NamedTuple):
    l: float
    a: float
    b: float


class ColorCount(NamedTuple):
    r: int
    g: int
    b: int
    a: int
    count: int


class PaletteMatch(NamedTuple):
    index: int
    distance: float


# Linear sRGB -> XYZ (D65). Each row is normalised by the white point below.
_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float64,
)
_WHITE_D65 = np.array([0.95047, 1.0, 1.08883], dtype=np.float64)

_CHUNK_ROWS = 16384


def rgb_to_lab_array(rgb) -> np.ndarray:
    """Convert an ``(..., 3)`` array of 0-255 RGB values to LAB.

    The conversion goes sRGB -> linear RGB (2.4 gamma, 0.04045 knee) ->
    XYZ -> L*a*b* with the 0.008856 cube-root knee.
    """
    c = np.asarray(rgb, dtype=np.float64) / 255.0
    linear = np.where(c > 0.04045, np.power((c + 0.055) / 1.055, 2.4), c / 12.92)

    xyz = np.empty_like(linear)
    for row in range(3):
        m = _RGB_TO_XYZ[row]
        xyz[..., row] = (linear[..., 0] * m[0] + linear[..., 1] * m[1] + linear[..., 2] * m[2]) / _WHITE_D65[row]

    f = np.where(xyz > 0.008856, np.cbrt(xyz), 7.787 * xyz + 16.0 / 116.0)
    lab = np.empty_like(f)
    lab[..., 0] = 116.0 * f[..., 1] - 16.0
    lab[..., 1] = 500.0 * (f[..., 0] - f[..., 1])
    lab[..., 2] = 200.0 * (f[..., 1] - f[..., 2])
    return lab


def rgb_to_lab(r: float, g: float, b: float) -> LabColor:
    lab = rgb_to_lab_array((r, g, b))
    return LabColor(float(lab[0]), float(lab[1]), float(lab[2]))


def delta_e_lab(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """CIE76 distance between broadcastable LAB arrays."""
    diff = np.asarray(lab1, dtype=np.float64) - np.asarray(lab2, dtype=np.float64)
    return np.sqrt(np.sum(diff * diff, axis=-1))


def delta_e(c1: Sequence[float], c2: Sequence[float]) -> float:
    """Perceptual difference (CIE76) between two RGB colours."""
    lab = rgb_to_lab_array(np.array([c1[:3], c2[:3]], dtype=np.float64))
    return float(delta_e_lab(lab[0], lab[1]))


def rgb_distance(c1: Sequence[float], c2: Sequence[float]) -> float:
    dr = c1[0] - c2[0]
    dg = c1[1] - c2[1]
    db = c1[2] - c2[2]
    return math.sqrt(dr * dr + dg * dg + db * db)


def rgb_manhattan_distance(c1: Sequence[float], c2: Sequence[float]) -> float:
    return abs(c1[0] - c2[0]) + abs(c1[1] - c2[1]) + abs(c1[2] - c2[2])


def colors_similar(c1: Sequence[float], c2: Sequence[float], threshold: float) -> bool:
    return delta_e(c1, c2) < threshold


def _palette_array(palette: Sequence[Sequence[int]]) -> np.ndarray:
    if palette is None or len(palette) == 0:
        raise InvalidOptionError("Palette must contain at least one colour")
    return np.array([tuple(c)[:3] for c in palette], dtype=np.float64)


def nearest_palette_indices(
    rgb: np.ndarray,
    palette: Sequence[Sequence[int]],
    use_lab: bool = True,
) -> np.ndarray:
    """Index of the nearest palette entry for each row of an ``(N, 3)`` array.

    Ties resolve to the lowest palette index.
    """
    pal = _palette_array(palette)
    pixels = np.asarray(rgb, dtype=np.float64).reshape(-1, 3)
    if use_lab:
        pixels = rgb_to_lab_array(pixels)
        pal = rgb_to_lab_array(pal)
    indices = np.empty(len(pixels), dtype=np.intp)
    for start in range(0, len(pixels), _CHUNK_ROWS):
        chunk = pixels[start:start + _CHUNK_ROWS]
        # argmin keeps the first minimum
        distances = delta_e_lab(chunk[:, None, :], pal[None, :, :])
        indices[start:start + _CHUNK_ROWS] = np.argmin(distances, axis=1)
    return indices


def find_nearest_palette_color(
    color: Sequence[int],
    palette: Sequence[Sequence[int]],
    use_lab: bool = True,
) -> PaletteMatch:
    pal = _palette_array(palette)
    best_index = 0
    best_distance = math.inf
    for index, entry in enumerate(pal):
        distance = delta_e(color, entry) if use_lab else rgb_distance(color, entry)
        if distance < best_distance:
            best_distance = distance
            best_index = index
    return PaletteMatch(best_index, best_distance)


def pack_rgba(pixels: np.ndarray) -> np.ndarray:
    """Pack ``(N, 4)`` uint8 rows into uint32 keys."""
    p = pixels.astype(np.uint32)
    return (p[:, 0] << 24) | (p[:, 1] << 16) | (p[:, 2] << 8) | p[:, 3]


def unpack_rgba(keys: np.ndarray) -> np.ndarray:
    keys = np.asarray(keys, dtype=np.uint32)
    return np.stack(
        [(keys >> 24) & 0xFF, (keys >> 16) & 0xFF, (keys >> 8) & 0xFF, keys & 0xFF],
        axis=-1,
    ).astype(np.uint8)


def extract_unique_colors(buffer: np.ndarray) -> List[ColorCount]:
    """Histogram of opaque RGBA values, most common first.

    Samples with ``a < 128`` are edges rather than fills and are left out.
    Equal counts keep the order in which the colours were first seen.
    """
    validate_buffer(buffer)
    flat = buffer.reshape(-1, 4)
    opaque = flat[flat[:, 3] >= OPAQUE_THRESHOLD]
    if len(opaque) == 0:
        return []

    keys, first_seen, counts = np.unique(pack_rgba(opaque), return_index=True, return_counts=True)
    order = np.argsort(first_seen, kind="stable")
    order = order[np.argsort(-counts[order], kind="stable")]
    colors = unpack_rgba(keys[order])
    return [
        ColorCount(int(c[0]), int(c[1]), int(c[2]), int(c[3]), int(n))
        for c, n in zip(colors, counts[order])
    ]


def parse_hex_color(text: str) -> Color:
    """Parse ``"ff0044"`` or ``"#ff0044"``."""
    value = text.strip().lstrip("#")
    if len(value) != 6:
        raise InvalidOptionError(f"Invalid hex colour: {text!r}")
    try:
        return Color(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))
    except ValueError as exc:
        raise InvalidOptionError(f"Invalid hex colour: {text!r}") from exc


def parse_palette(entries: Iterable[str]) -> List[Color]:
    return [parse_hex_color(entry) for entry in entries]
