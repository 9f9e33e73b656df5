"""Tests for the individual cleanup operations."""

from __future__ import annotations

import numpy as np
import pytest

from pixel_cleanup.color import Color, extract_unique_colors
from pixel_cleanup.color_reducer import reduce_color_noise
from pixel_cleanup.contours import sobel_edge_detection
from pixel_cleanup.config import (
    ColorReducerOptions,
    EdgeCrispenerOptions,
    EdgeSmootherOptions,
    LineNormalizerOptions,
    OutlinePerfecterOptions,
    StrayPixelOptions,
    named_palette,
)
from pixel_cleanup.edge_crispener import crisp_edges
from pixel_cleanup.edge_smoother import detect_staircase_patterns, smooth_edges
from pixel_cleanup.errors import InvalidBufferError, InvalidOptionError, MissingOptionError
from pixel_cleanup.line_normalizer import normalize_line_thickness
from pixel_cleanup.outline_perfecter import perfect_outline, sharpen_corners, smooth_curves, straighten_lines
from pixel_cleanup.stray_pixels import PREVIEW_COLOR, preview_stray_pixels, remove_stray_pixels

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)


# ---------------------------------------------------------------------------
# Synthetic image helpers
# ---------------------------------------------------------------------------


def _blank(height: int, width: int) -> np.ndarray:
    return np.zeros((height, width, 4), dtype=np.uint8)


def _messy_logo(size: int = 24) -> np.ndarray:
    """A noisy two-colour logo with soft edges and a few specks."""
    rng = np.random.RandomState(7)
    buf = _blank(size, size)
    buf[4:16, 4:16] = RED
    buf[10:20, 12:20] = BLUE
    noise = rng.randint(-6, 7, (size, size, 3))
    opaque = buf[:, :, 3] > 0
    buf[:, :, :3] = np.where(
        opaque[:, :, None], np.clip(buf[:, :, :3].astype(int) + noise, 0, 255), 0
    ).astype(np.uint8)
    # soft fringe
    buf[3, 4:16] = (255, 120, 120, 90)
    buf[4:16, 16] = (250, 10, 10, 170)
    # specks
    buf[1, 1] = GREEN
    buf[22, 2] = (30, 30, 30, 255)
    buf[21, 21] = (200, 0, 200, 200)
    return buf


def _square(size: int = 14, lo: int = 2, hi: int = 12, color=RED) -> np.ndarray:
    buf = _blank(size, size)
    buf[lo:hi, lo:hi] = color
    return buf


OPERATIONS = {
    "stray-delete": lambda b: remove_stray_pixels(b, StrayPixelOptions(min_size=3)),
    "stray-merge": lambda b: remove_stray_pixels(b, StrayPixelOptions(min_size=3, merge=True)),
    "auto-clean": lambda b: reduce_color_noise(b, ColorReducerOptions(mode="auto-clean")),
    "palette-lock": lambda b: reduce_color_noise(
        b, ColorReducerOptions(mode="palette-lock", palette=named_palette("pico8"))
    ),
    "quantize": lambda b: reduce_color_noise(b, ColorReducerOptions(mode="quantize", n_colors=4)),
    "crisp-threshold": lambda b: crisp_edges(b, EdgeCrispenerOptions(method="threshold")),
    "crisp-erode": lambda b: crisp_edges(b, EdgeCrispenerOptions(method="erode")),
    "crisp-decontaminate": lambda b: crisp_edges(b, EdgeCrispenerOptions(method="decontaminate")),
    "smooth-subtle": lambda b: smooth_edges(b, EdgeSmootherOptions(mode="subtle", strength=30)),
    "smooth-standard": lambda b: smooth_edges(b, EdgeSmootherOptions(mode="standard")),
    "smooth-smooth": lambda b: smooth_edges(b, EdgeSmootherOptions(mode="smooth", preserve_corners=False)),
    "smooth-pixel-perfect": lambda b: smooth_edges(b, EdgeSmootherOptions(mode="pixel-perfect")),
    "lines": lambda b: normalize_line_thickness(b, LineNormalizerOptions(target_width=2)),
    "outline": lambda b: perfect_outline(
        b,
        OutlinePerfecterOptions(straighten_lines=True, smooth_curves=True, sharpen_corners=True),
    ),
}


# ---------------------------------------------------------------------------
# Tests: Shared contract
# ---------------------------------------------------------------------------


class TestOperationContract:
    @pytest.mark.parametrize("name", sorted(OPERATIONS))
    def test_pure_and_repeatable(self, name):
        buf = _messy_logo()
        snapshot = buf.copy()
        first = OPERATIONS[name](buf)
        second = OPERATIONS[name](buf)

        assert np.array_equal(buf, snapshot), f"{name} mutated its input"
        assert np.array_equal(first, second), f"{name} is not repeatable"
        assert first is not buf

    @pytest.mark.parametrize("name", sorted(OPERATIONS))
    def test_dimensions_preserved(self, name):
        buf = _messy_logo()[:17, :13].copy()
        out = OPERATIONS[name](buf)
        assert out.shape == buf.shape
        assert out.dtype == np.uint8

    def test_rejects_non_rgba(self):
        with pytest.raises(InvalidBufferError):
            remove_stray_pixels(np.zeros((4, 4, 3), dtype=np.uint8))
        with pytest.raises(InvalidBufferError):
            crisp_edges(np.zeros((4, 4, 4), dtype=np.float32), EdgeCrispenerOptions(method="threshold"))


# ---------------------------------------------------------------------------
# Tests: Stray pixels
# ---------------------------------------------------------------------------


class TestStrayPixels:
    def test_delete_law(self):
        buf = _blank(12, 12)
        buf[1, 1:4] = BLUE                 # 3-pixel blob
        buf[6:8, 5:10] = RED               # 10-pixel blob
        out = remove_stray_pixels(buf, StrayPixelOptions(min_size=5, merge=False))

        assert (out[1, 1:4] == 0).all()
        assert (out[6:8, 5:10] == RED).all()
        assert (out[:, :, 3] > 0).sum() == 10

    def test_merge_takes_surrounding_colour(self):
        buf = _blank(12, 12)
        buf[3:9, 7:11] = GREEN
        buf[5, 5] = RED
        out = remove_stray_pixels(buf, StrayPixelOptions(min_size=3, merge=True))
        assert tuple(out[5, 5]) == GREEN
        assert (out[3:9, 7:11] == GREEN).all()

    def test_preview_highlights_strays(self):
        buf = _blank(8, 8)
        buf[0, 0] = BLUE
        buf[4:7, 4:7] = RED
        out = preview_stray_pixels(buf, 3)
        assert tuple(out[0, 0]) == PREVIEW_COLOR
        assert (out[4:7, 4:7] == RED).all()


# ---------------------------------------------------------------------------
# Tests: Colour reduction
# ---------------------------------------------------------------------------


class TestColorReducer:
    def test_palette_lock_exactness(self):
        rng = np.random.RandomState(3)
        buf = rng.randint(0, 256, (10, 10, 4)).astype(np.uint8)
        buf[:, :, 3] = rng.choice([0, 60, 128, 200, 255], (10, 10))
        palette = [Color(255, 0, 0), Color(0, 0, 255)]
        out = reduce_color_noise(buf, ColorReducerOptions(mode="palette-lock", palette=palette))

        opaque = buf[:, :, 3] >= 128
        rgb = {tuple(p) for p in out[opaque, :3].tolist()}
        assert rgb <= {(255, 0, 0), (0, 0, 255)}
        assert np.array_equal(out[:, :, 3], buf[:, :, 3])
        assert np.array_equal(out[~opaque], buf[~opaque])

    def test_palette_lock_requires_palette(self):
        with pytest.raises(MissingOptionError):
            reduce_color_noise(_square(), ColorReducerOptions(mode="palette-lock"))

    def test_unknown_mode(self):
        with pytest.raises(InvalidOptionError):
            ColorReducerOptions(mode="posterize")

    def test_auto_clean_collapses_near_duplicates(self):
        buf = _blank(6, 6)
        buf[0:3, :] = (255, 0, 0, 255)
        buf[3, 0] = (250, 0, 0, 255)
        buf[3, 1] = (255, 4, 0, 255)
        buf[3, 2] = (252, 2, 2, 255)
        buf[4:6, :] = (0, 0, 255, 255)
        out = reduce_color_noise(buf, ColorReducerOptions(mode="auto-clean", threshold=15))

        assert len({tuple(p) for p in out[0:4, 0:3].reshape(-1, 4).tolist()}) == 1
        assert tuple(out[0, 0]) == (255, 0, 0, 255)
        assert (out[4:6] == (0, 0, 255, 255)).all()
        assert (out[3, 3:] == 0).all()

    def test_auto_clean_rgb_distance(self):
        buf = _blank(2, 4)
        buf[0, :] = (100, 100, 100, 255)
        buf[1, 0] = (104, 100, 100, 255)
        out = reduce_color_noise(buf, ColorReducerOptions(mode="auto-clean", threshold=5, use_lab=False))
        assert tuple(out[1, 0]) == tuple(out[0, 0])

    def test_quantize_small_palette_returned_unchanged(self):
        buf = _square()
        out = reduce_color_noise(buf, ColorReducerOptions(mode="quantize", n_colors=4))
        assert np.array_equal(out, buf)
        assert out is not buf

    def test_quantize_limits_colours(self):
        rng = np.random.RandomState(11)
        buf = rng.randint(0, 256, (16, 16, 4)).astype(np.uint8)
        buf[:, :, 3] = 255
        options = ColorReducerOptions(mode="quantize", n_colors=4, seed=5)
        out = reduce_color_noise(buf, options)
        assert len(extract_unique_colors(out)) <= 4
        assert np.array_equal(out, reduce_color_noise(buf, options))


# ---------------------------------------------------------------------------
# Tests: Edge crispening
# ---------------------------------------------------------------------------


class TestEdgeCrispener:
    def test_threshold(self):
        buf = _blank(1, 3)
        buf[0, 0] = (10, 20, 30, 100)
        buf[0, 1] = (10, 20, 30, 220)
        buf[0, 2] = (10, 20, 30, 255)
        out = crisp_edges(buf, EdgeCrispenerOptions(method="threshold", threshold=200))
        assert tuple(out[0, 0]) == (0, 0, 0, 0)
        assert tuple(out[0, 1]) == (10, 20, 30, 255)
        assert tuple(out[0, 2]) == (10, 20, 30, 255)

    def test_erode_removes_thin_line(self):
        buf = _blank(7, 7)
        buf[3, 1:6] = RED
        out = crisp_edges(buf, EdgeCrispenerOptions(method="erode", erode_pixels=1))
        assert not out.any()

    def test_decontaminate_restores_colour(self):
        buf = _blank(1, 3)
        # red at alpha 128 composited over white
        buf[0, 0] = (255, 127, 127, 128)
        buf[0, 1] = (200, 200, 200, 100)
        buf[0, 2] = (40, 50, 60, 255)
        out = crisp_edges(buf, EdgeCrispenerOptions(method="decontaminate", background_color=(255, 255, 255)))
        assert tuple(out[0, 0]) == (255, 0, 0, 255)
        assert tuple(out[0, 1]) == (0, 0, 0, 0)
        assert tuple(out[0, 2]) == (40, 50, 60, 255)


# ---------------------------------------------------------------------------
# Tests: Edge smoothing
# ---------------------------------------------------------------------------


class TestEdgeSmoother:
    @staticmethod
    def _elbow_line() -> np.ndarray:
        buf = _blank(9, 9)
        buf[4, 1:5] = WHITE
        buf[5:8, 4] = WHITE
        return buf

    def test_pixel_perfect_removes_elbow(self):
        buf = self._elbow_line()
        out = smooth_edges(buf, EdgeSmootherOptions(mode="pixel-perfect"))
        assert tuple(out[4, 4]) == (0, 0, 0, 0)
        remaining = buf.copy()
        remaining[4, 4] = 0
        assert np.array_equal(out, remaining)

    @staticmethod
    def _two_tone_elbow() -> np.ndarray:
        # grey and green share luminance 100, so the Sobel map matches a single-colour line
        buf = _blank(9, 9)
        buf[4, 1:5] = (100, 100, 100, 255)
        buf[5:8, 4] = (100, 100, 100, 255)
        buf[5, 4] = (0, 170, 0, 255)
        return buf

    def test_thin_stroke_is_blended_by_default(self):
        buf = self._two_tone_elbow()
        # (3, 4) is flagged and has three opaque neighbours: two grey, one green
        assert detect_staircase_patterns(sobel_edge_detection(buf))[4, 3]
        out = smooth_edges(buf, EdgeSmootherOptions(mode="standard"))
        assert tuple(out[4, 3]) == (84, 112, 84, 255)

    def test_preserve_corners_is_opt_in(self):
        buf = self._two_tone_elbow()
        out = smooth_edges(buf, EdgeSmootherOptions(mode="standard", preserve_corners=True))
        assert tuple(out[4, 3]) == (100, 100, 100, 255)

    def test_blending_keeps_alpha(self):
        buf = _messy_logo()
        out = smooth_edges(buf, EdgeSmootherOptions(mode="smooth", strength=80, preserve_corners=False))
        assert np.array_equal(out[:, :, 3], buf[:, :, 3])

    def test_zero_strength_is_identity(self):
        buf = _messy_logo()
        out = smooth_edges(buf, EdgeSmootherOptions(mode="standard", strength=0))
        assert np.array_equal(out, buf)

    def test_uniform_shape_unchanged(self):
        buf = _square()
        out = smooth_edges(buf, EdgeSmootherOptions(mode="standard"))
        assert np.array_equal(out, buf)

    def test_staircase_detection_ignores_flat_regions(self):
        assert not detect_staircase_patterns(np.zeros((5, 5), dtype=np.float32)).any()
        assert not detect_staircase_patterns(np.full((2, 2), 100, dtype=np.float32)).any()

    def test_unknown_mode(self):
        with pytest.raises(InvalidOptionError):
            EdgeSmootherOptions(mode="blurry")


# ---------------------------------------------------------------------------
# Tests: Line normalisation
# ---------------------------------------------------------------------------


class TestLineNormalizer:
    def test_thin_line_is_thickened(self):
        buf = _blank(9, 12)
        buf[4, 1:11] = BLUE
        out = normalize_line_thickness(buf, LineNormalizerOptions(target_width=3))
        assert (out[:, :, 3] > 0).sum() > (buf[:, :, 3] > 0).sum()
        assert (out[4, 1:11] == BLUE).all()
        assert tuple(out[3, 5]) == BLUE

    def test_thick_bar_loses_pixels(self):
        buf = _blank(9, 16)
        buf[1:8, 1:15] = RED
        out = normalize_line_thickness(buf, LineNormalizerOptions(target_width=2))
        assert (out[:, :, 3] > 0).sum() < (buf[:, :, 3] > 0).sum()
        assert {tuple(p) for p in out[out[:, :, 3] > 0].tolist()} == {RED}

    def test_matching_width_is_identity(self):
        buf = _blank(9, 12)
        buf[4, 1:11] = BLUE
        out = normalize_line_thickness(buf, LineNormalizerOptions(target_width=2))
        assert np.array_equal(out, buf)

    def test_fully_opaque_image_terminates(self):
        buf = np.full((6, 6, 4), 255, dtype=np.uint8)
        out = normalize_line_thickness(buf)
        assert out.shape == buf.shape


# ---------------------------------------------------------------------------
# Tests: Outline perfecting
# ---------------------------------------------------------------------------


class TestOutlinePerfecter:
    def test_close_gap_in_ring(self):
        buf = _blank(14, 14)
        buf[2, 2:12] = RED
        buf[11, 2:12] = RED
        buf[2:12, 2] = RED
        buf[2:12, 11] = RED
        buf[2, 6] = 0
        out = perfect_outline(buf, OutlinePerfecterOptions(close_gaps=True, max_gap_size=1))
        assert tuple(out[2, 6]) == RED

    def test_straighten_snaps_shallow_step(self):
        buf = _blank(14, 20)
        buf[3:11, 2:10] = RED
        buf[4:11, 10:18] = RED
        out = straighten_lines(buf, (0, 45, 90, 135), segment_length=8)
        assert tuple(out[3, 10]) == RED
        assert (out[:, :, 3] >= buf[:, :, 3]).all()

    def test_smooth_uniform_square_is_identity(self):
        buf = _square()
        assert np.array_equal(smooth_curves(buf, 50), buf)

    @pytest.mark.parametrize("threshold", [30, 120, 130])
    def test_sharpen_leaves_clean_square_alone(self, threshold):
        buf = _square()
        assert np.array_equal(sharpen_corners(buf, threshold), buf)

    def test_outline_with_sharpening_keeps_square(self):
        buf = _square(size=20, lo=5, hi=13)
        out = perfect_outline(buf, OutlinePerfecterOptions(sharpen_corners=True, corner_threshold=120))
        assert np.array_equal(out, buf)

    def test_sharpen_fills_chamfered_corner(self):
        buf = _square()
        buf[2, 2] = 0
        out = sharpen_corners(buf, 30)
        assert tuple(out[2, 2]) == RED
        assert (out[:, :, 3] >= buf[:, :, 3]).all()
        # the untouched right-angle corners do not grow
        assert tuple(out[12, 12]) == (0, 0, 0, 0)
        assert tuple(out[1, 12]) == (0, 0, 0, 0)

    def test_stage_order(self):
        stages = []
        perfect_outline(
            _square(),
            OutlinePerfecterOptions(straighten_lines=True, smooth_curves=True, sharpen_corners=True),
            on_progress=lambda percent, stage: stages.append(stage),
        )
        assert stages == ["close-gaps", "straighten-lines", "smooth-curves", "sharpen-corners", None]

    def test_straighten_requires_angles(self):
        with pytest.raises(InvalidOptionError):
            OutlinePerfecterOptions(straighten_lines=True, snap_angles=())
