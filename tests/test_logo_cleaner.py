"""End-to-end tests for the logo cleaner pipeline and its presets."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from pixel_cleanup.color import delta_e, extract_unique_colors
from pixel_cleanup.config import (
    PRESETS,
    ColorReducerOptions,
    LogoCleanerOptions,
    LogoCleanerPreset,
    OutlinePerfecterOptions,
    StrayPixelOptions,
    preset_options,
    resolve_options,
)
from pixel_cleanup.errors import MissingOptionError, UnknownPresetError
from pixel_cleanup.logo_cleaner import clean_logo

RED = (255, 0, 0, 255)
NEAR_REDS = [(250, 0, 0, 255), (255, 4, 0, 255), (252, 2, 2, 255)]


def _logo_with_noise() -> np.ndarray:
    """16x16 red square with two stray dots outside and near-duplicate reds inside."""
    buf = np.zeros((16, 16, 4), dtype=np.uint8)
    buf[4:12, 4:12] = RED
    buf[6, 6] = NEAR_REDS[0]
    buf[7, 8] = NEAR_REDS[1]
    buf[9, 5] = NEAR_REDS[2]
    buf[1, 1] = RED
    buf[14, 14] = RED
    return buf


# ---------------------------------------------------------------------------
# Tests: Pipeline
# ---------------------------------------------------------------------------


class TestCleanLogo:
    def test_standard_preset_scenario(self):
        buf = _logo_with_noise()
        for near in NEAR_REDS:
            assert delta_e(RED, near) < 5

        out = clean_logo(buf, LogoCleanerOptions(preset="logo-standard"))

        assert tuple(out[1, 1]) == (0, 0, 0, 0)
        assert tuple(out[14, 14]) == (0, 0, 0, 0)
        square = out[4:12, 4:12]
        assert (square[:, :, 3] == 255).all()
        assert len({tuple(p) for p in square.reshape(-1, 4).tolist()}) == 1
        assert len(extract_unique_colors(out)) == 1

    def test_input_untouched_and_repeatable(self):
        buf = _logo_with_noise()
        snapshot = buf.copy()
        first = clean_logo(buf, LogoCleanerOptions(preset="logo-standard"))
        second = clean_logo(buf, LogoCleanerOptions(preset="logo-standard"))
        assert np.array_equal(buf, snapshot)
        assert np.array_equal(first, second)

    @pytest.mark.parametrize("preset", [p.value for p in LogoCleanerPreset])
    def test_every_preset_runs(self, preset):
        buf = _logo_with_noise()
        out = clean_logo(buf, LogoCleanerOptions(preset=preset))
        assert out.shape == buf.shape
        assert out.dtype == np.uint8

    def test_no_stages_returns_copy(self):
        buf = _logo_with_noise()
        out = clean_logo(buf, LogoCleanerOptions())
        assert np.array_equal(out, buf)
        assert out is not buf

    def test_print_ready_keeps_clean_square_footprint(self):
        buf = np.zeros((16, 16, 4), dtype=np.uint8)
        buf[4:12, 4:12] = RED
        out = clean_logo(buf, LogoCleanerOptions(preset="print-ready"))
        assert int((out[:, :, 3] >= 128).sum()) == 64
        assert (out[4:12, 4:12, 3] == 255).all()

    def test_explicit_stage_overrides_preset(self):
        buf = _logo_with_noise()
        options = LogoCleanerOptions(
            preset="logo-standard",
            stray_removal=StrayPixelOptions(min_size=1),
            outline_perfecting=OutlinePerfecterOptions(close_gaps=False),
        )
        out = clean_logo(buf, options)
        # strays survive because only this stage was replaced
        assert out[1, 1, 3] == 255
        # colour reduction still comes from the preset
        assert len({tuple(p) for p in out[4:12, 4:12].reshape(-1, 4).tolist()}) == 1

    def test_stage_error_propagates_unchanged(self, caplog):
        options = LogoCleanerOptions(
            preset="logo-standard",
            color_reduction=ColorReducerOptions(mode="palette-lock"),
        )
        with caplog.at_level(logging.ERROR, logger="pixel_cleanup.logo_cleaner"):
            with pytest.raises(MissingOptionError):
                clean_logo(_logo_with_noise(), options)
        assert "pipeline failed" in caplog.text

    def test_progress_reports_each_stage(self):
        calls = []
        clean_logo(
            _logo_with_noise(),
            LogoCleanerOptions(preset="logo-minimal"),
            on_progress=lambda percent, stage: calls.append((percent, stage)),
        )
        assert calls[0] == (0.0, "Removing stray pixels")
        assert calls[-1] == (100, None)
        labels = [stage for _, stage in calls if stage is not None]
        assert labels == [
            "Removing stray pixels",
            "Reducing color noise",
            "Crisping edges",
            "Smoothing edges",
            "Perfecting outline",
        ]
        percents = [percent for percent, _ in calls]
        assert percents == sorted(percents)

    def test_failing_progress_callback_is_ignored(self):
        def explode(percent, stage):
            raise RuntimeError("ui went away")

        buf = _logo_with_noise()
        expected = clean_logo(buf, LogoCleanerOptions(preset="logo-standard"))
        assert np.array_equal(
            clean_logo(buf, LogoCleanerOptions(preset="logo-standard"), on_progress=explode),
            expected,
        )


# ---------------------------------------------------------------------------
# Tests: Presets
# ---------------------------------------------------------------------------


class TestPresets:
    def test_all_presets_published(self):
        assert {p.value for p in PRESETS} == {
            "logo-minimal",
            "logo-standard",
            "logo-aggressive",
            "icon-app-store",
            "game-asset",
            "print-ready",
        }

    def test_unknown_preset_rejected(self):
        with pytest.raises(UnknownPresetError):
            LogoCleanerOptions(preset="logo-deluxe")
        with pytest.raises(UnknownPresetError):
            preset_options("logo-deluxe")

    def test_resolve_merges_per_stage(self):
        override = StrayPixelOptions(min_size=9)
        resolved = resolve_options(LogoCleanerOptions(preset="logo-aggressive", stray_removal=override))
        base = PRESETS[LogoCleanerPreset.LOGO_AGGRESSIVE]
        assert resolved.stray_removal is override
        assert resolved.color_reduction == base.color_reduction
        assert resolved.outline_perfecting.sharpen_corners

    def test_preset_values(self):
        standard = preset_options("logo-standard")
        assert standard.stray_removal.min_size == 3
        assert standard.color_reduction.threshold == 15
        assert standard.edge_crispening.threshold == 200
        assert standard.outline_perfecting.max_gap_size == 3
        aggressive = preset_options("logo-aggressive")
        assert aggressive.stray_removal.merge
        assert aggressive.color_reduction.n_colors == 8
