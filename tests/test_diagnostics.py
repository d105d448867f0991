"""Tests for the inspection helpers used when tuning detection."""

from __future__ import annotations

import numpy as np

from overlay_remover import OverlayRemover, Raster
from overlay_remover.diagnostics import (
    CANDIDATE_COLOR,
    OVERLAY_MODES,
    box_corner_mask,
    brightness_difference_mask,
    classify_structure,
    compute_removal_metrics,
    plot_detection_debug,
    render_debug_overlays,
)


def _make_af_box_frame() -> np.ndarray:
    pixels = np.zeros((100, 100, 3), dtype=np.uint8)
    pixels[80:84, 10:30] = 255
    return pixels


def _make_box_outline(size: int = 40) -> np.ndarray:
    """White 20x20 box outline with its top-left corner at (5, 5)."""
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[5, 5:25] = 255
    pixels[24, 5:25] = 255
    pixels[5:25, 5] = 255
    pixels[5:25, 24] = 255
    return pixels


class TestClassifyStructure:
    def test_l_shape_and_isolated_pixel(self):
        mask = np.zeros((40, 40), dtype=bool)
        mask[5, 5:15] = True
        mask[5:15, 5] = True
        mask[30, 30] = True

        structure = classify_structure(mask)
        assert structure["corner"][5, 5]
        assert structure["horizontal"][5, 10]
        assert structure["vertical"][10, 5]
        assert structure["isolated"][30, 30]
        assert not structure["vertical"][5, 10]

    def test_short_run_is_not_a_line(self):
        mask = np.zeros((10, 10), dtype=bool)
        mask[4, 4:6] = True
        structure = classify_structure(mask)
        assert not structure["horizontal"].any()
        assert structure["isolated"][4, 4]


class TestProbes:
    def test_brightness_difference_flags_lone_bright_pixel(self):
        pixels = np.zeros((20, 20, 3), dtype=np.uint8)
        pixels[10, 10] = 255
        pixels[1, 1] = 255
        mask = brightness_difference_mask(pixels)
        assert mask[10, 10]
        assert not mask[1, 1]
        assert mask.sum() == 1

    def test_brightness_difference_on_tiny_frame(self):
        assert not brightness_difference_mask(np.full((3, 3, 3), 255, dtype=np.uint8)).any()

    def test_box_corner_probe_finds_top_left_corner(self):
        mask = box_corner_mask(_make_box_outline())
        assert mask[5, 5]
        assert not mask[5, 10]
        assert not mask[5, 24]


class TestOverlaysAndMetrics:
    def test_render_all_variants(self):
        pixels = _make_af_box_frame()
        remover = OverlayRemover()
        cleaned = remover.run(pixels)
        candidates = remover.last_detection.mask

        overlays = render_debug_overlays(pixels, cleaned, candidates, remover.last_exclusion)
        assert set(overlays) == set(OVERLAY_MODES)
        for panel in overlays.values():
            assert panel.shape == (100, 300, 3)
        assert tuple(overlays["candidates"][80, 100 + 10]) == CANDIDATE_COLOR
        # right-hand panel is the cleaned frame
        assert np.array_equal(overlays["candidates"][:, 200:], cleaned.pixels)

    def test_metrics_for_af_box(self):
        raster = Raster.from_array(_make_af_box_frame())
        remover = OverlayRemover()
        cleaned = remover.run(raster)
        detection = remover.last_detection

        metrics = compute_removal_metrics(raster, cleaned, detection.mask, detection.region)
        assert metrics["candidate_pixels"] == 432
        assert metrics["residual_bright"] == 0
        assert metrics["outside_region"] == 16
        assert metrics["touches_region_edge"] is True
        assert metrics["changed_pixels"] == 80

    def test_plot_is_written(self, tmp_path):
        raster = Raster.from_array(_make_af_box_frame())
        remover = OverlayRemover()
        remover.run(raster)
        target = tmp_path / "plots" / "frame_detection.png"
        plot_detection_debug(remover.last_report.to_dict(), raster, save_path=str(target))
        assert target.exists()
