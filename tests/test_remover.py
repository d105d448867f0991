"""End-to-end tests for ``remove_overlay`` and its supporting types.

Covers the no-op, locality, determinism, boundary and convergence
properties on synthetic captures, plus config and raster plumbing.
"""

from __future__ import annotations

import json

import numpy as np
import pytest
from PIL import Image

from overlay_remover import (
    InvalidDimensions,
    OverlayConfig,
    OverlayRemover,
    Raster,
    RasterError,
    detect,
    remove_overlay,
)


# ---------------------------------------------------------------------------
# Synthetic image helpers
# ---------------------------------------------------------------------------


def _make_af_box_frame() -> np.ndarray:
    """100x100 black frame with a 20x4 white bar at (10, 80)."""
    pixels = np.zeros((100, 100, 3), dtype=np.uint8)
    pixels[80:84, 10:30] = 255
    return pixels


def _make_textured_capture(seed: int = 11) -> np.ndarray:
    """Noisy mid-tone photo with an AF box outline in the bottom-left."""
    rng = np.random.RandomState(seed)
    pixels = rng.randint(40, 150, (120, 160, 3), dtype=np.uint8)
    # box outline: two horizontal and two vertical strokes
    pixels[90, 10:40] = 255
    pixels[110, 10:40] = 255
    pixels[90:111, 10] = 255
    pixels[90:111, 39] = 255
    return pixels


# ---------------------------------------------------------------------------
# Tests: scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_af_box_is_removed(self):
        raster = Raster.from_array(_make_af_box_frame())
        cleaned = remove_overlay(raster)

        box = cleaned.pixels[80:84, 10:30].astype(int)
        assert box.max() <= 50
        assert tuple(cleaned.pixels[10, 90]) == (0, 0, 0)
        assert cleaned.shape == raster.shape

    def test_uniform_gray_frame_is_returned_unchanged(self):
        raster = Raster.from_array(np.full((50, 50, 3), 128, dtype=np.uint8))
        cleaned = remove_overlay(raster)
        assert cleaned is raster

    def test_all_bright_frame_degrades_gracefully(self):
        raster = Raster.from_array(np.full((40, 40, 3), 255, dtype=np.uint8))
        remover = OverlayRemover()
        cleaned = remover.run(raster)

        assert cleaned == raster
        assert remover.last_report.overlay_found
        assert remover.last_report.unresolved == remover.last_report.candidates

    def test_outline_on_textured_photo_is_darkened(self):
        pixels = _make_textured_capture()
        cleaned = remove_overlay(pixels)
        outline = np.zeros(pixels.shape[:2], dtype=bool)
        outline[90, 10:40] = True
        outline[110, 10:40] = True
        outline[90:111, 10] = True
        outline[90:111, 39] = True
        assert np.all(cleaned.pixels[outline].max(axis=-1) < 235)


# ---------------------------------------------------------------------------
# Tests: properties
# ---------------------------------------------------------------------------


class TestProperties:
    def test_no_op_without_bright_region_pixels(self):
        rng = np.random.RandomState(5)
        pixels = rng.randint(0, 236, (90, 120, 3), dtype=np.uint8)
        pixels[0:20, 100:120] = 255  # bright, but outside the search region
        raster = Raster.from_array(pixels)
        assert remove_overlay(raster).to_bytes() == raster.to_bytes()

    def test_locality(self):
        pixels = _make_textured_capture(seed=2)
        remover = OverlayRemover()
        cleaned = remover.run(pixels)
        mask = remover.last_detection.mask
        assert mask.any()
        assert np.array_equal(cleaned.pixels[~mask], pixels[~mask])

    def test_determinism(self):
        pixels = _make_textured_capture(seed=9)
        first = remove_overlay(pixels)
        second = remove_overlay(pixels)
        assert first.to_bytes() == second.to_bytes()

    @pytest.mark.parametrize("size", [1, 2])
    def test_tiny_frames_do_not_fail(self, size):
        raster = Raster.from_array(np.full((size, size, 3), 255, dtype=np.uint8))
        assert remove_overlay(raster) == raster

    @pytest.mark.parametrize("shape", [(0, 5, 3), (5, 0, 3), (0, 0, 3)])
    def test_zero_dimensions_raise(self, shape):
        with pytest.raises(InvalidDimensions):
            remove_overlay(np.zeros(shape, dtype=np.uint8))

    def test_second_run_does_not_regrow_overlay(self):
        config = OverlayConfig()
        original = Raster.from_array(_make_af_box_frame())
        first_mask = detect(original, config).mask
        cleaned = remove_overlay(original, config)
        second_mask = detect(cleaned, config).mask
        assert not np.any(second_mask & ~first_mask)
        assert second_mask.sum() < first_mask.sum()

    def test_input_is_never_mutated(self):
        pixels = _make_af_box_frame()
        raster = Raster.from_array(pixels)
        remove_overlay(raster)
        assert np.array_equal(raster.pixels, pixels)


# ---------------------------------------------------------------------------
# Tests: observability
# ---------------------------------------------------------------------------


class TestEvents:
    def test_event_sequence(self):
        events = []
        remove_overlay(_make_af_box_frame(), event_callback=lambda e, p: events.append((e, p)))

        names = [name for name, _ in events]
        assert names[:6] == ["detection.pass"] * 6
        assert names[6] == "detection.done"
        assert names[7:10] == ["reconstruction.stage"] * 3
        assert names[-1] == "removal.done"

        done = events[-1][1]
        assert done["overlay_found"] is True
        assert done["candidates"] == 432
        assert set(done["stage_counts"]) == {"ray_sampling", "weighted_smoothing", "aggressive_cleanup"}

    def test_empty_detection_still_reports(self):
        events = []
        remove_overlay(
            np.full((50, 50, 3), 128, dtype=np.uint8),
            event_callback=lambda e, p: events.append((e, p)),
        )
        assert events[-1][0] == "removal.done"
        assert events[-1][1]["overlay_found"] is False

    def test_failing_callback_does_not_abort(self):
        def _boom(event, payload):
            raise RuntimeError("hook down")

        cleaned = remove_overlay(_make_af_box_frame(), event_callback=_boom)
        assert cleaned.pixels[80:84, 10:30].max() <= 50


# ---------------------------------------------------------------------------
# Tests: config
# ---------------------------------------------------------------------------


class TestConfig:
    def test_defaults_match_documented_values(self):
        config = OverlayConfig()
        assert config.bright_threshold == 235
        assert config.contrast_threshold == 50
        assert (config.exclusion_rows, config.exclusion_cols) == (10, 7)
        assert (config.ray_min_distance, config.ray_max_distance) == (12, 25)
        assert config.corner_window == 13
        assert config.cleanup_percentile == 25

    def test_dict_round_trip(self):
        config = OverlayConfig(bright_threshold=220, spatial_decay=12.5)
        assert OverlayConfig.from_dict(config.to_dict()) == config

    def test_from_json_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "booth.json"
        path.write_text(json.dumps({"bright_threshold": 228, "camera": "250D"}))
        config = OverlayConfig.from_json(path)
        assert config.bright_threshold == 228
        assert config.contrast_threshold == 50

    @pytest.mark.parametrize(
        "changes",
        [
            {"region_width_fraction": 1.5},
            {"corner_window": 12},
            {"ray_min_distance": 30},
            {"cleanup_percentile": 101},
            {"smoothing_inner_window": 31},
            {"color_decay": 0.0},
        ],
    )
    def test_invalid_config_is_rejected(self, changes):
        with pytest.raises(ValueError):
            OverlayRemover(OverlayConfig().replace(**changes))

    def test_lower_threshold_changes_detection(self):
        pixels = np.zeros((100, 100, 3), dtype=np.uint8)
        pixels[85, 10:20] = 230
        raster = Raster.from_array(pixels)
        assert detect(raster, OverlayConfig()).is_empty()
        assert not detect(raster, OverlayConfig(bright_threshold=225)).is_empty()


# ---------------------------------------------------------------------------
# Tests: raster
# ---------------------------------------------------------------------------


class TestRaster:
    def test_from_bytes(self):
        data = bytes(range(2 * 3 * 3))
        raster = Raster.from_bytes(3, 2, data)
        assert (raster.width, raster.height) == (3, 2)
        assert tuple(raster.pixels[0, 1]) == (3, 4, 5)
        assert raster.to_bytes() == data

    def test_from_bytes_length_mismatch(self):
        with pytest.raises(RasterError):
            Raster.from_bytes(3, 2, b"\x00" * 17)

    def test_from_bytes_zero_dimension(self):
        with pytest.raises(InvalidDimensions):
            Raster.from_bytes(0, 4, b"")

    def test_pixels_are_read_only(self):
        raster = Raster.from_array(np.zeros((4, 4, 3), dtype=np.uint8))
        with pytest.raises(ValueError):
            raster.pixels[0, 0] = 1
        copy = raster.to_array()
        copy[0, 0] = 1
        assert raster.pixels[0, 0, 0] == 0

    def test_alpha_channel_is_dropped(self):
        rgba = np.full((4, 4, 4), 200, dtype=np.uint8)
        assert Raster.from_array(rgba).pixels.shape == (4, 4, 3)

    def test_grayscale_array_is_rejected(self):
        with pytest.raises(RasterError):
            Raster.from_array(np.zeros((4, 4), dtype=np.uint8))

    @pytest.mark.parametrize("channels", [1, 2, 5])
    def test_unsupported_channel_count_is_rejected(self, channels):
        with pytest.raises(RasterError):
            Raster.from_array(np.zeros((4, 4, channels), dtype=np.uint8))

    def test_image_round_trip(self):
        image = Image.new("L", (6, 4), color=77)
        raster = Raster.from_image(image)
        assert raster.shape == (4, 6)
        assert tuple(raster.pixels[0, 0]) == (77, 77, 77)
        assert raster.to_image().size == (6, 4)
