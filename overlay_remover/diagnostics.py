"""
Inspection helpers for tuning overlay detection.

None of this runs inside ``remove_overlay``.  The CLI and ad-hoc tuning
sessions use it to paint what the detector found, compare it against two
simpler probe detectors, and summarise how much of the frame was touched.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Union

import numpy as np
from scipy import ndimage

from .config import OverlayConfig, SearchRegion
from .detector import _shift
from .raster import Raster

logger = logging.getLogger(__name__)

CANDIDATE_COLOR = (255, 0, 0)
HORIZONTAL_COLOR = (0, 255, 0)
VERTICAL_COLOR = (0, 0, 255)
CORNER_COLOR = (255, 255, 0)
CORNER_PROBE_COLOR = (255, 0, 255)
BRIGHTNESS_PROBE_COLOR = (0, 255, 255)

# candidates covering more than this share of the frame are suspicious
MAX_COVERAGE_PERCENT = 5.0

OVERLAY_MODES = ("candidates", "structure", "exclusion", "probes")


def _as_array(image: Union[Raster, np.ndarray]) -> np.ndarray:
    if isinstance(image, Raster):
        return image.pixels
    return np.asarray(image)


def _run_length(mask: np.ndarray, dy: int, dx: int, limit: int) -> np.ndarray:
    """Contiguous set pixels next to each pixel in direction ``(dy, dx)``."""
    count = np.zeros(mask.shape, dtype=np.int32)
    alive = np.ones(mask.shape, dtype=bool)
    for k in range(1, limit + 1):
        alive &= _shift(mask, -dy * k, -dx * k)
        count += alive
    return count


def classify_structure(mask: np.ndarray, reach: int = 5, min_run: int = 3) -> Dict[str, np.ndarray]:
    """Split a candidate mask into horizontal, vertical, corner and isolated pixels.

    A pixel belongs to a line when at least ``min_run`` contiguous set
    pixels sit within ``reach`` of it on the two sides of that axis.
    """
    mask = mask.astype(bool)
    horizontal_run = _run_length(mask, 0, -1, reach) + _run_length(mask, 0, 1, reach)
    vertical_run = _run_length(mask, -1, 0, reach) + _run_length(mask, 1, 0, reach)

    horizontal = mask & (horizontal_run >= min_run)
    vertical = mask & (vertical_run >= min_run)
    corner = horizontal & vertical
    return {
        "horizontal": horizontal & ~corner,
        "vertical": vertical & ~corner,
        "corner": corner,
        "isolated": mask & ~horizontal & ~vertical,
    }


def brightness_difference_mask(
    image: Union[Raster, np.ndarray],
    margin: int = 50,
    min_brightness: int = 200,
) -> np.ndarray:
    """Probe: pixels much brighter than the 5x5 ring around them.

    The ring skips the pixel's immediate 3x3 neighbourhood so anti-aliased
    stroke edges do not dilute the comparison.  Pixels closer than two
    rows/columns to the frame edge are never flagged.
    """
    pixels = _as_array(image)
    h, w = pixels.shape[:2]
    out = np.zeros((h, w), dtype=bool)
    if h < 5 or w < 5:
        return out

    brightness = pixels.astype(np.int32).sum(axis=-1) // 3
    ring = np.ones((5, 5), dtype=np.int32)
    ring[1:4, 1:4] = 0
    ring_mean = ndimage.convolve(brightness, ring, mode="constant", cval=0) // int(ring.sum())

    found = (brightness >= min_brightness) & (brightness > ring_mean + margin)
    out[2:-2, 2:-2] = found[2:-2, 2:-2]
    return out


def box_corner_mask(
    image: Union[Raster, np.ndarray],
    threshold: int = 230,
    min_length: int = 10,
) -> np.ndarray:
    """Probe: white pixels that start both a rightward and a downward white run."""
    pixels = _as_array(image)
    corner_seed = np.all(pixels >= threshold, axis=-1)
    white = np.all(pixels > threshold, axis=-1)

    right = np.zeros(white.shape, dtype=np.int32)
    down = np.zeros(white.shape, dtype=np.int32)
    for k in range(min_length):
        right += _shift(white, 0, -k)
        down += _shift(white, -k, 0)

    needed = max(min_length - 2, 1)
    return corner_seed & (right >= needed) & (down >= needed)


def _assemble_panels(original: np.ndarray, overlay_view: np.ndarray, cleaned: np.ndarray) -> np.ndarray:
    """Stack original, diagnostic overlay and cleaned frame side by side."""
    return np.hstack([original, overlay_view, cleaned])


def render_debug_overlays(
    original: Union[Raster, np.ndarray],
    cleaned: Union[Raster, np.ndarray],
    candidates: np.ndarray,
    exclusion: Optional[np.ndarray] = None,
) -> Dict[str, np.ndarray]:
    """Generate the overlay variants listed in ``OVERLAY_MODES``."""
    original = _as_array(original)
    cleaned = _as_array(cleaned)
    overlays: Dict[str, np.ndarray] = {}

    marked = original.copy()
    marked[candidates] = CANDIDATE_COLOR
    overlays["candidates"] = _assemble_panels(original, marked, cleaned)

    structure = classify_structure(candidates)
    painted = original.copy()
    painted[structure["isolated"]] = CANDIDATE_COLOR
    painted[structure["horizontal"]] = HORIZONTAL_COLOR
    painted[structure["vertical"]] = VERTICAL_COLOR
    painted[structure["corner"]] = CORNER_COLOR
    overlays["structure"] = _assemble_panels(original, painted, cleaned)

    if exclusion is None:
        exclusion = np.zeros(candidates.shape, dtype=bool)
    dimmed = original.astype(np.float32)
    dimmed[~exclusion] *= 0.25
    dimmed = np.clip(dimmed, 0, 255).astype(np.uint8)
    dimmed[candidates] = CANDIDATE_COLOR
    overlays["exclusion"] = _assemble_panels(original, dimmed, cleaned)

    probes = original.copy()
    probes[brightness_difference_mask(original)] = BRIGHTNESS_PROBE_COLOR
    probes[box_corner_mask(original)] = CORNER_PROBE_COLOR
    overlays["probes"] = _assemble_panels(original, probes, cleaned)

    return overlays


def compute_removal_metrics(
    original: Union[Raster, np.ndarray],
    cleaned: Union[Raster, np.ndarray],
    candidates: np.ndarray,
    region: SearchRegion,
    config: Optional[OverlayConfig] = None,
) -> dict:
    """Summarise how much of the frame the removal touched."""
    config = config or OverlayConfig()
    original = _as_array(original)
    cleaned = _as_array(cleaned)
    h, w = candidates.shape
    total_pixels = max(h * w, 1)

    candidate_count = int(np.count_nonzero(candidates))
    changed = int(np.count_nonzero(np.any(original != cleaned, axis=-1)))
    residual = int(np.count_nonzero(candidates & np.all(cleaned > config.bright_threshold, axis=-1)))

    inside = region.mask(h, w)
    outside_region = int(np.count_nonzero(candidates & ~inside))
    edge_band = np.zeros((h, w), dtype=bool)
    if not region.is_empty():
        edge_band[region.y0, region.x0:region.x1] = True
        edge_band[region.y0:region.y1, region.x1 - 1] = True
    touches_edge = bool(np.any(candidates & edge_band))

    percent = 100.0 * candidate_count / total_pixels

    warnings = []
    if residual:
        warnings.append(f"{residual} candidate pixels are still brighter than {config.bright_threshold}.")
    if touches_edge:
        warnings.append("Candidates reach the search region edge - overlay may be clipped.")
    if percent > MAX_COVERAGE_PERCENT:
        warnings.append(f"Candidates cover {percent:.1f}% of the frame - check thresholds.")

    return {
        "width": w,
        "height": h,
        "candidate_pixels": candidate_count,
        "percent_candidates": float(percent),
        "changed_pixels": changed,
        "residual_bright": residual,
        "outside_region": outside_region,
        "touches_region_edge": touches_edge,
        "warnings": warnings,
    }


def plot_detection_debug(
    report: dict,
    image: Union[Raster, np.ndarray],
    config: Optional[OverlayConfig] = None,
    save_path: Optional[str] = None,
    title: str = "",
) -> None:
    """Save (or show) per-pass additions and the search-region luma histogram."""
    import matplotlib
    try:
        matplotlib.use("Agg")
    except Exception:  # pylint: disable=broad-except
        # backend may already be initialised
        pass
    import matplotlib.pyplot as plt

    from .raster import luminance

    config = config or OverlayConfig()
    pixels = _as_array(image)
    h, w = pixels.shape[:2]
    region = config.search_region(w, h)
    luma = luminance(pixels[region.y0:region.y1, region.x0:region.x1]).ravel()

    pass_counts = report.get("pass_counts", {}) or {}
    fig, axs = plt.subplots(1, 2, figsize=(11, 4))
    axs[0].bar(list(pass_counts.keys()), list(pass_counts.values()))
    axs[0].set_title("Pixels added per pass")
    axs[0].tick_params(axis="x", rotation=45)
    axs[1].hist(luma, bins=64, range=(0, 255))
    axs[1].axvline(config.edge_luminance_threshold, color="red", linestyle="--")
    axs[1].set_title("Search region luminance")
    fig.suptitle(title or f"Overlay detection: {report.get('candidates', 0)} candidates")
    fig.tight_layout()

    if save_path:
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fig.savefig(save_path)
        plt.close(fig)
        logger.debug("Detection plot written to %s", save_path)
    else:
        plt.show()
