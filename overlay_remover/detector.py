"""
Autofocus overlay candidate detection.

Seven cumulative passes build a boolean candidate mask over the frame:

1. brightness threshold inside the search region
2. contrast edges inside the search region interior
3. proximity merge: edges only count when a bright pixel is nearby
4. local expansion into bright neighbours (clipped to the region)
5. directional line expansion along horizontal/vertical overlay strokes
6. upward completion of the overlay's top border
7. corner fill around L-junctions

Each pass reads a frozen snapshot of the mask built so far and returns an
add-mask.  The union is applied only after a pass completes, so no pass can
observe its own additions and the result never depends on iteration order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, Tuple

import cv2
import numpy as np
from scipy import ndimage

from .config import OverlayConfig, SearchRegion
from .raster import Raster, luminance

logger = logging.getLogger(__name__)

PASS_NAMES = (
    "brightness",
    "proximity_merge",
    "local_expansion",
    "line_expansion",
    "upward_completion",
    "corner_fill",
)

PassCallback = Callable[[str, int, int], None]


@dataclass
class DetectionResult:
    """Candidate mask plus the bookkeeping gathered while building it."""

    mask: np.ndarray
    region: SearchRegion
    edge_pixels: int = 0
    pass_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return int(np.count_nonzero(self.mask))

    def is_empty(self) -> bool:
        return not bool(self.mask.any())

    def coordinates(self) -> Iterator[Tuple[int, int]]:
        """Yield candidate ``(x, y)`` pairs in row-major order."""
        for y, x in np.argwhere(self.mask):
            yield int(x), int(y)


# ---------------------------------------------------------------------------
# Mask helpers
# ---------------------------------------------------------------------------


def _shift(mask: np.ndarray, dy: int, dx: int) -> np.ndarray:
    """Return ``out`` with ``out[y, x] = mask[y - dy, x - dx]`` (False outside)."""
    h, w = mask.shape
    out = np.zeros_like(mask)
    if abs(dy) >= h or abs(dx) >= w:
        return out
    src_y = slice(max(0, -dy), h - max(0, dy))
    dst_y = slice(max(0, dy), h - max(0, -dy))
    src_x = slice(max(0, -dx), w - max(0, dx))
    dst_x = slice(max(0, dx), w - max(0, -dx))
    out[dst_y, dst_x] = mask[src_y, src_x]
    return out


def _dilate(mask: np.ndarray, width: int, height: int) -> np.ndarray:
    """Dilate a boolean mask with a ``width`` x ``height`` rectangle."""
    if not mask.any():
        return np.zeros_like(mask, dtype=bool)
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (width, height))
    dilated = cv2.dilate(mask.astype(np.uint8), kernel, iterations=1)
    return dilated.astype(bool)


def horizontal_members(mask: np.ndarray) -> np.ndarray:
    """Set pixels with a set neighbour directly left or right."""
    return mask & (_shift(mask, 0, 1) | _shift(mask, 0, -1))


def vertical_members(mask: np.ndarray) -> np.ndarray:
    """Set pixels with a set neighbour directly above or below."""
    return mask & (_shift(mask, 1, 0) | _shift(mask, -1, 0))


def _any_channel_above(pixels: np.ndarray, threshold: int) -> np.ndarray:
    return np.any(pixels > threshold, axis=-1)


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


def brightness_pass(pixels: np.ndarray, region: SearchRegion, config: OverlayConfig) -> np.ndarray:
    """Pass 1: pixels in the region whose three channels all exceed the cutoff."""
    add = np.zeros(pixels.shape[:2], dtype=bool)
    if region.is_empty():
        return add
    window = pixels[region.y0:region.y1, region.x0:region.x1]
    add[region.y0:region.y1, region.x0:region.x1] = np.all(window > config.bright_threshold, axis=-1)
    return add


def contrast_edge_pass(pixels: np.ndarray, region: SearchRegion, config: OverlayConfig) -> np.ndarray:
    """Pass 2: bright pixels with a strong luma step to one of their 8 neighbours.

    Only the region interior is scanned, so every neighbour read stays inside
    the region.
    """
    edges = np.zeros(pixels.shape[:2], dtype=bool)
    if region.width < 3 or region.height < 3:
        return edges

    luma = luminance(pixels[region.y0:region.y1, region.x0:region.x1])
    footprint = np.ones((3, 3), dtype=bool)
    local_max = ndimage.maximum_filter(luma, footprint=footprint, mode="nearest")
    local_min = ndimage.minimum_filter(luma, footprint=footprint, mode="nearest")
    max_diff = np.maximum(local_max - luma, luma - local_min)

    found = (max_diff > config.contrast_threshold) & (luma > config.edge_luminance_threshold)
    interior = np.zeros_like(found)
    interior[1:-1, 1:-1] = found[1:-1, 1:-1]
    edges[region.y0:region.y1, region.x0:region.x1] = interior
    return edges


def proximity_merge_pass(edges: np.ndarray, bright: np.ndarray, config: OverlayConfig) -> np.ndarray:
    """Pass 3: keep edge pixels that have a pass-1 pixel in their window."""
    if not edges.any():
        return np.zeros_like(edges)
    size = config.proximity_window
    near_bright = _dilate(bright, size, size)
    return edges & near_bright


def local_expansion_pass(
    pixels: np.ndarray,
    snapshot: np.ndarray,
    region: SearchRegion,
    config: OverlayConfig,
) -> np.ndarray:
    """Pass 4: grow into bright neighbours, never leaving the search region."""
    size = config.expansion_window
    reach = _dilate(snapshot, size, size)
    inside = region.mask(*snapshot.shape)
    return reach & inside & _any_channel_above(pixels, config.expansion_channel_threshold)


def line_expansion_pass(snapshot: np.ndarray, region: SearchRegion, config: OverlayConfig) -> np.ndarray:
    """Pass 5: thicken horizontal strokes vertically and vertical strokes horizontally.

    Horizontal members add a column run clipped only to the frame, since the
    top edge of a box may sit above the nominal region.  Vertical members add
    a row run that may overflow the region's right edge by a few columns.
    """
    vertical_run = 2 * config.line_vertical_reach + 1
    horizontal_run = 2 * config.line_horizontal_reach + 1

    add = _dilate(horizontal_members(snapshot), 1, vertical_run)

    rows = _dilate(vertical_members(snapshot), horizontal_run, 1)
    limit = min(snapshot.shape[1], region.x1 + config.line_overflow)
    rows[:, limit:] = False
    return add | rows


def upward_completion_pass(pixels: np.ndarray, snapshot: np.ndarray, config: OverlayConfig) -> np.ndarray:
    """Pass 6: bridge each candidate to the nearest bright pixel above it."""
    bright = _any_channel_above(pixels, config.upward_channel_threshold)

    # distance to the nearest bright pixel above each candidate, 0 if none
    distance = np.zeros(snapshot.shape, dtype=np.int32)
    for k in range(1, config.upward_scan + 1):
        hit = snapshot & _shift(bright, k, 0) & (distance == 0)
        distance[hit] = k

    add = np.zeros_like(snapshot)
    for j in range(1, config.upward_scan + 1):
        add |= _shift(distance >= j, -j, 0)
    return add


def corner_fill_pass(pixels: np.ndarray, snapshot: np.ndarray, config: OverlayConfig) -> np.ndarray:
    """Pass 7: flood bright pixels around L-junctions of the candidate mask."""
    corners = horizontal_members(snapshot) & vertical_members(snapshot)
    size = config.corner_window
    return _dilate(corners, size, size) & _any_channel_above(pixels, config.corner_channel_threshold)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def detect(
    raster: Raster,
    config: Optional[OverlayConfig] = None,
    on_pass: Optional[PassCallback] = None,
) -> DetectionResult:
    """Run all detection passes and return the candidate mask.

    Args:
        raster: Captured frame.
        config: Thresholds; defaults are used when omitted.
        on_pass: Optional ``(pass_name, added, total)`` hook called after
            every union.

    An empty mask is the normal outcome for frames without an overlay.
    """
    config = config or OverlayConfig()
    pixels = raster.pixels
    height, width = raster.shape
    region = config.search_region(width, height)

    candidates = np.zeros((height, width), dtype=bool)
    result = DetectionResult(mask=candidates, region=region)

    def _union(name: str, add: np.ndarray) -> None:
        nonlocal candidates
        added = int(np.count_nonzero(add & ~candidates))
        candidates = candidates | add
        result.pass_counts[name] = added
        total = int(np.count_nonzero(candidates))
        logger.debug("Pass %-17s +%d (total %d)", name, added, total)
        if on_pass is not None:
            on_pass(name, added, total)

    if region.is_empty():
        logger.debug("Search region is empty for %dx%d frame", width, height)
        for name in PASS_NAMES:
            result.pass_counts[name] = 0
        return result

    bright = brightness_pass(pixels, region, config)
    _union("brightness", bright)

    edges = contrast_edge_pass(pixels, region, config)
    result.edge_pixels = int(np.count_nonzero(edges))
    _union("proximity_merge", proximity_merge_pass(edges, bright, config))

    _union("local_expansion", local_expansion_pass(pixels, candidates.copy(), region, config))
    _union("line_expansion", line_expansion_pass(candidates.copy(), region, config))
    _union("upward_completion", upward_completion_pass(pixels, candidates.copy(), config))
    _union("corner_fill", corner_fill_pass(pixels, candidates.copy(), config))

    result.mask = candidates
    return result
