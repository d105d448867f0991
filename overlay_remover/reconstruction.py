"""
Three-stage reconstruction of candidate pixels.

Stage A casts eight compass rays from each candidate and takes the first
clean, dark-enough pixel on each ray.  Stage B smooths the Stage A result
with a bilateral-style weighted average over a ring around the pixel.
Stage C resamples whatever is still bright from a wider ring and picks a
conservative, darker replacement.

Every stage reads only the completed output of the previous stage and
writes into a fresh buffer, so per-pixel results never depend on the order
candidates are visited in.  A stage that finds no usable samples leaves the
previous value in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .config import OverlayConfig
from .raster import Raster, luminance

logger = logging.getLogger(__name__)

# (dx, dy) for the eight compass directions
RAY_DIRECTIONS = np.array(
    [(0, -1), (1, -1), (1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1)],
    dtype=np.int64,
)

# candidates processed per vectorised ray batch
RAY_BATCH = 4096

StageCallback = Callable[[str, int, int], None]


@dataclass
class StageStats:
    name: str
    attempted: int = 0
    resolved: int = 0


@dataclass
class ReconstructionResult:
    raster: Raster
    stages: List[StageStats] = field(default_factory=list)
    unresolved: int = 0

    def stage_counts(self) -> Dict[str, Dict[str, int]]:
        return {
            stage.name: {"attempted": stage.attempted, "resolved": stage.resolved}
            for stage in self.stages
        }


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def _batches(total: int, size: int) -> Iterator[slice]:
    for start in range(0, total, size):
        yield slice(start, min(start + size, total))


def _ring_weights(window: int, inner: int) -> Tuple[np.ndarray, np.ndarray]:
    """Distance grid and ring mask for a square window minus its inner square."""
    radius = window // 2
    inner_radius = inner // 2
    offsets = np.arange(-radius, radius + 1)
    dy, dx = np.meshgrid(offsets, offsets, indexing="ij")
    ring = ~((np.abs(dx) <= inner_radius) & (np.abs(dy) <= inner_radius))
    return np.hypot(dx, dy), ring


def _window_bounds(y: int, x: int, radius: int, shape: Tuple[int, int]) -> Tuple[slice, slice, slice, slice]:
    """Image slices and matching kernel slices for a window clipped to ``shape``."""
    height, width = shape
    y0, y1 = max(0, y - radius), min(height, y + radius + 1)
    x0, x1 = max(0, x - radius), min(width, x + radius + 1)
    image = (slice(y0, y1), slice(x0, x1))
    kernel = (slice(y0 - y + radius, y1 - y + radius), slice(x0 - x + radius, x1 - x + radius))
    return image[0], image[1], kernel[0], kernel[1]


# ---------------------------------------------------------------------------
# Stage A
# ---------------------------------------------------------------------------


def ray_sampling_stage(
    pixels: np.ndarray,
    candidates: np.ndarray,
    exclusion: np.ndarray,
    config: OverlayConfig,
) -> Tuple[np.ndarray, np.ndarray]:
    """Replace candidates with the median/mean of up to eight ray samples.

    Returns the new pixel buffer and a mask of candidates that received a
    replacement.
    """
    out = pixels.copy()
    resolved = np.zeros(candidates.shape, dtype=bool)
    ys, xs = np.nonzero(candidates)
    if ys.size == 0:
        return out, resolved

    height, width = candidates.shape
    distances = np.arange(config.ray_min_distance, config.ray_max_distance + 1, dtype=np.int64)
    dark = np.all(pixels < config.ray_dark_threshold, axis=-1)
    median_min = max(1, config.ray_median_min_samples)
    step_x = RAY_DIRECTIONS[:, 0][None, :, None] * distances[None, None, :]
    step_y = RAY_DIRECTIONS[:, 1][None, :, None] * distances[None, None, :]
    direction_idx = np.arange(len(RAY_DIRECTIONS))[None, :]

    for batch in _batches(ys.size, RAY_BATCH):
        bx = xs[batch].astype(np.int64)
        by = ys[batch].astype(np.int64)
        ray_x = bx[:, None, None] + step_x
        ray_y = by[:, None, None] + step_y
        inside = (ray_x >= 0) & (ray_x < width) & (ray_y >= 0) & (ray_y < height)
        clip_x = np.clip(ray_x, 0, width - 1)
        clip_y = np.clip(ray_y, 0, height - 1)

        usable = inside & ~exclusion[clip_y, clip_x] & dark[clip_y, clip_x]
        found = usable.any(axis=2)
        first = usable.argmax(axis=2)

        row_idx = np.arange(bx.size)[:, None]
        sample_x = clip_x[row_idx, direction_idx, first]
        sample_y = clip_y[row_idx, direction_idx, first]
        samples = pixels[sample_y, sample_x].astype(np.float64)
        samples[~found] = np.nan
        counts = found.sum(axis=1)

        use_median = counts >= median_min
        use_mean = (counts >= 1) & ~use_median
        if use_median.any():
            out[by[use_median], bx[use_median]] = _to_uint8(np.nanmedian(samples[use_median], axis=1))
        if use_mean.any():
            out[by[use_mean], bx[use_mean]] = _to_uint8(np.nanmean(samples[use_mean], axis=1))
        resolved[by[counts >= 1], bx[counts >= 1]] = True

    return out, resolved


# ---------------------------------------------------------------------------
# Stage B
# ---------------------------------------------------------------------------


def weighted_smoothing_stage(
    stage_a: np.ndarray,
    candidates: np.ndarray,
    config: OverlayConfig,
) -> Tuple[np.ndarray, np.ndarray]:
    """Bilateral-style average over a ring around every candidate.

    Samples exclude the inner window, every candidate pixel and anything with
    a channel above the smoothing cutoff.  Weight is
    ``exp(-distance / spatial_decay) * exp(-rgb_distance / color_decay)``
    with the colour distance measured against the Stage A value.
    """
    out = stage_a.copy()
    resolved = np.zeros(candidates.shape, dtype=bool)
    if not candidates.any():
        return out, resolved

    radius = config.smoothing_window // 2
    distance, ring = _ring_weights(config.smoothing_window, config.smoothing_inner_window)
    spatial = np.exp(-distance / config.spatial_decay) * ring
    eligible = ~candidates & ~np.any(stage_a > config.smoothing_bright_threshold, axis=-1)
    source = stage_a.astype(np.float64)

    for y, x in np.argwhere(candidates):
        rows, cols, krows, kcols = _window_bounds(int(y), int(x), radius, candidates.shape)
        weights = spatial[krows, kcols] * eligible[rows, cols]
        if not weights.any():
            continue

        window = source[rows, cols]
        color_distance = np.sqrt(np.sum((window - source[y, x]) ** 2, axis=-1))
        weights = weights * np.exp(-color_distance / config.color_decay)
        total = weights.sum()
        if total <= 0.0:
            continue

        value = np.sum(window * weights[..., None], axis=(0, 1)) / total
        out[y, x] = _to_uint8(value)
        resolved[y, x] = True

    return out, resolved


# ---------------------------------------------------------------------------
# Stage C
# ---------------------------------------------------------------------------


def aggressive_cleanup_stage(
    stage_b: np.ndarray,
    candidates: np.ndarray,
    config: OverlayConfig,
) -> Tuple[np.ndarray, np.ndarray, int]:
    """Resample candidates that are still bright from a wide, dark-only ring.

    With enough samples the pick is the low percentile by luma; with a few
    it is the per-channel median.  Returns the buffer, the resolved mask and
    how many candidates triggered the stage.
    """
    out = stage_b.copy()
    resolved = np.zeros(candidates.shape, dtype=bool)
    triggered = candidates & np.any(stage_b > config.cleanup_trigger_threshold, axis=-1)
    if not triggered.any():
        return out, resolved, 0

    radius = config.cleanup_window // 2
    _, ring = _ring_weights(config.cleanup_window, config.cleanup_inner_window)
    dark = np.all(stage_b < config.cleanup_dark_threshold, axis=-1)
    luma = luminance(stage_b)

    for y, x in np.argwhere(triggered):
        rows, cols, krows, kcols = _window_bounds(int(y), int(x), radius, candidates.shape)
        keep = ring[krows, kcols] & dark[rows, cols]
        samples = stage_b[rows, cols][keep]
        count = len(samples)
        if count == 0:
            continue

        if count >= config.cleanup_min_samples:
            order = np.argsort(luma[rows, cols][keep], kind="stable")
            index = min(count * config.cleanup_percentile // 100, count - 1)
            out[y, x] = samples[order[index]]
        else:
            out[y, x] = _to_uint8(np.median(samples.astype(np.float64), axis=0))
        resolved[y, x] = True

    return out, resolved, int(np.count_nonzero(triggered))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def reconstruct(
    raster: Raster,
    candidates: np.ndarray,
    exclusion: np.ndarray,
    config: Optional[OverlayConfig] = None,
    on_stage: Optional[StageCallback] = None,
) -> ReconstructionResult:
    """Compute replacement colours for every candidate pixel.

    Non-candidate pixels of the returned raster are byte-identical to the
    input.  Candidates no stage could resolve keep their original value.
    """
    config = config or OverlayConfig()
    if candidates.shape != raster.shape or exclusion.shape != raster.shape:
        raise ValueError(
            f"Mask shapes {candidates.shape}/{exclusion.shape} do not match raster {raster.shape}"
        )

    attempted = int(np.count_nonzero(candidates))
    stages: List[StageStats] = []

    def _record(name: str, tried: int, done: np.ndarray) -> None:
        stats = StageStats(name=name, attempted=tried, resolved=int(np.count_nonzero(done)))
        stages.append(stats)
        logger.debug("Stage %-18s resolved %d/%d", name, stats.resolved, stats.attempted)
        if on_stage is not None:
            on_stage(name, stats.resolved, stats.attempted)

    stage_a, resolved_a = ray_sampling_stage(raster.pixels, candidates, exclusion, config)
    _record("ray_sampling", attempted, resolved_a)

    stage_b, resolved_b = weighted_smoothing_stage(stage_a, candidates, config)
    _record("weighted_smoothing", attempted, resolved_b)

    stage_c, resolved_c, triggered = aggressive_cleanup_stage(stage_b, candidates, config)
    _record("aggressive_cleanup", triggered, resolved_c)

    output = raster.to_array()
    output[candidates] = stage_c[candidates]
    unresolved = int(np.count_nonzero(candidates & ~(resolved_a | resolved_b | resolved_c)))

    return ReconstructionResult(
        raster=Raster.from_array(output),
        stages=stages,
        unresolved=unresolved,
    )
