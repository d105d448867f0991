"""Tunable thresholds for overlay detection and reconstruction.

The defaults were tuned against autofocus boxes captured from a single
camera and lighting setup.  They are exposed as a plain dataclass so a
different body or booth can be retuned from a JSON file or the CLI without
touching the engine.
"""

import json
from dataclasses import asdict, dataclass, fields, replace as dataclass_replace
from pathlib import Path
from typing import Union

import numpy as np


@dataclass(frozen=True)
class SearchRegion:
    """Half-open rectangle ``[x0, x1) x [y0, y1)`` that may hold the overlay."""

    x0: int
    y0: int
    x1: int
    y1: int

    @property
    def width(self) -> int:
        return max(0, self.x1 - self.x0)

    @property
    def height(self) -> int:
        return max(0, self.y1 - self.y0)

    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def contains(self, x: int, y: int) -> bool:
        return self.x0 <= x < self.x1 and self.y0 <= y < self.y1

    def mask(self, height: int, width: int) -> np.ndarray:
        """Boolean ``(height, width)`` mask that is True inside the region."""
        out = np.zeros((height, width), dtype=bool)
        out[self.y0:self.y1, self.x0:self.x1] = True
        return out


@dataclass(frozen=True)
class OverlayConfig:
    """Every threshold the detector and the reconstruction pipeline use."""

    # --- Search region (fractions of the frame) ---
    region_width_fraction: float = 0.30    # left part of the frame
    region_height_fraction: float = 0.40   # bottom part of the frame

    # --- Detection ---
    bright_threshold: int = 235            # pass 1: all channels above
    contrast_threshold: int = 50           # pass 2: max luma difference to neighbours
    edge_luminance_threshold: int = 180    # pass 2: own luma above
    proximity_window: int = 5              # pass 3: square window around edge pixels
    expansion_window: int = 5              # pass 4: square window around candidates
    expansion_channel_threshold: int = 200
    line_vertical_reach: int = 8           # pass 5: rows added around horizontal lines
    line_horizontal_reach: int = 4         # pass 5: columns added around vertical lines
    line_overflow: int = 5                 # pass 5: columns allowed past the region edge
    upward_scan: int = 20                  # pass 6
    upward_channel_threshold: int = 200
    corner_window: int = 13                # pass 7
    corner_channel_threshold: int = 180

    # --- Exclusion mask ---
    exclusion_rows: int = 10
    exclusion_cols: int = 7

    # --- Stage A: ray sampling ---
    ray_min_distance: int = 12
    ray_max_distance: int = 25
    ray_dark_threshold: int = 200
    ray_median_min_samples: int = 4

    # --- Stage B: weighted smoothing ---
    smoothing_window: int = 31
    smoothing_inner_window: int = 9
    smoothing_bright_threshold: int = 210
    spatial_decay: float = 10.0
    color_decay: float = 50.0

    # --- Stage C: aggressive cleanup ---
    cleanup_trigger_threshold: int = 220
    cleanup_window: int = 41
    cleanup_inner_window: int = 17
    cleanup_dark_threshold: int = 180
    cleanup_min_samples: int = 10
    cleanup_percentile: int = 25

    def search_region(self, width: int, height: int) -> SearchRegion:
        """Bottom-left search rectangle for a ``width`` x ``height`` frame."""
        x1 = min(width, max(0, int(width * self.region_width_fraction + 0.5)))
        rows = min(height, max(0, int(height * self.region_height_fraction + 0.5)))
        return SearchRegion(x0=0, y0=height - rows, x1=x1, y1=height)

    def validate(self) -> "OverlayConfig":
        """Raise ``ValueError`` if any threshold is out of range."""
        for name in ("region_width_fraction", "region_height_fraction"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

        for name in (
            "proximity_window",
            "expansion_window",
            "corner_window",
            "smoothing_window",
            "cleanup_window",
        ):
            value = getattr(self, name)
            if value < 1 or value % 2 == 0:
                raise ValueError(f"{name} must be a positive odd size, got {value}")

        for name in (
            "line_vertical_reach",
            "line_horizontal_reach",
            "line_overflow",
            "upward_scan",
            "exclusion_rows",
            "exclusion_cols",
            "smoothing_inner_window",
            "cleanup_inner_window",
            "ray_median_min_samples",
            "cleanup_min_samples",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must not be negative, got {value}")

        if not 0 < self.ray_min_distance <= self.ray_max_distance:
            raise ValueError(
                "ray distances must satisfy 0 < min <= max, got "
                f"{self.ray_min_distance}..{self.ray_max_distance}"
            )
        if self.smoothing_inner_window >= self.smoothing_window:
            raise ValueError("smoothing_inner_window must be smaller than smoothing_window")
        if self.cleanup_inner_window >= self.cleanup_window:
            raise ValueError("cleanup_inner_window must be smaller than cleanup_window")
        if not 0 <= self.cleanup_percentile <= 100:
            raise ValueError(f"cleanup_percentile must be within [0, 100], got {self.cleanup_percentile}")
        if self.spatial_decay <= 0 or self.color_decay <= 0:
            raise ValueError("decay constants must be positive")
        return self

    def replace(self, **changes) -> "OverlayConfig":
        return dataclass_replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "OverlayConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "OverlayConfig":
        with Path(path).open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)


DEFAULT_CONFIG = OverlayConfig()
