"""Public interface for the autofocus overlay removal engine."""

from __future__ import annotations

from .config import OverlayConfig, SearchRegion
from .detector import DetectionResult, detect
from .exclusion import build_exclusion
from .raster import InvalidDimensions, Raster, RasterError
from .reconstruction import ReconstructionResult, reconstruct
from .remover import OverlayRemover, RemovalReport, remove_overlay

__all__ = [
    "DetectionResult",
    "InvalidDimensions",
    "OverlayConfig",
    "OverlayRemover",
    "Raster",
    "RasterError",
    "ReconstructionResult",
    "RemovalReport",
    "SearchRegion",
    "build_exclusion",
    "detect",
    "reconstruct",
    "remove_overlay",
]
