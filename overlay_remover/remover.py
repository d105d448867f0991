"""
Autofocus overlay removal: detection followed by reconstruction.

``remove_overlay`` is the single entry point used by the capture and print
layers.  It is a synchronous, CPU-bound transform with no shared state; the
caller is expected to run it off its request loop (for example in a worker
thread) and to wrap it in its own timeout if it needs one.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Optional, Union

import numpy as np

from .config import OverlayConfig
from .detector import DetectionResult, detect
from .exclusion import build_exclusion
from .raster import Raster, coerce_raster
from .reconstruction import reconstruct

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, dict], None]


@dataclass
class RemovalReport:
    """Statistics for one removal run."""

    width: int
    height: int
    candidates: int = 0
    edge_pixels: int = 0
    exclusion_pixels: int = 0
    pass_counts: Dict[str, int] = field(default_factory=dict)
    stage_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    unresolved: int = 0

    @property
    def overlay_found(self) -> bool:
        return self.candidates > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["overlay_found"] = self.overlay_found
        return data


class OverlayRemover:
    """
    Detect and reconstruct the autofocus overlay in captured frames.

    The instance only holds configuration, the optional event hook and the
    report of its most recent run; every call allocates its own masks and
    buffers.

    Events emitted through ``event_callback(event, payload)``:

    - ``detection.pass``: ``{"pass", "added", "total"}`` after every union
    - ``detection.done``: ``{"candidates", "edge_pixels"}``
    - ``reconstruction.stage``: ``{"stage", "resolved", "attempted"}``
    - ``removal.done``: the run's ``RemovalReport`` as a dict
    """

    def __init__(
        self,
        config: Optional[OverlayConfig] = None,
        event_callback: Optional[EventCallback] = None,
    ):
        self.config = (config or OverlayConfig()).validate()
        self.event_callback = event_callback
        self.last_report: Optional[RemovalReport] = None
        self.last_detection: Optional[DetectionResult] = None
        self.last_exclusion: Optional[np.ndarray] = None

    def _emit(self, event: str, payload: dict) -> None:
        """Forward an event to the registered hook, if any."""
        if not self.event_callback:
            return
        try:
            self.event_callback(event, payload)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Event callback failed on %s: %s", event, exc)

    def detect(self, image: Union[Raster, np.ndarray]) -> DetectionResult:
        raster = coerce_raster(image)
        detection = detect(
            raster,
            self.config,
            on_pass=lambda name, added, total: self._emit(
                "detection.pass", {"pass": name, "added": added, "total": total}
            ),
        )
        self._emit(
            "detection.done",
            {"candidates": detection.count, "edge_pixels": detection.edge_pixels},
        )
        return detection

    def run(self, image: Union[Raster, np.ndarray]) -> Raster:
        """Return ``image`` with the overlay reconstructed away.

        When nothing is detected the input raster itself is returned.

        Raises:
            InvalidDimensions: if the frame has zero width or height.
        """
        raster = coerce_raster(image)
        report = RemovalReport(width=raster.width, height=raster.height)
        self.last_report = report
        self.last_exclusion = None

        detection = self.detect(raster)
        self.last_detection = detection
        report.candidates = detection.count
        report.edge_pixels = detection.edge_pixels
        report.pass_counts = dict(detection.pass_counts)

        if detection.is_empty():
            logger.info("No overlay detected in %dx%d frame", raster.width, raster.height)
            self._emit("removal.done", report.to_dict())
            return raster

        exclusion = build_exclusion(
            detection.mask,
            raster.shape,
            rows=self.config.exclusion_rows,
            cols=self.config.exclusion_cols,
        )
        self.last_exclusion = exclusion
        report.exclusion_pixels = int(np.count_nonzero(exclusion))

        result = reconstruct(
            raster,
            detection.mask,
            exclusion,
            self.config,
            on_stage=lambda name, resolved, attempted: self._emit(
                "reconstruction.stage",
                {"stage": name, "resolved": resolved, "attempted": attempted},
            ),
        )
        report.stage_counts = result.stage_counts()
        report.unresolved = result.unresolved

        logger.info(
            "Overlay removed: %d candidate pixels, %d unresolved (%dx%d)",
            report.candidates,
            report.unresolved,
            raster.width,
            raster.height,
        )
        if report.unresolved:
            logger.warning("%d overlay pixels had no usable samples", report.unresolved)
        self._emit("removal.done", report.to_dict())
        return result.raster


def remove_overlay(
    raster: Union[Raster, np.ndarray],
    config: Optional[OverlayConfig] = None,
    event_callback: Optional[EventCallback] = None,
) -> Raster:
    """Detect the autofocus overlay in ``raster`` and replace it.

    Returns the input unchanged when no overlay is found.

    Raises:
        InvalidDimensions: if the frame has zero width or height.
    """
    return OverlayRemover(config, event_callback=event_callback).run(raster)
