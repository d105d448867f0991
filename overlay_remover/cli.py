"""
Batch command line interface for autofocus overlay removal.

Decoding and encoding happen here; the engine itself only ever sees decoded
rasters.  Useful for re-processing a day's captures or tuning thresholds for
a new camera body.

Usage examples
--------------

Clean every capture in ``captures/`` and drop the results in ``output/``::

    python -m overlay_remover.cli captures --output-dir output

Try a lower brightness cutoff on one frame and save the structure view::

    python -m overlay_remover.cli captures/IMG_0042.jpg --bright-threshold 225 --overlay-mode structure
"""

from __future__ import annotations

import argparse
import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from PIL import Image

from .config import OverlayConfig
from .diagnostics import (
    OVERLAY_MODES,
    compute_removal_metrics,
    plot_detection_debug,
    render_debug_overlays,
)
from .raster import Raster
from .remover import OverlayRemover

logger = logging.getLogger("overlay_remover")

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"}

METRIC_FIELDS = [
    "image",
    "width",
    "height",
    "overlay_found",
    "candidate_pixels",
    "percent_candidates",
    "changed_pixels",
    "residual_bright",
    "unresolved",
    "warnings",
    "output_path",
    "overlay_path",
]


@dataclass
class BatchConfig:
    """Runtime configuration derived from CLI arguments."""

    inputs: Sequence[Path]
    output_dir: Path
    overlay_dir: Optional[Path]
    overlay_mode: str
    save_overlays: bool
    plot_dir: Optional[Path]
    metrics_path: Optional[Path]
    overlay_config: OverlayConfig


def _setup_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _gather_images(sources: Sequence[Path], recursive: bool) -> List[Path]:
    """Collect candidate image files from the provided locations."""
    seen: set[Path] = set()
    images: List[Path] = []

    for source in sources:
        if source.is_dir():
            iterator: Iterable[Path]
            iterator = source.rglob("*") if recursive else source.iterdir()
            for candidate in iterator:
                if not candidate.is_file():
                    continue
                if candidate.suffix.lower() not in IMAGE_EXTENSIONS:
                    continue
                resolved = candidate.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                images.append(resolved)
        elif source.is_file():
            if source.suffix.lower() not in IMAGE_EXTENSIONS:
                logger.warning("Skipping unsupported file: %s", source)
                continue
            resolved = source.resolve()
            if resolved not in seen:
                seen.add(resolved)
                images.append(resolved)
        else:
            logger.warning("Input path not found: %s", source)

    images.sort()
    return images


def _ensure_dir(path: Optional[Path]) -> Optional[Path]:
    if path is None:
        return None
    path.mkdir(parents=True, exist_ok=True)
    return path


def _build_overlay_config(args: argparse.Namespace) -> OverlayConfig:
    config = OverlayConfig.from_json(args.config) if args.config else OverlayConfig()
    overrides = {}
    if args.bright_threshold is not None:
        overrides["bright_threshold"] = args.bright_threshold
    if args.region_width is not None:
        overrides["region_width_fraction"] = args.region_width
    if args.region_height is not None:
        overrides["region_height_fraction"] = args.region_height
    if overrides:
        config = config.replace(**overrides)
    return config.validate()


def _process_single_image(image_path: Path, cfg: BatchConfig) -> Optional[dict]:
    """Remove the overlay from one capture and persist artefacts."""
    try:
        with Image.open(image_path) as img:
            raster = Raster.from_image(img)
    except (OSError, ValueError) as exc:
        logger.error("Failed to read %s: %s", image_path.name, exc)
        return None

    remover = OverlayRemover(cfg.overlay_config)
    cleaned = remover.run(raster)
    report = remover.last_report
    detection = remover.last_detection

    metrics = compute_removal_metrics(
        raster, cleaned, detection.mask, detection.region, cfg.overlay_config
    )

    output_path = cfg.output_dir / f"{image_path.stem}_clean{image_path.suffix}"
    overlay_path: Optional[Path] = None
    try:
        cleaned.to_image().save(output_path)

        # overlays are always lossless PNG, whatever the capture format
        if cfg.save_overlays and report.overlay_found:
            overlays = render_debug_overlays(raster, cleaned, detection.mask, remover.last_exclusion)
            overlay_root = cfg.overlay_dir or cfg.output_dir
            overlay_root.mkdir(parents=True, exist_ok=True)
            overlay_path = overlay_root / f"{image_path.stem}_overlay.png"
            Image.fromarray(overlays[cfg.overlay_mode]).save(overlay_path)

        if cfg.plot_dir:
            plot_detection_debug(
                report.to_dict(),
                raster,
                cfg.overlay_config,
                save_path=str(cfg.plot_dir / f"{image_path.stem}_detection.png"),
                title=image_path.name,
            )
    except OSError as exc:
        logger.error("Failed to write outputs for %s: %s", image_path.name, exc)
        return None

    warnings = metrics.get("warnings", []) or []
    if warnings:
        logger.warning("%s: %s", image_path.name, " | ".join(warnings))
    elif report.overlay_found:
        logger.info("%s: removed %d overlay pixels", image_path.name, report.candidates)
    else:
        logger.info("%s: no overlay found", image_path.name)

    return {
        "image": image_path.name,
        "width": report.width,
        "height": report.height,
        "overlay_found": "yes" if report.overlay_found else "no",
        "candidate_pixels": metrics["candidate_pixels"],
        "percent_candidates": round(metrics["percent_candidates"], 4),
        "changed_pixels": metrics["changed_pixels"],
        "residual_bright": metrics["residual_bright"],
        "unresolved": report.unresolved,
        "warnings": " | ".join(warnings),
        "output_path": str(output_path),
        "overlay_path": str(overlay_path) if overlay_path else "",
    }


def _write_metrics_csv(metrics: List[dict], path: Path) -> None:
    with path.open("w", newline="") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=METRIC_FIELDS)
        writer.writeheader()
        writer.writerows(metrics)
    logger.info("Metrics written to %s", path)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove autofocus overlays from captured photos.")
    parser.add_argument(
        "inputs",
        nargs="+",
        type=Path,
        help="Image files or directories to process.",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Directory for cleaned images (default: ./output).",
    )
    parser.add_argument(
        "--overlay-dir",
        type=Path,
        help="Optional directory for diagnostic overlays (defaults to output dir).",
    )
    parser.add_argument(
        "--overlay-mode",
        choices=list(OVERLAY_MODES),
        default="candidates",
        help="Diagnostic overlay variant to save.",
    )
    parser.add_argument(
        "--skip-overlays",
        action="store_true",
        help="Do not export diagnostic overlay images.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON file with OverlayConfig thresholds.",
    )
    parser.add_argument(
        "--bright-threshold",
        type=int,
        help="Override the pass-1 brightness cutoff.",
    )
    parser.add_argument(
        "--region-width",
        type=float,
        help="Override the search region width fraction (left side of the frame).",
    )
    parser.add_argument(
        "--region-height",
        type=float,
        help="Override the search region height fraction (bottom of the frame).",
    )
    parser.add_argument(
        "--plot-dir",
        type=Path,
        help="Export per-image detection plots to this directory.",
    )
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="When inputs include directories, walk them recursively.",
    )
    parser.add_argument(
        "--metrics-path",
        type=Path,
        help="Write a CSV summary to the provided path (defaults to <output>/metrics.csv).",
    )
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Do not emit the metrics CSV.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.debug)

    images = _gather_images(args.inputs, recursive=args.recursive)
    if not images:
        logger.error("No matching images found.")
        return 1

    output_dir = args.output_dir.resolve()
    _ensure_dir(output_dir)

    overlay_dir: Optional[Path] = None
    if args.overlay_dir:
        overlay_dir = _ensure_dir(args.overlay_dir.resolve())

    plot_dir: Optional[Path] = None
    if args.plot_dir:
        plot_dir = _ensure_dir(args.plot_dir.resolve())

    metrics_path: Optional[Path]
    if args.no_metrics:
        metrics_path = None
    else:
        metrics_path = args.metrics_path.resolve() if args.metrics_path else output_dir / "metrics.csv"

    cfg = BatchConfig(
        inputs=images,
        output_dir=output_dir,
        overlay_dir=overlay_dir,
        overlay_mode=args.overlay_mode,
        save_overlays=not args.skip_overlays,
        plot_dir=plot_dir,
        metrics_path=metrics_path,
        overlay_config=_build_overlay_config(args),
    )

    logger.info("Found %d image(s) to process -> %s", len(images), output_dir)

    metrics_records: List[dict] = []
    for image_path in images:
        record = _process_single_image(image_path, cfg)
        if record is not None:
            metrics_records.append(record)

    if metrics_records and cfg.metrics_path:
        _write_metrics_csv(metrics_records, cfg.metrics_path)

    return 0 if metrics_records else 1


if __name__ == "__main__":
    raise SystemExit(main())
