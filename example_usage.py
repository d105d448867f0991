#!/usr/bin/env python3
"""
Example usage of the overlay removal engine from a capture service.

This script demonstrates how to:
1. Decode a capture and wrap it in a Raster
2. Run removal on a worker thread with an external timeout
3. Collect the structured events the engine emits
4. Encode the cleaned frame for printing
"""

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from PIL import Image

from overlay_remover import OverlayConfig, Raster, remove_overlay

logger = logging.getLogger("capture_service")

# external guard; the engine itself has no timeout
REMOVAL_TIMEOUT_S = 30.0


def clean_capture(image_path: str, output_path: str, config: OverlayConfig) -> dict:
    """Remove the AF overlay from one capture and save the result."""
    with Image.open(image_path) as img:
        raster = Raster.from_image(img)

    events = []

    def _record(event: str, payload: dict) -> None:
        events.append((event, payload))
        logger.debug("%s %s", event, payload)

    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(remove_overlay, raster, config, _record)
        cleaned = future.result(timeout=REMOVAL_TIMEOUT_S)

    cleaned.to_image().save(output_path)
    summary = events[-1][1] if events else {}
    logger.info(
        "%s -> %s (overlay=%s, candidates=%s)",
        image_path,
        output_path,
        summary.get("overlay_found"),
        summary.get("candidates"),
    )
    return summary


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    if len(sys.argv) < 2:
        print("Usage: python example_usage.py <capture.jpg> [output.jpg]")
        return 1

    source = Path(sys.argv[1])
    target = Path(sys.argv[2]) if len(sys.argv) > 2 else source.with_name(f"{source.stem}_clean{source.suffix}")
    clean_capture(str(source), str(target), OverlayConfig())
    return 0


if __name__ == "__main__":
    sys.exit(main())
