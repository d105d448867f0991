"""Exclusion mask: candidate pixels dilated by the overlay's anti-aliasing halo."""

from typing import Tuple

import cv2
import numpy as np


def build_exclusion(candidates: np.ndarray, shape: Tuple[int, int], rows: int = 10, cols: int = 7) -> np.ndarray:
    """Dilate ``candidates`` by ``rows`` above/below and ``cols`` left/right.

    Pure set dilation clipped to the ``(height, width)`` bounds; pixel values
    are never inspected.  Reconstruction sampling must not read from the
    returned mask.
    """
    height, width = shape
    if candidates.shape != (height, width):
        raise ValueError(f"Candidate mask shape {candidates.shape} does not match {shape}")
    if not candidates.any():
        return np.zeros((height, width), dtype=bool)

    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * cols + 1, 2 * rows + 1))
    dilated = cv2.dilate(candidates.astype(np.uint8), kernel, iterations=1)
    return dilated.astype(bool)
