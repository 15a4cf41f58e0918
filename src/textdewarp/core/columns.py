"""Text column counting, used to suppress horizontal correction on
multi-column pages."""

import logging
from typing import Callable

import cv2
import numpy as np

logger = logging.getLogger(__name__)

ColumnCounter = Callable[[np.ndarray], int]


def count_text_columns(binary: np.ndarray,
                       delta_fraction: float = 0.3,
                       peak_fraction: float = 0.5,
                       clip_fraction: float = 0.1) -> int:
    """
    Count text columns from the vertical projection of a 1-bit page.

    The page is clipped by ``clip_fraction`` on every side, text is smeared
    horizontally and vertically so that words and lines form solid
    blocks, and the column sums are smoothed. A column is a run where the
    profile rises above ``peak_fraction`` of its maximum; neighbouring
    columns must be separated by a gap where it falls below
    ``delta_fraction`` of the maximum.

    Args:
        binary: 1-bit page, True on foreground
        delta_fraction: Relative level a gap must fall below
        peak_fraction: Relative level a column must rise above
        clip_fraction: Fraction of the page clipped on each side

    Returns:
        Number of columns; 0 for an empty page
    """
    h, w = binary.shape
    top, left = int(clip_fraction * h), int(clip_fraction * w)
    clipped = binary[top:h - top, left:w - left].astype(np.uint8) * 255
    if clipped.size == 0:
        return 0

    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (9, 21))
    clipped = cv2.morphologyEx(clipped, cv2.MORPH_CLOSE, kernel)
    profile = (clipped > 0).sum(axis=0).astype(np.float64)
    window = max(3, clipped.shape[1] // 100)
    profile = np.convolve(profile, np.ones(window) / window, mode='same')

    peak = profile.max()
    if peak <= 0:
        return 0

    ncols = 0
    in_column = False
    for value in profile:
        if not in_column and value >= peak_fraction * peak:
            ncols += 1
            in_column = True
        elif in_column and value < delta_fraction * peak:
            in_column = False

    logger.debug(f"Found {ncols} text columns")
    return ncols
