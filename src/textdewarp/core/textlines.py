"""Default text-line detection used when building page models.

The builder only needs, for each long text line, a sequence of points
``(x, y)`` running along the middle of the line. Any callable with the
signature ``detector(binary) -> List[np.ndarray]`` can be substituted.
"""

import logging
from typing import Callable, List, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

TextlineDetector = Callable[[np.ndarray], List[np.ndarray]]

# Fraction of the longest line a line must span to be kept
DEFAULT_LONG_LINE_FRACTION = 0.8


def find_textline_centers(binary: np.ndarray,
                          close_width: int = 30,
                          min_width: int = 100,
                          min_height: int = 4) -> List[np.ndarray]:
    """
    Find the center points of every text line on a 1-bit page.

    Characters are merged into line blobs with a horizontal closing,
    specks are removed with a small vertical opening, and for each
    connected blob the mean y of its foreground pixels is taken in
    every column it covers.

    Args:
        binary: 1-bit page, True on foreground
        close_width: Width of the horizontal closing that joins words
        min_width: Minimum blob width to be considered a line
        min_height: Minimum blob height to be considered a line

    Returns:
        List of (n, 2) float arrays of (x, y) points, one per line,
        ordered by x
    """
    img = binary.astype(np.uint8) * 255
    close_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (close_width, 1))
    img = cv2.morphologyEx(img, cv2.MORPH_CLOSE, close_kernel)
    open_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (1, 3))
    img = cv2.morphologyEx(img, cv2.MORPH_OPEN, open_kernel)

    nlabels, labels, stats, _ = cv2.connectedComponentsWithStats(img, connectivity=8)

    lines = []
    for label in range(1, nlabels):
        left, top, width, height, _ = stats[label]
        if width < min_width or height < min_height:
            continue
        mask = labels[top:top + height, left:left + width] == label
        counts = mask.sum(axis=0)
        ys = np.arange(top, top + height, dtype=np.float64)[:, None]
        sums = (mask * ys).sum(axis=0)
        cols = np.nonzero(counts)[0]
        points = np.column_stack([left + cols, sums[cols] / counts[cols]]).astype(np.float64)
        lines.append(points)

    logger.debug(f"Found {len(lines)} candidate text lines")
    return lines


def remove_short_lines(lines: List[np.ndarray],
                       fraction: float = DEFAULT_LONG_LINE_FRACTION) -> List[np.ndarray]:
    """
    Keep only lines whose horizontal extent is at least ``fraction`` of
    the longest line's extent.
    """
    if not lines:
        return []
    extents = [line[-1, 0] - line[0, 0] for line in lines]
    longest = max(extents)
    return [line for line, extent in zip(lines, extents) if extent >= fraction * longest]


def find_long_textlines(binary: np.ndarray) -> List[np.ndarray]:
    """Default detector: text line centers with short lines removed."""
    return remove_short_lines(find_textline_centers(binary))


def line_end_points(lines: List[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return the left and right end points of every line, sorted top to bottom.

    Returns:
        Tuple of (left, right) arrays of shape (nlines, 2)
    """
    if not lines:
        empty = np.zeros((0, 2))
        return empty, empty
    left = np.array([line[0] for line in lines], dtype=np.float64)
    right = np.array([line[-1] for line in lines], dtype=np.float64)
    left = left[np.argsort(left[:, 1], kind='stable')]
    right = right[np.argsort(right[:, 1], kind='stable')]
    return left, right


def line_coverage(lines: List[np.ndarray], height: int) -> Tuple[bool, int, int]:
    """
    Check that lines cover enough of the page vertically.

    Lines must appear in both the top and bottom halves of the page, and
    the distance between the top and bottom lines must exceed 40% of the
    page height.

    Returns:
        Tuple of (valid, topline, botline) using each line's mid-point y
    """
    if not lines:
        return False, 0, 0
    mids = [int(line[len(line) // 2, 1]) for line in lines]
    topline, botline = min(mids), max(mids)
    top_half = any(y < height // 2 for y in mids)
    bot_half = any(y >= height // 2 for y in mids)
    valid = top_half and bot_half and (botline - topline) > 0.4 * height
    return valid, topline, botline
