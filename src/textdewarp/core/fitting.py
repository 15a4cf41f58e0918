"""Least-squares curve fitting used to turn text lines into disparity."""

from typing import Tuple

import numpy as np

# Fixed-point scales for persisted statistics
MICRO = 1000000.0
MILLI = 1000.0


def quadratic_lsf(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, float, float]:
    """
    Fit ``y = c2 * x**2 + c1 * x + c0`` by least squares.

    Args:
        x: Abscissae
        y: Ordinates

    Returns:
        Tuple of (c2, c1, c0, median absolute residual)
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if x.size < 3:
        raise ValueError(f"Quadratic fit needs at least 3 points, got {x.size}")
    c2, c1, c0 = np.polyfit(x, y, 2)
    mederr = float(np.median(np.abs(np.polyval((c2, c1, c0), x) - y)))
    return float(c2), float(c1), float(c0), mederr


def linear_lsf(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, float]:
    """
    Fit ``y = c1 * x + c0`` by least squares.

    Returns:
        Tuple of (c1, c0, median absolute residual)
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if x.size < 2:
        raise ValueError(f"Linear fit needs at least 2 points, got {x.size}")
    c1, c0 = np.polyfit(x, y, 1)
    mederr = float(np.median(np.abs(c1 * x + c0 - y)))
    return float(c1), float(c0), mederr


def median_dev_from_median(values: np.ndarray) -> Tuple[float, float]:
    """Return the median and the median absolute deviation from it."""
    values = np.asarray(values, dtype=np.float64)
    median = float(np.median(values))
    return median, float(np.median(np.abs(values - median)))


def to_micro(value: float) -> int:
    return int(round(MICRO * value))


def to_milli(value: float) -> int:
    return int(round(MILLI * value))
