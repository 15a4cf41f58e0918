"""Sampled disparity fields and their expansion to full resolution."""

from enum import Enum
from typing import Dict, Optional, Any

import numpy as np


class DisparityKind(Enum):
    """What a disparity field displaces."""
    VERTICAL = 'vertical'
    HORIZONTAL = 'horizontal'
    SLOPE = 'slope'


def _upsample_axis(grid: np.ndarray, factor: int, axis: int) -> np.ndarray:
    """Linearly interpolate ``factor - 1`` values between samples on one axis."""
    n = grid.shape[axis]
    if factor == 1 or n == 1:
        return grid.copy()

    m = (n - 1) * factor + 1
    k = np.arange(m)
    i0 = np.minimum(k // factor, n - 2)
    t = (k - i0 * factor) / factor

    shape = [1] * grid.ndim
    shape[axis] = m
    t = t.reshape(shape)
    a0 = np.take(grid, i0, axis=axis)
    a1 = np.take(grid, i0 + 1, axis=axis)
    return a0 * (1.0 - t) + a1 * t


def _edge_slope(grid: np.ndarray, axis: int) -> np.ndarray:
    """Difference between the last two samples along ``axis``."""
    if grid.shape[axis] < 2:
        return np.zeros_like(np.take(grid, [-1], axis=axis))
    return np.take(grid, [-1], axis=axis) - np.take(grid, [-2], axis=axis)


def add_slope_border(grid: np.ndarray,
                     right: int,
                     bottom: int,
                     slope_source: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Extend a grid to the right and below by continuing its edge slope.

    Border values grow linearly from the last column (row) with the
    difference between the last two columns (rows). When ``slope_source``
    is given, that array's edge differences are used instead; it must
    have the same shape as ``grid``.

    Args:
        grid: Full-resolution values
        right: Number of columns to add
        bottom: Number of rows to add
        slope_source: Optional array supplying the edge slopes

    Returns:
        Extended array
    """
    source = grid if slope_source is None else slope_source
    if right > 0:
        steps = np.arange(1, right + 1, dtype=np.float64)[None, :]
        slope = _edge_slope(source, axis=1)
        grid = np.concatenate([grid, grid[:, -1:] + slope * steps], axis=1)
        if slope_source is not None:
            source = np.concatenate(
                [source, source[:, -1:] + _edge_slope(source, axis=1) * steps], axis=1)
    if bottom > 0:
        steps = np.arange(1, bottom + 1, dtype=np.float64)[:, None]
        slope = _edge_slope(source if slope_source is not None else grid, axis=0)
        grid = np.concatenate([grid, grid[-1:, :] + slope * steps], axis=0)
    return grid


class DisparityField:
    """
    A displacement field sampled every ``sampling`` pixels over a page.

    ``sampled[i, j]`` is the displacement at pixel ``(j * sampling, i * sampling)``.
    A vertical field moves pixels along y, a horizontal field along x.
    A slope field is a linear horizontal field that only supplies the
    continuation slope of the horizontal field beyond the sampled extent.
    """

    def __init__(self,
                 kind: DisparityKind,
                 sampled: np.ndarray,
                 sampling: int):
        sampled = np.asarray(sampled, dtype=np.float64)
        if sampled.ndim != 2 or sampled.size == 0:
            raise ValueError(f"Sampled disparity must be a non-empty 2-D array, got {sampled.shape}")
        if sampling < 1:
            raise ValueError(f"sampling must be positive, got {sampling}")
        self.kind = DisparityKind(kind)
        self.sampled = sampled
        self.sampling = int(sampling)
        self.full: Optional[np.ndarray] = None

    @property
    def nx(self) -> int:
        return self.sampled.shape[1]

    @property
    def ny(self) -> int:
        return self.sampled.shape[0]

    @classmethod
    def from_line_samples(cls,
                          kind: DisparityKind,
                          line_y: np.ndarray,
                          values: np.ndarray,
                          sampling: int,
                          ny: int) -> 'DisparityField':
        """
        Build a field from displacements sampled along scattered lines.

        Every line contributes one value per sampled column. Down each
        column the values are fitted by a quadratic in y and the fit is
        resampled on the regular y grid.

        Args:
            kind: Field kind
            line_y: Reference y position of each line, shape (nlines,)
            values: Displacement of each line at each sampled x, shape (nlines, nx)
            sampling: Grid stride in pixels
            ny: Number of sampled rows

        Returns:
            New disparity field
        """
        line_y = np.asarray(line_y, dtype=np.float64)
        values = np.asarray(values, dtype=np.float64)
        if values.ndim != 2 or values.shape[0] != line_y.size:
            raise ValueError("values must have one row per line")
        if line_y.size < 3:
            raise ValueError(f"Need at least 3 lines for a column fit, got {line_y.size}")

        c2, c1, c0 = np.polyfit(line_y, values, 2)
        ys = (np.arange(ny, dtype=np.float64) * sampling)[:, None]
        sampled = c2[None, :] * ys * ys + c1[None, :] * ys + c0[None, :]
        return cls(kind, sampled, sampling)

    @classmethod
    def from_edge_profiles(cls,
                           kind: DisparityKind,
                           left_ref: float,
                           right_ref: float,
                           left_values: np.ndarray,
                           right_values: np.ndarray,
                           sampling: int,
                           nx: int) -> 'DisparityField':
        """
        Build a horizontal field from displacements on the two text edges.

        On each sampled row the displacement varies linearly in x through
        ``(left_ref, left_values[i])`` and ``(right_ref, right_values[i])``.
        """
        left_values = np.asarray(left_values, dtype=np.float64)
        right_values = np.asarray(right_values, dtype=np.float64)
        xs = (np.arange(nx, dtype=np.float64) * sampling)[None, :]
        width = right_ref - left_ref
        if abs(width) < 1e-9:
            slope = np.zeros_like(left_values)
        else:
            slope = (right_values - left_values) / width
        sampled = left_values[:, None] + slope[:, None] * (xs - left_ref)
        return cls(kind, sampled, sampling)

    def expand(self,
               factor: int,
               width: Optional[int] = None,
               height: Optional[int] = None,
               multiplier: float = 1.0,
               slope_source: Optional['DisparityField'] = None) -> np.ndarray:
        """
        Expand the sampled field to full resolution.

        Values between samples are bilinearly interpolated. If ``width`` or
        ``height`` exceed the interpolated extent, the field is extended by
        slope continuation, then cropped to exactly ``height x width``.

        Args:
            factor: Pixels between samples at the target resolution
            width: Target width, or None to keep the interpolated width
            height: Target height, or None to keep the interpolated height
            multiplier: Scale applied to the displacement values
            slope_source: Field whose edge slopes drive the continuation

        Returns:
            Full resolution array of shape (height, width)
        """
        if factor < 1:
            raise ValueError(f"factor must be positive, got {factor}")
        full = _upsample_axis(_upsample_axis(self.sampled, factor, axis=0), factor, axis=1)
        if multiplier != 1.0:
            full = full * multiplier

        fh, fw = full.shape
        width = fw if width is None else int(width)
        height = fh if height is None else int(height)
        addw = max(0, width - fw)
        addh = max(0, height - fh)
        if addw or addh:
            source = None
            if slope_source is not None:
                source = slope_source.expand(factor, multiplier=multiplier)
                if source.shape != full.shape:
                    raise ValueError("Slope source must share the sampled grid")
            full = add_slope_border(full, addw, addh, slope_source=source)
        return full[:height, :width]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'sampling': self.sampling,
            'sampled': self.sampled.copy(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DisparityField':
        return cls(DisparityKind(data['kind']), np.asarray(data['sampled']), data['sampling'])

    def __repr__(self) -> str:
        return (f"DisparityField(kind={self.kind.value}, nx={self.nx}, "
                f"ny={self.ny}, sampling={self.sampling})")
