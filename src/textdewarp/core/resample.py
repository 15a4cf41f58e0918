"""Pixel remapping with full resolution disparity arrays."""

import logging
from typing import Optional, Union

import numpy as np
import torch
import torch.nn.functional as F

from textdewarp.core.imaging import check_depth, is_binary

logger = logging.getLogger(__name__)


class DisparityResampler:
    """
    Applies disparity arrays to page images.

    A destination pixel ``(x, y)`` takes its value from the source pixel
    ``(x, y - v(x, y))`` for a vertical array ``v`` and ``(x - d(x, y), y)``
    for a horizontal array ``d``. 1-bit pages are sampled with nearest
    neighbour, gray and colour pages bilinearly. Pixels that map from
    outside the source are set to background (OFF for 1-bit, white
    otherwise).
    """

    def __init__(self, device: Optional[Union[str, torch.device]] = None):
        """
        Args:
            device: Device to run the remap on (default: auto-detect)
        """
        self.device = torch.device(device) if device else torch.device(
            'cuda' if torch.cuda.is_available() else 'cpu')
        logger.debug(f"Resampling on device: {self.device}")

    def apply(self,
              image: np.ndarray,
              vertical: np.ndarray,
              horizontal: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Apply vertical disparity, then horizontal disparity if given.

        Args:
            image: Source page
            vertical: Full resolution vertical disparity, shape (h, w)
            horizontal: Optional full resolution horizontal disparity

        Returns:
            Corrected page of the same shape and dtype
        """
        result = self.apply_vertical(image, vertical)
        if horizontal is not None:
            result = self.apply_horizontal(result, horizontal)
        return result

    def apply_vertical(self, image: np.ndarray, disparity: np.ndarray) -> np.ndarray:
        h, w = self._check(image, disparity)
        ys, xs = np.mgrid[0:h, 0:w].astype(np.float64)
        return self._remap(image, xs, ys - disparity)

    def apply_horizontal(self, image: np.ndarray, disparity: np.ndarray) -> np.ndarray:
        h, w = self._check(image, disparity)
        ys, xs = np.mgrid[0:h, 0:w].astype(np.float64)
        return self._remap(image, xs - disparity, ys)

    @staticmethod
    def _check(image: np.ndarray, disparity: np.ndarray):
        check_depth(image)
        h, w = image.shape[:2]
        if disparity.shape != (h, w):
            raise ValueError(
                f"Disparity shape {disparity.shape} does not match image shape {(h, w)}"
            )
        return h, w

    def _remap(self, image: np.ndarray, map_x: np.ndarray, map_y: np.ndarray) -> np.ndarray:
        h, w = image.shape[:2]
        binary = is_binary(image)

        planes = image[None] if image.ndim == 2 else image.transpose(2, 0, 1)
        src = torch.from_numpy(np.ascontiguousarray(planes, dtype=np.float32)).unsqueeze(0)

        # Normalize to [-1, 1]; with align_corners=True -1 and 1 are pixel centers
        gx = map_x / max(w - 1, 1) * 2.0 - 1.0
        gy = map_y / max(h - 1, 1) * 2.0 - 1.0
        grid = torch.from_numpy(np.stack([gx, gy], axis=2).astype(np.float32)).unsqueeze(0)

        with torch.no_grad():
            out = F.grid_sample(
                src.to(self.device),
                grid.to(self.device),
                mode='nearest' if binary else 'bilinear',
                padding_mode='border',
                align_corners=True
            )
        out = out[0].cpu().numpy()

        outside = (map_x < -0.5) | (map_x > w - 0.5) | (map_y < -0.5) | (map_y > h - 0.5)
        if binary:
            result = out[0] > 0.5
            result[outside] = False
            return result

        result = np.clip(np.rint(out), 0, 255).astype(np.uint8)
        result = result[0] if image.ndim == 2 else result.transpose(1, 2, 0)
        result[outside] = 255
        return np.ascontiguousarray(result)
