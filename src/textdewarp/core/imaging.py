"""Image conversion helpers shared by the builder, renderer and pipeline.

Pages are handled as numpy arrays:

* 1-bit pages are 2-D ``bool`` arrays with ``True`` for foreground (ink);
* grayscale pages are 2-D ``uint8`` arrays;
* colour pages are 3-D ``uint8`` arrays in RGB order.
"""

import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image

from textdewarp.exceptions import InvalidImageError

logger = logging.getLogger(__name__)

ImageLike = Union[str, Path, np.ndarray, Image.Image]


def to_array(image: ImageLike) -> np.ndarray:
    """
    Convert an image, or a path to one, into a numpy page array.

    PIL images in mode ``"1"`` become boolean arrays with ``True`` on black
    pixels. Palette and other modes are converted to grayscale or RGB.

    Args:
        image: Input image or path to image

    Returns:
        Page array

    Raises:
        InvalidImageError: If the input is None or of an unsupported type
    """
    if image is None:
        raise InvalidImageError("Image is None")

    if isinstance(image, (str, Path)):
        with Image.open(image) as img:
            img.load()
            return to_array(img)

    if isinstance(image, Image.Image):
        if image.mode == '1':
            return ~np.array(image, dtype=bool)
        if image.mode not in ('L', 'RGB'):
            image = image.convert('RGB' if 'A' in image.mode or image.mode in ('P', 'CMYK') else 'L')
        return np.array(image)

    if isinstance(image, np.ndarray):
        check_depth(image)
        return image

    raise InvalidImageError(f"Unsupported image type: {type(image).__name__}")


def check_depth(image: np.ndarray) -> None:
    """Raise if an array is not a valid 1-bit, gray or RGB page."""
    if image.size == 0:
        raise InvalidImageError("Image is empty")
    if image.dtype == bool and image.ndim == 2:
        return
    if image.dtype == np.uint8 and (image.ndim == 2 or (image.ndim == 3 and image.shape[2] == 3)):
        return
    raise InvalidImageError(
        f"Unsupported pixel layout: dtype={image.dtype}, shape={image.shape}"
    )


def is_binary(image: np.ndarray) -> bool:
    """Return whether an array holds a 1-bit page."""
    return isinstance(image, np.ndarray) and image.dtype == bool and image.ndim == 2


def ensure_binary(image: ImageLike) -> np.ndarray:
    """
    Return a 1-bit page array, rejecting anything of another depth.

    Args:
        image: Binary page as a bool array or a PIL mode "1" image

    Returns:
        Boolean array with True on foreground pixels

    Raises:
        InvalidImageError: If the image is missing or not 1 bpp
    """
    array = to_array(image)
    if not is_binary(array):
        raise InvalidImageError(
            f"Expected a 1 bpp page, got dtype={array.dtype}, shape={array.shape}"
        )
    return array


def binarize(image: ImageLike, threshold: int = 0) -> np.ndarray:
    """
    Threshold a grayscale or colour page into a 1-bit page.

    Args:
        image: Input page
        threshold: Fixed gray threshold; 0 selects Otsu's method

    Returns:
        Boolean array with True on dark (foreground) pixels
    """
    array = to_array(image)
    if is_binary(array):
        return array.copy()

    gray = cv2.cvtColor(array, cv2.COLOR_RGB2GRAY) if array.ndim == 3 else array
    if threshold > 0:
        _, binary = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY_INV)
    else:
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    return binary > 0


def reduce_rank_binary_2x(binary: np.ndarray, level: int = 1) -> np.ndarray:
    """
    Reduce a 1-bit page by 2x with a rank threshold.

    Each destination pixel covers a 2x2 block of the source and is ON
    when at least ``level`` of those four pixels are ON. Odd trailing rows
    and columns are padded with OFF pixels.

    Args:
        binary: 1-bit page
        level: Rank threshold in {1, 2, 3, 4}

    Returns:
        Half-size 1-bit page
    """
    if level not in (1, 2, 3, 4):
        raise ValueError(f"level must be in {{1, 2, 3, 4}}, got {level}")
    binary = ensure_binary(binary)

    h, w = binary.shape
    padded = np.zeros((h + h % 2, w + w % 2), dtype=np.uint8)
    padded[:h, :w] = binary
    counts = padded.reshape(padded.shape[0] // 2, 2, padded.shape[1] // 2, 2).sum(axis=(1, 3))
    return counts >= level


def to_pil(image: np.ndarray) -> Image.Image:
    """Convert a page array back into a PIL image."""
    if is_binary(image):
        return Image.fromarray(~image).convert('1')
    return Image.fromarray(image)
