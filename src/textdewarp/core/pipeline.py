"""Core pipeline implementation for building, resolving and rendering dewarp models."""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
import torch
from tqdm import tqdm

from textdewarp.core.columns import ColumnCounter, count_text_columns
from textdewarp.core.imaging import (
    ImageLike,
    binarize,
    check_depth,
    is_binary,
    reduce_rank_binary_2x,
    to_array,
)
from textdewarp.core.resample import DisparityResampler
from textdewarp.exceptions import ModelsNotReadyError
from textdewarp.models import ModelCollection, PageModel, get_collection

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass
class RenderPlan:
    """Decisions taken for rendering one page."""
    pageno: int
    model: Optional[PageModel]
    apply_vertical: bool
    apply_horizontal: bool
    ncolumns: Optional[int] = None

    @property
    def refpage(self) -> Optional[int]:
        """Page whose model is used, when it is not the page's own."""
        if self.model is None or self.model.pageno == self.pageno:
            return None
        return self.model.pageno


class RenderPipeline:
    """
    Applies the models of a ready collection to page images.

    Decisions are taken at render time from the collection's current policy
    flags, so ``useboth`` and ``check_columns`` can be changed after
    references are resolved. Rendering never modifies the collection.
    """

    def __init__(self,
                 resampler: Optional[DisparityResampler] = None,
                 column_counter: Optional[ColumnCounter] = None):
        self.resampler = resampler or DisparityResampler()
        self.column_counter = column_counter or count_text_columns

    def plan(self, image: np.ndarray, pageno: int, collection: ModelCollection) -> RenderPlan:
        """
        Decide which disparity fields to apply to a page.

        Raises:
            ModelsNotReadyError: If references have not been resolved
        """
        if not collection.models_ready:
            raise ModelsNotReadyError(
                "Models are not ready; call resolve_references() before rendering"
            )

        model = collection.effective_model(pageno)
        if model is None:
            return RenderPlan(pageno, None, False, False)

        ncolumns = None
        if collection.check_columns:
            binary = image if is_binary(image) else binarize(image)
            ncolumns = self.column_counter(binary)

        multicolumn = collection.check_columns and ncolumns is not None and ncolumns > 1
        use_horizontal = collection.useboth and model.hvalid and not multicolumn
        if multicolumn and collection.useboth and model.hvalid:
            logger.info(f"Page {pageno}: {ncolumns} columns; skipping horizontal correction")
        return RenderPlan(pageno, model, True, use_horizontal, ncolumns)

    def full_res_fields(self,
                        plan: RenderPlan,
                        width: int,
                        height: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """Expand the planned fields to the size of the image being rendered."""
        model = plan.model
        factor = model.sampling * model.redfactor
        vertical = model.vertical.expand(factor, width, height, multiplier=model.redfactor)
        horizontal = None
        if plan.apply_horizontal:
            horizontal = model.horizontal.expand(
                factor, width, height,
                multiplier=model.redfactor,
                slope_source=model.slope,
            )
        return vertical, horizontal

    def render(self, image: ImageLike, pageno: int, collection: ModelCollection) -> np.ndarray:
        """
        Render a corrected page.

        Args:
            image: Page at full resolution (1-bit, gray or RGB)
            pageno: Page number
            collection: Collection whose references have been resolved

        Returns:
            Corrected page, or a copy of the input when no model applies
        """
        image = to_array(image)
        check_depth(image)
        plan = self.plan(image, pageno, collection)
        if plan.model is None:
            logger.info(f"Page {pageno}: no model available; using the input image")
            return image.copy()

        h, w = image.shape[:2]
        vertical, horizontal = self.full_res_fields(plan, w, h)
        if plan.refpage is not None:
            logger.info(f"Page {pageno}: using model of page {plan.refpage}")
        return self.resampler.apply(image, vertical, horizontal)


class DocumentDewarpPipeline:
    """End-to-end pipeline: build models for a document, resolve, render."""

    def __init__(self,
                 preset: str = 'default',
                 device: Optional[torch.device] = None,
                 max_workers: Optional[int] = None,
                 column_counter: Optional[ColumnCounter] = None,
                 **config):
        """
        Initialize the document dewarping pipeline.

        Args:
            preset: Collection preset name
            device: Device to run resampling on (default: auto-detect)
            max_workers: Threads used for building models
            column_counter: Column detector used when check_columns is set
            **config: Overrides of the preset configuration
        """
        self.collection = get_collection(preset, **config)
        self.builder = self.collection.create_builder()
        self.max_workers = max_workers
        self.renderer = RenderPipeline(
            resampler=DisparityResampler(device=device),
            column_counter=column_counter,
        )
        logger.info(f"Using device: {self.renderer.resampler.device}")

    def prepare_page(self, image: ImageLike) -> np.ndarray:
        """
        Produce the 1-bit image a model is built from.

        Args:
            image: Page at full resolution

        Returns:
            Binary page, 2x reduced when the collection's redfactor is 2
        """
        binary = binarize(image)
        if self.collection.redfactor == 2:
            binary = reduce_rank_binary_2x(binary, level=1)
        return binary

    def build_model(self, image: ImageLike, pageno: int) -> PageModel:
        """Build and insert the model for one page."""
        model = self.builder.build(self.prepare_page(image), pageno)
        self.collection.insert_model(model)
        return model

    def build_models(self,
                     pages: Union[Sequence[ImageLike], Dict[int, ImageLike]],
                     skip_errors: bool = False) -> List[Optional[PageModel]]:
        """
        Build models for many pages in parallel.

        Args:
            pages: Images in page order, or a mapping of page number to image
            skip_errors: Log and skip pages that fail instead of raising

        Returns:
            Built models in page order; None for skipped pages
        """
        items = sorted(pages.items()) if isinstance(pages, dict) else list(enumerate(pages))
        if items:
            self.collection.npages = max(self.collection.npages, items[-1][0] + 1)

        def work(item):
            pageno, image = item
            try:
                return self.build_model(image, pageno)
            except Exception as e:
                logger.error(f"Failed to build model for page {pageno}: {str(e)}")
                if not skip_errors:
                    raise
                return None

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            models = list(tqdm(executor.map(work, items), total=len(items), desc="Building models"))
        return models

    def resolve(self, notests: bool = False) -> None:
        self.collection.resolve_references(notests=notests)

    def render(self, image: ImageLike, pageno: int) -> np.ndarray:
        return self.renderer.render(image, pageno, self.collection)

    def process_images(self, pages: Sequence[ImageLike]) -> List[np.ndarray]:
        """Build, resolve and render a list of page images."""
        self.build_models(pages)
        self.resolve()
        return [self.render(image, pageno) for pageno, image in enumerate(pages)]

    def process_directory(self,
                          input_dir: Union[str, Path],
                          output_dir: Union[str, Path],
                          extensions: Iterable[str] = ('.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff')) -> None:
        """
        Dewarp all images in a directory as one document.

        Files are taken in sorted name order; the position in that order is
        the page number.

        Args:
            input_dir: Directory containing input images
            output_dir: Directory to save corrected images
            extensions: Valid file extensions
        """
        input_dir = Path(input_dir)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        # Get all valid image files
        image_files = set()
        for ext in extensions:
            image_files.update(input_dir.glob(f'*{ext}'))
            image_files.update(input_dir.glob(f'*{ext.upper()}'))
        image_files = sorted(image_files)

        if not image_files:
            logger.warning(f"No valid images found in {input_dir}")
            return

        self.build_models(dict(enumerate(image_files)), skip_errors=True)
        self.resolve()

        for pageno, img_path in enumerate(tqdm(image_files, desc="Rendering pages")):
            try:
                output_path = output_dir / f"{img_path.stem}_dewarp{img_path.suffix}"
                self.process_image(img_path, pageno, output_path)
            except Exception as e:
                logger.error(f"Failed to process {img_path}: {str(e)}")
                continue

    def process_image(self,
                      image_path: Union[str, Path],
                      pageno: int,
                      output_path: Union[str, Path]) -> np.ndarray:
        """
        Render one page of a resolved document and save the result.

        Args:
            image_path: Path to input image
            pageno: Page number of the image
            output_path: Path to save corrected image
        """
        try:
            corrected = self.render(image_path, pageno)
            save_image(corrected, output_path)
            return corrected
        except Exception as e:
            logger.error(f"Failed to process {image_path}: {str(e)}")
            raise


def save_image(image: np.ndarray, output_path: Union[str, Path]) -> None:
    """Write a page array with OpenCV."""
    # Ensure output directory exists
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)

    if is_binary(image):
        data = np.where(image, 0, 255).astype(np.uint8)
    elif image.ndim == 3:
        data = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
    else:
        data = image
    if not cv2.imwrite(str(output_path), data):
        raise IOError(f"Could not write {output_path}")


def dewarp_single_page(image: ImageLike,
                       pageno: int = 0,
                       preset: str = 'default',
                       device: Optional[torch.device] = None,
                       **config) -> np.ndarray:
    """
    Build a model for one page and apply it to the same page.

    Args:
        image: Page at full resolution
        pageno: Page number (its parity selects the horizontal reference)
        preset: Collection preset name
        device: Device to run resampling on
        **config: Overrides of the preset configuration

    Returns:
        Corrected page, or a copy of the input if no valid model was built
    """
    pipeline = DocumentDewarpPipeline(preset=preset, device=device, **config)
    image = to_array(image)
    pipeline.build_model(image, pageno)
    pipeline.resolve()
    return pipeline.render(image, pageno)
