"""Build page models from the curvature of detected text lines."""

import logging
from typing import List, Optional, Tuple

import numpy as np

from textdewarp.core.fitting import (
    linear_lsf,
    median_dev_from_median,
    quadratic_lsf,
    to_micro,
    to_milli,
)
from textdewarp.core.imaging import ImageLike, ensure_binary
from textdewarp.core.textlines import (
    TextlineDetector,
    find_long_textlines,
    line_coverage,
    line_end_points,
)
from textdewarp.core.params import (
    DEFAULT_MIN_LINES,
    DEFAULT_SAMPLING,
    MIN_MIN_LINES,
    check_build_config,
)
from textdewarp.exceptions import ConfigurationError
from textdewarp.models.disparity import DisparityField, DisparityKind
from textdewarp.models.page import PageModel

logger = logging.getLogger(__name__)

# Lines whose curvature is further than this many median deviations from
# the median curvature are dropped before fitting.
CURVATURE_OUTLIER_FACTOR = 7.0
# Floor on that band, for pages where the curvatures are all but identical
CURVATURE_TOLERANCE = 1e-8
# Minimum number of flush end points on each side for a horizontal model
MIN_EDGE_POINTS = 3
# Flush end points must span this fraction of the vertical line range
MIN_EDGE_SPAN_FRACTION = 0.4


class PageModelBuilder:
    """
    Builds a :class:`PageModel` for one page image.

    Building never raises for pages that cannot be modelled; such pages
    get a model whose statuses are FAILED. Only bad input raises.
    """

    def __init__(self,
                 sampling: int = DEFAULT_SAMPLING,
                 redfactor: int = 1,
                 minlines: int = DEFAULT_MIN_LINES,
                 detector: Optional[TextlineDetector] = None):
        """
        Args:
            sampling: Stride of the sampled disparity grid, in pixels of the
                build image
            redfactor: 2 if build images are 2x reduced from the pages that
                will be rendered, else 1
            minlines: Minimum number of long text lines for a model
            detector: Text line detector; defaults to find_long_textlines
        """
        check_build_config(sampling, redfactor, minlines)
        self.sampling = sampling
        self.redfactor = redfactor
        self.minlines = minlines
        self.detector = detector or find_long_textlines

    def build(self,
              image: ImageLike,
              pageno: int,
              minlines: Optional[int] = None,
              debug: bool = False) -> PageModel:
        """
        Build the disparity model for a page.

        Args:
            image: 1-bit page image
            pageno: Page number; its parity selects the horizontal reference
            minlines: Override of the minimum line count
            debug: Keep intermediate results in ``model.diagnostics``

        Returns:
            Page model; check ``vsuccess``/``hsuccess``/``ysuccess``

        Raises:
            InvalidImageError: If the image is missing or not 1 bpp
            ValueError: If the page number is negative
        """
        binary = ensure_binary(image)
        if not isinstance(pageno, (int, np.integer)) or pageno < 0:
            raise ValueError(f"Page number must be a non-negative integer, got {pageno!r}")
        minlines = self.minlines if minlines is None else minlines
        if minlines < MIN_MIN_LINES:
            raise ConfigurationError(f"minlines must be >= {MIN_MIN_LINES}, got {minlines}")

        h, w = binary.shape
        model = PageModel(int(pageno), w, h, self.sampling, self.redfactor, debug=debug)

        lines = [np.asarray(line, dtype=np.float64) for line in self.detector(binary)]
        lines = [line for line in lines if len(line) >= 3]
        model.nlines = len(lines)
        if debug:
            model.diagnostics['lines'] = lines

        if len(lines) < minlines:
            logger.warning(
                f"Page {pageno}: linecount {len(lines)} < min required number "
                f"of lines ({minlines}) for model"
            )
            model.mark_failed()
            return model

        valid, topline, botline = line_coverage(lines, h)
        if not valid:
            logger.info(f"Page {pageno}: invalid line coverage: top = {topline}, bottom = {botline}")
            model.mark_failed()
            return model

        if not self._find_vertical_disparity(model, lines):
            logger.warning(f"Page {pageno}: vertical disparity not built")
            model.mark_failed()
            return model

        self._find_horizontal_disparity(model, lines)
        logger.info(
            f"Page {pageno}: vsuccess = {model.vsuccess}, hsuccess = {model.hsuccess}, "
            f"ysuccess = {model.ysuccess}"
        )
        return model

    def _find_vertical_disparity(self, model: PageModel, lines: List[np.ndarray]) -> bool:
        """
        Fit a vertical field that flattens every line onto its extreme point.

        Each line is fitted with a quadratic and sampled on the x grid; the
        displacement at each sample moves it to the line's minimum y within
        the line's own extent. Column-wise quadratic fits in y turn these
        scattered values into the sampled field.
        """
        sampling, nx, ny = self.sampling, model.nx, model.ny
        xs = np.arange(nx, dtype=np.float64) * sampling

        curves, samples, extents = [], [], []
        for line in lines:
            c2, c1, c0, _ = quadratic_lsf(line[:, 0], line[:, 1])
            curves.append(c2)
            samples.append(np.polyval((c2, c1, c0), xs))
            extents.append((line[0, 0], line[-1, 0]))
        curves = np.array(curves)

        # Reject lines whose curvature is inconsistent with the others.
        # Magnitude limits are applied later, by the validity checker.
        medcurv, medvar = median_dev_from_median(curves)
        logger.info(f"Page {model.pageno}: curvature median = {medcurv:.3g}, median dev = {medvar:.3g}")
        keep = np.abs(curves - medcurv) <= max(CURVATURE_OUTLIER_FACTOR * medvar, CURVATURE_TOLERANCE)
        if keep.sum() < 3:
            logger.info(f"Page {model.pageno}: only {keep.sum()} lines left after outlier removal")
            return False

        curves = curves[keep]
        samples = np.array(samples)[keep]
        extents = [extent for extent, k in zip(extents, keep) if k]

        model.mincurv = to_micro(curves.min())
        model.maxcurv = to_micro(curves.max())
        logger.info(f"Page {model.pageno}: min/max curvature = ({model.mincurv}, {model.maxcurv})")

        midys = samples[:, nx // 2]
        refs = np.empty(len(samples))
        for i, (x0, x1) in enumerate(extents):
            inside = (xs >= x0) & (xs <= x1)
            refs[i] = samples[i, inside].min() if inside.any() else midys[i]

        order = np.argsort(midys, kind='stable')
        model.midys = midys[order]
        model.curvatures = np.sort(curves)
        refs = refs[order]
        disparity = refs[:, None] - samples[order]

        if model.debug:
            model.diagnostics['line_samples'] = samples[order]
            model.diagnostics['line_refs'] = refs

        field = DisparityField.from_line_samples(
            DisparityKind.VERTICAL, refs, disparity, sampling, ny)
        model.set_field(field)
        return True

    def _select_flush(self,
                      points: np.ndarray,
                      side: str,
                      tolerance: float) -> np.ndarray:
        """Keep end points that lie on the outer envelope of one text edge."""
        c1, c0, _ = linear_lsf(points[:, 1], points[:, 0])
        residual = points[:, 0] - (c1 * points[:, 1] + c0)
        if side == 'left':
            keep = residual - residual.min() <= tolerance
        else:
            keep = residual.max() - residual <= tolerance
        return points[keep]

    def _edge_usable(self, points: np.ndarray, span: float) -> bool:
        if len(points) < MIN_EDGE_POINTS:
            return False
        return (points[:, 1].max() - points[:, 1].min()) >= MIN_EDGE_SPAN_FRACTION * span

    def _find_horizontal_disparity(self, model: PageModel, lines: List[np.ndarray]) -> None:
        """
        Fit horizontal (and possibly slope) fields from the text line ends.

        Only end points flush with the left or right text edge are used.
        The edge curves are referenced to their minimum x for even pages
        and maximum x for odd pages.
        """
        left, right = line_end_points(lines)
        if len(left) < MIN_EDGE_POINTS:
            model.mark_failed(DisparityKind.HORIZONTAL, DisparityKind.SLOPE)
            return

        tolerance = max(4.0, 0.02 * model.w)
        left_flush = self._select_flush(left, 'left', tolerance)
        right_flush = self._select_flush(right, 'right', tolerance)
        span = left[:, 1].max() - left[:, 1].min()
        if model.debug:
            model.diagnostics['left_points'] = left_flush
            model.diagnostics['right_points'] = right_flush

        if not (self._edge_usable(left_flush, span) and self._edge_usable(right_flush, span)):
            logger.info(
                f"Page {model.pageno}: horizontal disparity not built; "
                f"flush points left = {len(left_flush)}, right = {len(right_flush)}"
            )
            model.mark_failed(DisparityKind.HORIZONTAL, DisparityKind.SLOPE)
            return

        ys = np.arange(model.ny, dtype=np.float64) * self.sampling
        ymid = model.h / 2.0
        odd = model.pageno % 2 == 1

        cl2, cl1, cl0, lerr = quadratic_lsf(left_flush[:, 1], left_flush[:, 0])
        cr2, cr1, cr0, rerr = quadratic_lsf(right_flush[:, 1], right_flush[:, 0])
        model.leftslope = to_milli(2.0 * cl2 * ymid + cl1)
        model.rightslope = to_milli(2.0 * cr2 * ymid + cr1)
        model.leftcurv = to_micro(cl2)
        model.rightcurv = to_micro(cr2)
        logger.info(
            f"Page {model.pageno}: edge slopes = ({model.leftslope}, {model.rightslope}), "
            f"edge curvatures = ({model.leftcurv}, {model.rightcurv}), "
            f"median errors = ({lerr:.2f}, {rerr:.2f})"
        )

        xl = np.polyval((cl2, cl1, cl0), ys)
        xr = np.polyval((cr2, cr1, cr0), ys)
        model.set_field(self._edge_field(DisparityKind.HORIZONTAL, xl, xr, odd, model.nx))

        if len(left_flush) < len(left) or len(right_flush) < len(right):
            sl1, sl0, _ = linear_lsf(left_flush[:, 1], left_flush[:, 0])
            sr1, sr0, _ = linear_lsf(right_flush[:, 1], right_flush[:, 0])
            model.set_field(self._edge_field(
                DisparityKind.SLOPE, sl1 * ys + sl0, sr1 * ys + sr0, odd, model.nx))
        else:
            model.mark_failed(DisparityKind.SLOPE)

    def _edge_field(self,
                    kind: DisparityKind,
                    xl: np.ndarray,
                    xr: np.ndarray,
                    odd: bool,
                    nx: int) -> DisparityField:
        refl, refr = _edge_references(xl, xr, odd)
        return DisparityField.from_edge_profiles(
            kind, refl, refr, refl - xl, refr - xr, self.sampling, nx)


def _edge_references(xl: np.ndarray, xr: np.ndarray, odd: bool) -> Tuple[float, float]:
    """Edge positions the text edges are aligned to, away from the gutter."""
    if odd:
        return float(xl.max()), float(xr.max())
    return float(xl.min()), float(xr.min())
