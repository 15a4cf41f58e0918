"""Plausibility checks applied to built page models before rendering."""

import logging
from dataclasses import dataclass, fields, asdict
from typing import Dict, Tuple, TYPE_CHECKING

from textdewarp.exceptions import ConfigurationError

if TYPE_CHECKING:
    from textdewarp.models.page import PageModel

logger = logging.getLogger(__name__)

# Curvatures are in micro-units (1e-6 / pixel), slopes in milli-units.
DEFAULT_MAX_LINECURV = 150
DEFAULT_MIN_DIFF_LINECURV = 0
DEFAULT_MAX_DIFF_LINECURV = 170
DEFAULT_MAX_EDGESLOPE = 80
DEFAULT_MAX_EDGECURV = 50
DEFAULT_MAX_DIFF_EDGECURV = 40


@dataclass
class Thresholds:
    """Limits a built model must satisfy to be used for rendering."""
    max_linecurv: int = DEFAULT_MAX_LINECURV
    min_diff_linecurv: int = DEFAULT_MIN_DIFF_LINECURV
    max_diff_linecurv: int = DEFAULT_MAX_DIFF_LINECURV
    max_edgeslope: int = DEFAULT_MAX_EDGESLOPE
    max_edgecurv: int = DEFAULT_MAX_EDGECURV
    max_diff_edgecurv: int = DEFAULT_MAX_DIFF_EDGECURV

    def __post_init__(self):
        for f in fields(self):
            check_threshold(f.name, getattr(self, f.name))
        if self.min_diff_linecurv > self.max_diff_linecurv:
            raise ConfigurationError(
                f"min_diff_linecurv ({self.min_diff_linecurv}) exceeds "
                f"max_diff_linecurv ({self.max_diff_linecurv})"
            )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def check_threshold(name: str, value: int) -> int:
    """Reject thresholds that are not non-negative integers."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ConfigurationError(f"{name} must be non-negative, got {value}")
    return value


class ValidityChecker:
    """
    Marks the vertical and horizontal fields of a model as valid or invalid.

    The horizontal field is only ever valid when the vertical field is:
    a page whose line curvature cannot be trusted cannot be trusted for
    edge alignment either.
    """

    def __init__(self, thresholds: Thresholds = None):
        self.thresholds = thresholds or Thresholds()

    def vertical_ok(self, model: 'PageModel') -> bool:
        t = self.thresholds
        maxcurv = max(abs(model.mincurv), abs(model.maxcurv))
        diffcurv = model.maxcurv - model.mincurv
        return (maxcurv <= t.max_linecurv and
                t.min_diff_linecurv <= diffcurv <= t.max_diff_linecurv)

    def horizontal_ok(self, model: 'PageModel') -> bool:
        t = self.thresholds
        maxedgecurv = max(abs(model.leftcurv), abs(model.rightcurv))
        diffedgecurv = abs(model.leftcurv - model.rightcurv)
        return (abs(model.leftslope) <= t.max_edgeslope and
                abs(model.rightslope) <= t.max_edgeslope and
                maxedgecurv <= t.max_edgecurv and
                diffedgecurv <= t.max_diff_edgecurv)

    def validate(self, model: 'PageModel', notests: bool = False) -> Tuple[bool, bool]:
        """
        Set ``vvalid``/``hvalid`` on a model in place.

        Args:
            model: Page model to check
            notests: Accept every built field without applying thresholds

        Returns:
            Tuple of (vvalid, hvalid)
        """
        if model.hasref or not model.vsuccess:
            return model.validity()

        if notests:
            vvalid = True
        else:
            vvalid = self.vertical_ok(model)
            if not vvalid:
                logger.info(
                    f"Invalid vertical model for page {model.pageno}: "
                    f"curvature range [{model.mincurv}, {model.maxcurv}]"
                )

        hvalid = False
        if model.hsuccess and vvalid:
            hvalid = notests or self.horizontal_ok(model)
            if not hvalid:
                logger.info(
                    f"Invalid horizontal model for page {model.pageno}: "
                    f"slopes ({model.leftslope}, {model.rightslope}), "
                    f"curvatures ({model.leftcurv}, {model.rightcurv})"
                )

        model.set_validity(vvalid, hvalid)
        return vvalid, hvalid
