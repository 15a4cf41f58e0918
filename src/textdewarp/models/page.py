"""Per-page dewarping model."""

import logging
import weakref
from enum import Enum
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

import numpy as np

from .base import PersistentRecord
from .disparity import DisparityField, DisparityKind

if TYPE_CHECKING:
    from .collection import ModelCollection

logger = logging.getLogger(__name__)


class FieldStatus(Enum):
    """
    Lifecycle of one disparity field on a page model.

    NOT_ATTEMPTED and FAILED mean there is no field. BUILT fields have not
    been checked yet; INVALID and VALID are set by the validity checker.
    """
    NOT_ATTEMPTED = 'not_attempted'
    FAILED = 'failed'
    BUILT = 'built'
    INVALID = 'invalid'
    VALID = 'valid'

    @property
    def has_field(self) -> bool:
        return self in (FieldStatus.BUILT, FieldStatus.INVALID, FieldStatus.VALID)


def grid_size(length: int, sampling: int) -> int:
    """Number of samples needed to cover ``length`` pixels at ``sampling`` stride."""
    return (length + 2 * sampling - 2) // sampling


class PageModel(PersistentRecord):
    """
    Disparity fields and line statistics for one page.

    A page model is either an actual model, produced by building from the
    page image, or a reference model: a pure redirect to another page whose
    model should be used instead. Reference models never hold fields.
    """

    record_type = 'page_model'

    def __init__(self,
                 pageno: int,
                 w: int,
                 h: int,
                 sampling: int,
                 redfactor: int = 1,
                 debug: bool = False):
        if pageno < 0:
            raise ValueError(f"Page number must be non-negative, got {pageno}")
        self.pageno = int(pageno)
        self.w = int(w)
        self.h = int(h)
        self.sampling = int(sampling)
        self.redfactor = int(redfactor)
        self.nx = grid_size(self.w, self.sampling) if self.w else 0
        self.ny = grid_size(self.h, self.sampling) if self.h else 0
        self.debug = debug

        self._vertical: Optional[DisparityField] = None
        self._horizontal: Optional[DisparityField] = None
        self._slope: Optional[DisparityField] = None
        self._vstatus = FieldStatus.NOT_ATTEMPTED
        self._hstatus = FieldStatus.NOT_ATTEMPTED
        self._ystatus = FieldStatus.NOT_ATTEMPTED
        self._refpage: Optional[int] = None
        self._owner = None

        self.midys = np.zeros(0)
        # Line curvatures, sorted ascending
        self.curvatures = np.zeros(0)
        self.nlines = 0
        self.mincurv = 0
        self.maxcurv = 0
        self.leftslope = 0
        self.rightslope = 0
        self.leftcurv = 0
        self.rightcurv = 0
        self.diagnostics: Dict[str, Any] = {}

    @classmethod
    def reference(cls, pageno: int, refpage: int, sampling: int, redfactor: int = 1) -> 'PageModel':
        """Create a redirect from ``pageno`` to the model of ``refpage``."""
        if refpage < 0 or refpage == pageno:
            raise ValueError(f"Invalid reference page {refpage} for page {pageno}")
        model = cls(pageno, 0, 0, sampling, redfactor)
        model._refpage = int(refpage)
        return model

    # ----- ownership -----

    @property
    def collection(self) -> Optional['ModelCollection']:
        """Owning collection, if the model has been inserted into one."""
        return self._owner() if self._owner is not None else None

    def _attach(self, collection: Optional['ModelCollection']) -> None:
        self._owner = weakref.ref(collection) if collection is not None else None

    # ----- references -----

    @property
    def hasref(self) -> bool:
        return self._refpage is not None

    @property
    def refpage(self) -> Optional[int]:
        return self._refpage

    # ----- fields and statuses -----

    @property
    def vertical(self) -> Optional[DisparityField]:
        return self._vertical

    @property
    def horizontal(self) -> Optional[DisparityField]:
        return self._horizontal

    @property
    def slope(self) -> Optional[DisparityField]:
        return self._slope

    @property
    def vstatus(self) -> FieldStatus:
        return self._vstatus

    @property
    def hstatus(self) -> FieldStatus:
        return self._hstatus

    @property
    def ystatus(self) -> FieldStatus:
        return self._ystatus

    @property
    def vsuccess(self) -> bool:
        return self._vstatus.has_field

    @property
    def hsuccess(self) -> bool:
        return self._hstatus.has_field

    @property
    def ysuccess(self) -> bool:
        return self._ystatus.has_field

    @property
    def vvalid(self) -> bool:
        return self._vstatus is FieldStatus.VALID

    @property
    def hvalid(self) -> bool:
        return self._hstatus is FieldStatus.VALID

    def set_field(self, field: DisparityField) -> None:
        """Attach a freshly built field; its status becomes BUILT."""
        if self.hasref:
            raise ValueError(f"Reference model for page {self.pageno} cannot hold fields")
        if field.sampling != self.sampling:
            raise ValueError(
                f"Field sampling {field.sampling} does not match model sampling {self.sampling}"
            )
        if field.kind is DisparityKind.VERTICAL:
            self._vertical, self._vstatus = field, FieldStatus.BUILT
        elif field.kind is DisparityKind.HORIZONTAL:
            self._horizontal, self._hstatus = field, FieldStatus.BUILT
        else:
            self._slope, self._ystatus = field, FieldStatus.BUILT

    def mark_failed(self, *kinds: DisparityKind) -> None:
        """Record that building the given fields was attempted and failed."""
        for kind in kinds or tuple(DisparityKind):
            if kind is DisparityKind.VERTICAL:
                self._vertical, self._vstatus = None, FieldStatus.FAILED
            elif kind is DisparityKind.HORIZONTAL:
                self._horizontal, self._hstatus = None, FieldStatus.FAILED
            else:
                self._slope, self._ystatus = None, FieldStatus.FAILED

    def set_validity(self, vvalid: bool, hvalid: bool) -> None:
        """
        Record the outcome of a validity check.

        Raises:
            ValueError: If the combination is not representable, i.e. a
                field is marked valid without having been built, or the
                horizontal field is valid while the vertical one is not.
        """
        if vvalid and not self.vsuccess:
            raise ValueError(f"Page {self.pageno}: vertical field cannot be valid without being built")
        if hvalid and not self.hsuccess:
            raise ValueError(f"Page {self.pageno}: horizontal field cannot be valid without being built")
        if hvalid and not vvalid:
            raise ValueError(f"Page {self.pageno}: horizontal field cannot be valid without the vertical")

        if self.vsuccess:
            self._vstatus = FieldStatus.VALID if vvalid else FieldStatus.INVALID
        if self.hsuccess:
            self._hstatus = FieldStatus.VALID if hvalid else FieldStatus.INVALID

    def validity(self) -> Tuple[bool, bool]:
        return self.vvalid, self.hvalid

    # ----- full resolution -----

    def populate_full_res(self,
                          width: Optional[int] = None,
                          height: Optional[int] = None) -> None:
        """
        Compute and keep full resolution versions of the built fields.

        Expansion uses a stride of ``sampling * redfactor`` and scales the
        displacements by ``redfactor``, so that a model built on a 2x
        reduced page applies to the full size page.

        Args:
            width: Target width; defaults to ``w * redfactor``
            height: Target height; defaults to ``h * redfactor``
        """
        width = self.w * self.redfactor if width is None else width
        height = self.h * self.redfactor if height is None else height
        factor = self.sampling * self.redfactor
        for field in (self._vertical, self._slope):
            if field is not None:
                field.full = field.expand(factor, width, height, multiplier=self.redfactor)
        if self._horizontal is not None:
            self._horizontal.full = self._horizontal.expand(
                factor, width, height,
                multiplier=self.redfactor,
                slope_source=self._slope,
            )

    # ----- persistence -----

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pageno': self.pageno,
            'w': self.w,
            'h': self.h,
            'sampling': self.sampling,
            'redfactor': self.redfactor,
            'refpage': -1 if self._refpage is None else self._refpage,
            'vstatus': self._vstatus.value,
            'hstatus': self._hstatus.value,
            'ystatus': self._ystatus.value,
            'fields': {
                field.kind.value: field.to_dict()
                for field in (self._vertical, self._horizontal, self._slope)
                if field is not None
            },
            'midys': np.asarray(self.midys, dtype=np.float64),
            'curvatures': np.asarray(self.curvatures, dtype=np.float64),
            'nlines': self.nlines,
            'mincurv': self.mincurv,
            'maxcurv': self.maxcurv,
            'leftslope': self.leftslope,
            'rightslope': self.rightslope,
            'leftcurv': self.leftcurv,
            'rightcurv': self.rightcurv,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageModel':
        if data['refpage'] >= 0:
            return cls.reference(data['pageno'], data['refpage'], data['sampling'], data['redfactor'])

        model = cls(data['pageno'], data['w'], data['h'], data['sampling'], data['redfactor'])
        for field_data in data['fields'].values():
            model.set_field(DisparityField.from_dict(field_data))
        # Statuses for absent fields (failed or never attempted) are kept as stored
        model._vstatus = FieldStatus(data['vstatus'])
        model._hstatus = FieldStatus(data['hstatus'])
        model._ystatus = FieldStatus(data['ystatus'])
        for status, field in ((model._vstatus, model._vertical),
                              (model._hstatus, model._horizontal),
                              (model._ystatus, model._slope)):
            if status.has_field != (field is not None):
                raise ValueError(f"Inconsistent stored status {status.value} for page {model.pageno}")
        if model.hvalid and not model.vvalid:
            raise ValueError(f"Inconsistent stored validity for page {model.pageno}")

        model.midys = np.asarray(data['midys'], dtype=np.float64)
        model.curvatures = np.asarray(data['curvatures'], dtype=np.float64)
        for name in ('nlines', 'mincurv', 'maxcurv', 'leftslope',
                     'rightslope', 'leftcurv', 'rightcurv'):
            setattr(model, name, int(data[name]))
        return model

    def __repr__(self) -> str:
        if self.hasref:
            return f"PageModel(pageno={self.pageno}, refpage={self._refpage})"
        return (f"PageModel(pageno={self.pageno}, w={self.w}, h={self.h}, "
                f"nlines={self.nlines}, vstatus={self._vstatus.value}, "
                f"hstatus={self._hstatus.value})")
