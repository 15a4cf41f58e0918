"""Page-indexed collection of dewarp models with shared configuration."""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from textdewarp.core.imaging import ImageLike
from textdewarp.core.params import (
    DEFAULT_CHECK_COLUMNS,
    DEFAULT_MAX_REF_DIST,
    DEFAULT_MIN_LINES,
    DEFAULT_SAMPLING,
    DEFAULT_USE_BOTH,
    check_build_config,
    check_maxdist,
)
from textdewarp.core.validity import Thresholds, ValidityChecker, check_threshold
from textdewarp.exceptions import ConfigurationError

from .base import PersistentRecord
from .page import PageModel

if TYPE_CHECKING:
    from textdewarp.core.builder import PageModelBuilder

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 64
INITIAL_CAPACITY = 16


class ModelCollection(PersistentRecord):
    """
    Holds the page models of a document, indexed by page number.

    Building produces actual models. :meth:`resolve_references` then
    validates them, sets invalid ones aside in a bounded LRU cache, and
    gives every page without a valid model a redirect to the nearest valid
    page of the same parity within ``maxdist``. Rendering is refused until
    that pass has run.

    ``sampling``, ``redfactor`` and ``maxdist`` are fixed for the lifetime
    of the collection; every model in it shares the first two.
    """

    record_type = 'model_collection'

    def __init__(self,
                 sampling: int = DEFAULT_SAMPLING,
                 redfactor: int = 1,
                 minlines: int = DEFAULT_MIN_LINES,
                 maxdist: int = DEFAULT_MAX_REF_DIST,
                 useboth: bool = DEFAULT_USE_BOTH,
                 check_columns: bool = DEFAULT_CHECK_COLUMNS,
                 thresholds: Optional[Thresholds] = None,
                 cache_size: int = DEFAULT_CACHE_SIZE):
        check_build_config(sampling, redfactor, minlines)
        check_maxdist(maxdist)
        if isinstance(cache_size, bool) or not isinstance(cache_size, int) or cache_size < 0:
            raise ConfigurationError(f"cache_size must be a non-negative integer, got {cache_size!r}")

        self._sampling = sampling
        self._redfactor = redfactor
        self._maxdist = maxdist
        self._minlines = minlines
        self._useboth = bool(useboth)
        self._check_columns = bool(check_columns)
        self._thresholds = thresholds or Thresholds()
        self.cache_size = cache_size

        self._models: List[Optional[PageModel]] = [None] * INITIAL_CAPACITY
        self._cache: 'OrderedDict[int, PageModel]' = OrderedDict()
        self._maxpage = -1
        self._npages = 0
        self.namodels: List[int] = []
        self.napages: List[int] = []
        self._models_ready = False
        self._lock = threading.Lock()

    # ----- fixed configuration -----

    @property
    def sampling(self) -> int:
        return self._sampling

    @property
    def redfactor(self) -> int:
        return self._redfactor

    @property
    def maxdist(self) -> int:
        return self._maxdist

    @property
    def nalloc(self) -> int:
        """Capacity of the page-indexed storage."""
        return len(self._models)

    @property
    def maxpage(self) -> int:
        """Highest page number holding a model, or -1 when empty."""
        return self._maxpage

    @property
    def models_ready(self) -> bool:
        return self._models_ready

    @property
    def npages(self) -> int:
        """
        Number of pages in the document; references are resolved for pages
        0 to ``npages - 1``. Inserting a model extends it; removing models
        or setting them aside never shrinks it.
        """
        return max(self._npages, self._maxpage + 1)

    @npages.setter
    def npages(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigurationError(f"npages must be a non-negative integer, got {value!r}")
        self._npages = value

    # ----- settable configuration -----

    @property
    def minlines(self) -> int:
        return self._minlines

    @minlines.setter
    def minlines(self, value: int) -> None:
        check_build_config(self._sampling, self._redfactor, value)
        self._minlines = value

    @property
    def useboth(self) -> bool:
        return self._useboth

    @useboth.setter
    def useboth(self, value: bool) -> None:
        self._useboth = bool(value)

    @property
    def check_columns(self) -> bool:
        return self._check_columns

    @check_columns.setter
    def check_columns(self, value: bool) -> None:
        self._check_columns = bool(value)

    @property
    def thresholds(self) -> Thresholds:
        """Current thresholds (a copy; use the setters to change them)."""
        return Thresholds(**self._thresholds.to_dict())

    def set_curvatures(self, **kwargs: int) -> None:
        """
        Set one or more validity thresholds.

        Args:
            **kwargs: Any of max_linecurv, min_diff_linecurv, max_diff_linecurv,
                max_edgeslope, max_edgecurv, max_diff_edgecurv

        Raises:
            ConfigurationError: For unknown names or out-of-range values
        """
        values = self._thresholds.to_dict()
        for name, value in kwargs.items():
            if name not in values:
                raise ConfigurationError(f"Unknown threshold: {name}")
            values[name] = check_threshold(name, value)
        self._thresholds = Thresholds(**values)

    def _threshold_property(name: str):
        def getter(self) -> int:
            return getattr(self._thresholds, name)

        def setter(self, value: int) -> None:
            self.set_curvatures(**{name: value})

        return property(getter, setter, doc=f"Validity threshold {name}")

    max_linecurv = _threshold_property('max_linecurv')
    min_diff_linecurv = _threshold_property('min_diff_linecurv')
    max_diff_linecurv = _threshold_property('max_diff_linecurv')
    max_edgeslope = _threshold_property('max_edgeslope')
    max_edgecurv = _threshold_property('max_edgecurv')
    max_diff_edgecurv = _threshold_property('max_diff_edgecurv')
    del _threshold_property

    def create_builder(self, **kwargs: Any) -> 'PageModelBuilder':
        """Return a builder configured like this collection."""
        from textdewarp.core.builder import PageModelBuilder

        return PageModelBuilder(
            sampling=self._sampling,
            redfactor=self._redfactor,
            minlines=self._minlines,
            **kwargs
        )

    def create_checker(self) -> ValidityChecker:
        return ValidityChecker(self.thresholds)

    # ----- storage -----

    def _ensure_capacity(self, pageno: int) -> None:
        while pageno >= len(self._models):
            self._models.extend([None] * len(self._models))

    def insert_model(self, model: PageModel) -> None:
        """
        Insert a page model, replacing any model already held for its page.

        If references have already been resolved, the model is validated
        on insertion so that pages redirected to it see it immediately.

        Raises:
            ConfigurationError: If the model's sampling or redfactor differs
                from the collection's
        """
        if model.sampling != self._sampling or model.redfactor != self._redfactor:
            raise ConfigurationError(
                f"Model for page {model.pageno} has sampling={model.sampling}, "
                f"redfactor={model.redfactor}; collection uses "
                f"sampling={self._sampling}, redfactor={self._redfactor}"
            )

        with self._lock:
            pageno = model.pageno
            self._ensure_capacity(pageno)
            old = self._models[pageno]
            if old is not None and old is not model:
                old._attach(None)
            self._cache.pop(pageno, None)
            self._models[pageno] = model
            model._attach(self)
            self._maxpage = max(self._maxpage, pageno)
            self._npages = max(self._npages, pageno + 1)
            if self._models_ready and not model.hasref:
                self.create_checker().validate(model)
            self._list_pages()

    def get_model(self, pageno: int) -> Optional[PageModel]:
        """Return the model held for a page (actual or reference), if any."""
        if pageno < 0 or pageno > self._maxpage:
            return None
        return self._models[pageno]

    def remove_model(self, pageno: int) -> Optional[PageModel]:
        """Remove and return the model for a page, from storage or cache."""
        with self._lock:
            model = self.get_model(pageno)
            if model is not None:
                self._models[pageno] = None
            else:
                model = self._cache.pop(pageno, None)
            if model is not None:
                model._attach(None)
            self._update_maxpage()
            self._list_pages()
            return model

    def _update_maxpage(self) -> None:
        self._maxpage = -1
        for pageno in range(len(self._models) - 1, -1, -1):
            if self._models[pageno] is not None:
                self._maxpage = pageno
                break

    def _list_pages(self) -> None:
        self.namodels = []
        self.napages = []
        for pageno in range(self._maxpage + 1):
            model = self._models[pageno]
            if model is None:
                continue
            self.napages.append(pageno)
            if not model.hasref:
                self.namodels.append(pageno)

    def list_pages(self) -> None:
        """Rebuild ``namodels`` and ``napages``."""
        with self._lock:
            self._list_pages()

    def models(self) -> List[PageModel]:
        """All models held in storage, in page order."""
        return [m for m in self._models[:self._maxpage + 1] if m is not None]

    # ----- cache -----

    @property
    def cached_pages(self) -> List[int]:
        """Page numbers in the cache, least recently used first."""
        return list(self._cache.keys())

    def get_cached_model(self, pageno: int) -> Optional[PageModel]:
        """Return a model set aside in the cache, marking it recently used."""
        model = self._cache.get(pageno)
        if model is not None:
            self._cache.move_to_end(pageno)
        return model

    def _cache_model(self, model: PageModel) -> None:
        if self.cache_size == 0:
            model._attach(None)
            logger.debug(f"Dropped invalid model for page {model.pageno} (cache disabled)")
            return
        self._cache[model.pageno] = model
        self._cache.move_to_end(model.pageno)
        while len(self._cache) > self.cache_size:
            evicted_page, evicted = self._cache.popitem(last=False)
            evicted._attach(None)
            logger.debug(f"Evicted cached model for page {evicted_page}")

    # ----- building -----

    def build_model(self, image: ImageLike, pageno: int, debug: bool = False) -> PageModel:
        """Build a model for one page and insert it."""
        model = self.create_builder().build(image, pageno, debug=debug)
        self.insert_model(model)
        return model

    # ----- validation and references -----

    def set_valid_models(self, notests: bool = False) -> None:
        """Run the validity checker over every actual model in storage."""
        checker = self.create_checker()
        for model in self.models():
            if not model.hasref:
                checker.validate(model, notests=notests)

    def _strip_references(self) -> None:
        for pageno in range(self._maxpage + 1):
            model = self._models[pageno]
            if model is not None and model.hasref:
                model._attach(None)
                self._models[pageno] = None
        self._update_maxpage()

    def strip_references(self) -> None:
        """Remove all reference models; rendering must wait for a new resolve."""
        with self._lock:
            self._strip_references()
            self._models_ready = False
            self._list_pages()

    def _restore_cached(self) -> None:
        for pageno, model in list(self._cache.items()):
            self._ensure_capacity(pageno)
            if self._models[pageno] is None:
                self._models[pageno] = model
                model._attach(self)
            else:
                model._attach(None)
        self._cache.clear()

    def resolve_references(self, notests: bool = False, npages: Optional[int] = None) -> None:
        """
        Validate models and redirect pages without a valid model.

        Models set aside by an earlier call are brought back and checked
        again, so a change of thresholds or of ``notests`` takes effect.
        For each page from 0 to ``npages - 1`` that has no valid vertical
        model, the nearest page of the same parity within ``maxdist`` that
        has one becomes its reference; equidistant candidates resolve to
        the lower page. Pages with no candidate are left without a model.

        Args:
            notests: Treat every built field as valid
            npages: Number of pages in the document; extends ``npages``
        """
        if npages is not None:
            current = self._npages
            self.npages = npages
            self._npages = max(self._npages, current)

        with self._lock:
            self._strip_references()
            self._restore_cached()
            checker = self.create_checker()

            npages = self.npages
            self._ensure_capacity(max(npages - 1, 0))
            for pageno in range(npages):
                model = self._models[pageno]
                if model is None:
                    continue
                checker.validate(model, notests=notests)
                if not model.vvalid:
                    self._models[pageno] = None
                    self._cache_model(model)

            valid = [[], []]
            for pageno in range(npages):
                if self._models[pageno] is not None:
                    valid[pageno % 2].append(pageno)

            for pageno in range(npages):
                if self._models[pageno] is not None:
                    continue
                refpage = self._nearest(pageno, valid[pageno % 2])
                if refpage is None:
                    continue
                ref = PageModel.reference(pageno, refpage, self._sampling, self._redfactor)
                ref._attach(self)
                self._models[pageno] = ref
                logger.debug(f"Page {pageno} uses the model of page {refpage}")

            self._update_maxpage()
            self._list_pages()
            self._models_ready = True
        logger.info(
            f"References resolved: {len(self.namodels)} valid models, "
            f"{len(self.napages) - len(self.namodels)} reference pages"
        )

    def _nearest(self, pageno: int, candidates: List[int]) -> Optional[int]:
        best, bestdist = None, self._maxdist + 1
        # Candidates are ascending, so strict comparison keeps the lower page on ties
        for candidate in candidates:
            dist = abs(pageno - candidate)
            if dist < bestdist:
                best, bestdist = candidate, dist
        return best

    def restore_models(self) -> None:
        """Undo :meth:`resolve_references`: strip redirects and restore cached models."""
        with self._lock:
            self._strip_references()
            self._restore_cached()
            self._update_maxpage()
            self._list_pages()
            self._models_ready = False

    def reference_for(self, pageno: int) -> Optional[int]:
        """Return the reference page of a redirected page, else None."""
        model = self.get_model(pageno)
        return model.refpage if model is not None else None

    def effective_model(self, pageno: int) -> Optional[PageModel]:
        """
        Return the model to render a page with.

        This is the page's own model if its vertical field is valid,
        otherwise the model of its reference page if that one is valid.
        """
        model = self.get_model(pageno)
        if model is None:
            return None
        if model.hasref:
            donor = self.get_model(model.refpage)
            if donor is None or donor.hasref or not donor.vvalid:
                return None
            return donor
        return model if model.vvalid else None

    # ----- reporting -----

    def model_stats(self) -> Dict[str, int]:
        """
        Count models by outcome.

        Returns:
            Dictionary with the number of actual models (``nmodels``),
            models with a vertical / horizontal field (``nvsuccess``,
            ``nhsuccess``), valid ones (``nvvalid``, ``nhvalid``),
            reference models (``nref``) and cached models (``ncached``)
        """
        actual = [m for m in self.models() if not m.hasref] + list(self._cache.values())
        return {
            'nmodels': len(actual),
            'nvsuccess': sum(m.vsuccess for m in actual),
            'nvvalid': sum(m.vvalid for m in actual),
            'nhsuccess': sum(m.hsuccess for m in actual),
            'nhvalid': sum(m.hvalid for m in actual),
            'nref': sum(m.hasref for m in self.models()),
            'ncached': len(self._cache),
        }

    def info(self) -> str:
        """Generate a string summary of the collection."""
        lines = [
            "\nModel collection summary:",
            f"sampling = {self._sampling}, redfactor = {self._redfactor}, "
            f"minlines = {self._minlines}, maxdist = {self._maxdist}",
            f"useboth = {self._useboth}, check_columns = {self._check_columns}, "
            f"models ready = {self._models_ready}",
            f"thresholds: {self._thresholds.to_dict()}",
            f"maxpage = {self._maxpage}, nalloc = {self.nalloc}",
        ]
        for model in self.models():
            if model.hasref:
                lines.append(f"page {model.pageno}: reference to page {model.refpage}")
            else:
                lines.append(
                    f"page {model.pageno}: nlines = {model.nlines}, "
                    f"vertical = {model.vstatus.value}, horizontal = {model.hstatus.value}"
                )
        return "\n".join(lines)

    # ----- persistence -----

    def to_dict(self) -> Dict[str, Any]:
        actual = [m for m in self.models() if not m.hasref] + list(self._cache.values())
        return {
            'sampling': self._sampling,
            'redfactor': self._redfactor,
            'minlines': self._minlines,
            'maxdist': self._maxdist,
            'useboth': self._useboth,
            'check_columns': self._check_columns,
            'cache_size': self.cache_size,
            'npages': self._npages,
            'thresholds': self._thresholds.to_dict(),
            'models': [m.to_dict() for m in sorted(actual, key=lambda m: m.pageno)],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModelCollection':
        """Rebuild a collection; references must be resolved again."""
        collection = cls(
            sampling=data['sampling'],
            redfactor=data['redfactor'],
            minlines=data['minlines'],
            maxdist=data['maxdist'],
            useboth=data['useboth'],
            check_columns=data['check_columns'],
            thresholds=Thresholds(**data['thresholds']),
            cache_size=data['cache_size'],
        )
        for model_data in data['models']:
            collection.insert_model(PageModel.from_dict(model_data))
        collection.npages = max(data.get('npages', 0), collection.npages)
        return collection

    def __len__(self) -> int:
        return len(self.napages)

    def __repr__(self) -> str:
        return (f"ModelCollection(sampling={self._sampling}, redfactor={self._redfactor}, "
                f"maxdist={self._maxdist}, pages={self.napages})")
