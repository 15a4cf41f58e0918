"""
textdewarp - Dewarps scanned book pages from the curvature of their text lines
"""

from textdewarp.__version__ import __version__
from textdewarp.core.builder import PageModelBuilder
from textdewarp.core.pipeline import (
    DocumentDewarpPipeline,
    RenderPipeline,
    RenderPlan,
    dewarp_single_page,
)
from textdewarp.core.validity import Thresholds, ValidityChecker
from textdewarp.exceptions import (
    ConfigurationError,
    DewarpError,
    InvalidImageError,
    ModelsNotReadyError,
    VersionMismatchError,
)
from textdewarp.models import (
    DisparityField,
    DisparityKind,
    FieldStatus,
    ModelCollection,
    PageModel,
    get_collection,
)

__all__ = [
    "DocumentDewarpPipeline",
    "RenderPipeline",
    "RenderPlan",
    "dewarp_single_page",
    "PageModelBuilder",
    "ValidityChecker",
    "Thresholds",
    "ModelCollection",
    "PageModel",
    "DisparityField",
    "DisparityKind",
    "FieldStatus",
    "get_collection",
    "DewarpError",
    "InvalidImageError",
    "ConfigurationError",
    "ModelsNotReadyError",
    "VersionMismatchError",
    "__version__",
]
