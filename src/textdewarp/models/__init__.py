from typing import Dict, Any

# Base components
from .base import MODEL_VERSION, PersistentRecord

# Core model components
from .disparity import DisparityField, DisparityKind, add_slope_border
from .page import FieldStatus, PageModel, grid_size
from .collection import DEFAULT_CACHE_SIZE, ModelCollection

from textdewarp.core.validity import Thresholds

# Available collection configurations
COLLECTION_CONFIGS: Dict[str, Dict[str, Any]] = {
    'default': {
        'sampling': 30,
        'redfactor': 1,
        'minlines': 15,
        'maxdist': 16,
    },
    'reduced': {
        'sampling': 15,
        'redfactor': 2,
        'minlines': 15,
        'maxdist': 16,
    },
    'strict': {
        'sampling': 30,
        'redfactor': 1,
        'minlines': 20,
        'maxdist': 8,
        'thresholds': {
            'max_linecurv': 100,
            'max_diff_linecurv': 120,
            'max_edgeslope': 50,
            'max_edgecurv': 30,
            'max_diff_edgecurv': 25,
        },
    },
    'lenient': {
        'sampling': 30,
        'redfactor': 1,
        'minlines': 8,
        'maxdist': 24,
        'thresholds': {
            'max_linecurv': 250,
            'max_diff_linecurv': 300,
            'max_edgeslope': 120,
            'max_edgecurv': 80,
            'max_diff_edgecurv': 60,
        },
    },
}


def _make_collection(config: Dict[str, Any]) -> ModelCollection:
    config = dict(config)
    thresholds = config.pop('thresholds', None)
    if isinstance(thresholds, dict):
        thresholds = Thresholds(**thresholds)
    return ModelCollection(thresholds=thresholds, **config)


def get_collection(preset: str = 'default', **kwargs: Any) -> ModelCollection:
    """
    Factory function to create a model collection from a named preset.

    Args:
        preset: Name of the configuration preset
        **kwargs: Overrides of the preset's parameters; ``thresholds`` may be
            a dict of individual threshold overrides

    Returns:
        Empty model collection

    Raises:
        ValueError: If preset is not recognized
    """
    if preset not in COLLECTION_CONFIGS:
        raise ValueError(f"Unknown preset: {preset}")

    # Get base configuration
    config = {k: (dict(v) if isinstance(v, dict) else v)
              for k, v in COLLECTION_CONFIGS[preset].items()}

    # Update with any provided kwargs
    overrides = kwargs.pop('thresholds', None)
    config.update(kwargs)
    if isinstance(overrides, Thresholds):
        config['thresholds'] = overrides
    elif overrides:
        config.setdefault('thresholds', {}).update(overrides)

    return _make_collection(config)


def list_available_presets() -> Dict[str, Dict[str, Any]]:
    """
    Get information about available presets.

    Returns:
        Dictionary containing preset configurations
    """
    return {name: dict(config) for name, config in COLLECTION_CONFIGS.items()}


class CollectionBuilder:
    """Builder class for creating and configuring model collections."""

    def __init__(self):
        self._config = None

    def select_preset(self, preset: str) -> 'CollectionBuilder':
        """Select the preset to start from."""
        if preset not in COLLECTION_CONFIGS:
            raise ValueError(f"Unknown preset: {preset}")

        self._config = {k: (dict(v) if isinstance(v, dict) else v)
                        for k, v in COLLECTION_CONFIGS[preset].items()}
        return self

    def set_config(self, **kwargs: Any) -> 'CollectionBuilder':
        """Set configuration parameters."""
        if self._config is None:
            raise ValueError("No preset selected")
        thresholds = kwargs.pop('thresholds', None)
        self._config.update(kwargs)
        if thresholds:
            self._config.setdefault('thresholds', {}).update(thresholds)
        return self

    def build(self) -> ModelCollection:
        """Build and return the configured collection."""
        if self._config is None:
            raise ValueError("No preset selected")

        return _make_collection(self._config)


__all__ = [
    # Records
    'PersistentRecord',
    'PageModel',
    'ModelCollection',
    'DisparityField',

    # Enums and helpers
    'DisparityKind',
    'FieldStatus',
    'Thresholds',
    'add_slope_border',
    'grid_size',

    # Constants
    'MODEL_VERSION',
    'DEFAULT_CACHE_SIZE',
    'COLLECTION_CONFIGS',

    # Factory functions
    'get_collection',
    'list_available_presets',
    'CollectionBuilder',
]
