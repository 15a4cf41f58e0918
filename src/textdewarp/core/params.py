"""Defaults and range checks for model building parameters."""

from textdewarp.exceptions import ConfigurationError

DEFAULT_SAMPLING = 30
MIN_SAMPLING = 8
DEFAULT_MIN_LINES = 15
MIN_MIN_LINES = 4
DEFAULT_MAX_REF_DIST = 16
DEFAULT_USE_BOTH = True
DEFAULT_CHECK_COLUMNS = False


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_build_config(sampling: int, redfactor: int, minlines: int) -> None:
    """Reject out-of-range build parameters."""
    if not _is_int(sampling) or sampling < MIN_SAMPLING:
        raise ConfigurationError(f"sampling must be an integer >= {MIN_SAMPLING}, got {sampling!r}")
    if not _is_int(redfactor) or redfactor not in (1, 2):
        raise ConfigurationError(f"redfactor must be 1 or 2, got {redfactor!r}")
    if not _is_int(minlines) or minlines < MIN_MIN_LINES:
        raise ConfigurationError(f"minlines must be an integer >= {MIN_MIN_LINES}, got {minlines!r}")


def check_maxdist(maxdist: int) -> None:
    if not _is_int(maxdist) or maxdist < 0:
        raise ConfigurationError(f"maxdist must be a non-negative integer, got {maxdist!r}")
