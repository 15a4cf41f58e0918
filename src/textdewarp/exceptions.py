"""Exception types raised by the dewarping engine.

Model-unavailable outcomes (too few text lines, thresholds exceeded, no
reference page in range) are not errors; they are recorded as statuses on
the page models. Only bad input, bad configuration and sequencing mistakes
raise.
"""


class DewarpError(Exception):
    """Base class for all textdewarp errors."""


class InvalidImageError(DewarpError, ValueError):
    """Raised when an input image is missing or has the wrong depth."""


class ConfigurationError(DewarpError, ValueError):
    """Raised when a parameter or threshold is out of range."""


class ModelsNotReadyError(DewarpError, RuntimeError):
    """Raised when rendering is requested before references are resolved."""


class VersionMismatchError(DewarpError, ValueError):
    """Raised when a persisted model carries an unsupported version tag."""

    def __init__(self, found, expected):
        super().__init__(f"Unsupported model version {found} (expected {expected})")
        self.found = found
        self.expected = expected
