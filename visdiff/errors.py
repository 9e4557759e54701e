"""Exception hierarchy for visdiff."""

from __future__ import annotations

from typing import Any


class VisDiffError(Exception):
    """Base class for all visdiff errors."""


class ConfigurationError(VisDiffError):
    """Raised when a configuration file cannot be loaded or fails validation."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class CaptureError(VisDiffError):
    """A screenshot came back empty or unreadable.

    Navigation and timeout failures keep the underlying Playwright error type.
    """


class ComparisonError(VisDiffError):
    """A single image pair could not be compared (decode failure, missing baseline)."""


class BrowserProcessError(VisDiffError):
    """The headless browser could not be launched or is unavailable."""


class StorageError(VisDiffError):
    """Filesystem persistence failed for a reason other than a missing baseline."""


def describe_error(error: BaseException) -> str:
    """Render an exception as ``"TypeName: message"`` for storing on results."""
    message = str(error).strip()
    name = type(error).__name__
    return f"{name}: {message}" if message else name
