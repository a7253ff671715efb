from typing import Optional


class ComicGenError(Exception):
    """Base class for every error raised by the comic pipeline."""

    def __init__(self, message: str, panel_index: Optional[int] = None):
        super().__init__(message)
        self.panel_index = panel_index


class PlanFormatError(ComicGenError):
    """The plan response held no usable JSON document with a panels array."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class ConfigError(ComicGenError, ValueError):
    """An option value is missing, malformed or unrecognized."""


class ServiceError(ComicGenError):
    """An upstream generation request failed or returned a non-success status."""


class PanelTimeoutError(ServiceError):
    """An image request for a single panel did not finish in time."""


class FetchError(ComicGenError):
    """An externally hosted image result could not be downloaded."""

    def __init__(self, message: str, uri: str = "", panel_index: Optional[int] = None):
        super().__init__(message, panel_index=panel_index)
        self.uri = uri


class NoImageReturnedError(ComicGenError):
    """A generation response contained no usable image bytes."""
