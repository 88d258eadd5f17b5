"""Exceptions raised by the metadata synchronizer."""


class MetasyncError(Exception):
    """Base class for metasync errors."""


class AVUNotFoundError(MetasyncError, LookupError):
    """No AVU row exists for the requested id."""


class AmbiguousAVUError(MetasyncError):
    """More than one AVU row was returned where exactly one was expected."""


class NoMetadataError(MetasyncError):
    """An object has no AVUs at all.

    Not a fault: callers treat it as a signal to remove the object's document.
    """


class DataIntegrityError(MetasyncError):
    """A metadata bundle is internally inconsistent (mixed targets, orphaned nested AVUs)."""


class SearchIndexError(MetasyncError):
    """A request to the search index failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
