"""
Exception types raised by the occurrence pipeline.
"""


class OccurrenceError(Exception):
    """Base class for all pipeline errors."""


class MalformedRecord(OccurrenceError, ValueError):
    """A single input row could not be coerced into a record.

    Loaders catch this, count it and skip the row.
    """

    def __init__(self, message: str, record_id: str | None = None):
        super().__init__(message)
        self.record_id = record_id


class ModelError(OccurrenceError, ValueError):
    """The modeling step cannot produce a model from the given data."""


class InsufficientData(ModelError):
    """Fewer usable observations than predictors."""


class DegenerateTarget(ModelError):
    """The regression target has zero variance."""


class MissingExternalResource(OccurrenceError, FileNotFoundError):
    """A raster or reference file needed by the run is unavailable."""
