"""Exceptions raised by the retrieval services.

All of them are contained by the caller at the smallest enclosing unit
(one file, one frame, one resource) and recorded as a ``Failure``.
"""

from app.services.results import FailureKind


class DicomParseError(ValueError):
    """A candidate file could not be parsed as a DICOM instance."""


class CatalogResolutionError(ValueError):
    """A resource catalog exists but could not be read or resolved."""


class FrameUnavailableError(ValueError):
    """A requested frame could not be produced."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.DECODE):
        super().__init__(message)
        self.kind = kind
