"""Typed outcomes for retrieval operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Why one unit of work (file, frame, resource) was skipped."""

    RESOLUTION = "resolution"
    PARSE = "parse"
    DECODE = "decode"
    OUT_OF_RANGE = "out_of_range"
    INTERNAL = "internal"


class RetrievalStatus(str, Enum):
    """Terminal outcome of a retrieval request."""

    RETRIEVED = "retrieved"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class Failure:
    """A contained failure, kept for diagnostics and tests."""

    kind: FailureKind
    source: str
    reason: str


@dataclass
class RetrievalResult:
    """Payload plus status and the failures contained while building it."""

    status: RetrievalStatus
    payload: Any = None
    failures: list[Failure] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status == RetrievalStatus.RETRIEVED

    def failure_kinds(self) -> set[FailureKind]:
        return {failure.kind for failure in self.failures}

    @classmethod
    def retrieved(cls, payload: Any, failures: list[Failure] | None = None) -> "RetrievalResult":
        return cls(RetrievalStatus.RETRIEVED, payload, list(failures or []))

    @classmethod
    def not_found(cls, failures: list[Failure] | None = None) -> "RetrievalResult":
        return cls(RetrievalStatus.NOT_FOUND, None, list(failures or []))

    @classmethod
    def failed(cls, failures: list[Failure] | None = None) -> "RetrievalResult":
        return cls(RetrievalStatus.FAILED, None, list(failures or []))

    @classmethod
    def from_items(cls, items: list, failures: list[Failure] | None = None) -> "RetrievalResult":
        """Retrieved when ``items`` is non-empty, otherwise not found."""
        if not items:
            return cls.not_found(failures)
        return cls.retrieved(items, failures)
