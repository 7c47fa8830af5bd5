from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional


def location_key(path: str, line: int, column: int) -> str:
    return f"{path}:{line}:{column}"


@dataclass(frozen=True)
class RuntimeLocation:
    url: str
    line: int
    column: int

    @property
    def key(self) -> str:
        return location_key(self.url, self.line, self.column)

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class SourceLocation:
    path: str
    line: int
    column: int

    @property
    def key(self) -> str:
        return location_key(self.path, self.line, self.column)

    def __str__(self) -> str:
        return self.key


class ResolutionStatus(enum.Enum):
    RESOLVED = "resolved"
    NOT_INSTRUMENTED = "not_instrumented"
    FAILED = "failed"


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    location: Optional[SourceLocation] = None

    @classmethod
    def resolved(cls, location: SourceLocation) -> "Resolution":
        return cls(ResolutionStatus.RESOLVED, location)

    @classmethod
    def not_instrumented(cls) -> "Resolution":
        return cls(ResolutionStatus.NOT_INSTRUMENTED)

    @classmethod
    def failed(cls) -> "Resolution":
        return cls(ResolutionStatus.FAILED)

    @property
    def ok(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED


@dataclass
class ViolationRecord:
    """One distinct offending location and every occurrence seen for it.

    The record is keyed on its runtime triple until a source location is
    attached; after that ``key`` reports the original-source triple. The
    collector always indexes on ``runtime_key`` so later sightings of the same
    runtime location still merge into this record.
    """

    runtime: RuntimeLocation
    source: Optional[SourceLocation] = None
    evidence: List[str] = field(default_factory=list)

    @property
    def runtime_key(self) -> str:
        return self.runtime.key

    @property
    def key(self) -> str:
        if self.source is not None:
            return self.source.key
        return self.runtime.key

    @property
    def count(self) -> int:
        return len(self.evidence)

    @property
    def resolved(self) -> bool:
        return self.source is not None

    def add_occurrence(self, evidence: str) -> None:
        self.evidence.append(evidence)

    def attach(self, resolution: Resolution) -> None:
        if resolution.ok:
            self.source = resolution.location

    def location_equals(self, other: SourceLocation) -> bool:
        if self.source is not None:
            return self.source == other
        return (self.runtime.url, self.runtime.line, self.runtime.column) == (other.path, other.line, other.column)

    def __str__(self) -> str:
        samples = "\n".join(self.evidence)
        return f"source: {self.key}, violations: [{samples}]"
