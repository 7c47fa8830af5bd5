from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Union

from .models import SourceLocation, ViolationRecord
from .normalize import strip_ansi
from .patterns import ANALYZER_LOCATION_RX
from .report import render_report

TRUSTED_TYPES_ERROR = "TS21228"
ANALYZER_NAME = "tsec"


def read_analyzer_output(path: Path) -> bytes:
    return path.read_bytes()


def parse_analyzer_output(data: Union[bytes, str], code: str = TRUSTED_TYPES_ERROR) -> List[SourceLocation]:
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    locations: List[SourceLocation] = []
    for line in text.splitlines():
        if code not in line:
            continue
        match = ANALYZER_LOCATION_RX.match(strip_ansi(line))
        if not match:
            continue
        locations.append(
            SourceLocation(
                path=match.group("path"),
                line=int(match.group("line")),
                column=int(match.group("column")),
            )
        )
    return locations


def find_missed(
    analyzer_output: Union[bytes, str],
    known: Sequence[ViolationRecord],
    code: str = TRUSTED_TYPES_ERROR,
) -> List[ViolationRecord]:
    reported = parse_analyzer_output(analyzer_output, code)
    return [record for record in known if not any(record.location_equals(loc) for loc in reported)]


def render_missed(missed: Sequence[ViolationRecord]) -> List[str]:
    return render_report(missed, count=len(missed), suffix=f"not found by {ANALYZER_NAME}")
