from __future__ import annotations

import enum
import json
from typing import Dict, Iterator, List, Mapping, Optional, Union

from .console import RichLogger, quiet_logger
from .models import RuntimeLocation, ViolationRecord
from .normalize import positive_int

LEGACY_ENVELOPE = "csp-report"
REPORTING_API_TYPE = "csp-violation"

# report-uri (legacy) and Reporting API field names for the same data.
LEGACY_FIELDS = ("source-file", "line-number", "column-number", "script-sample")
REPORTING_FIELDS = ("sourceFile", "lineNumber", "columnNumber", "sample")

RawPayload = Union[str, bytes, Mapping, list]


class EvidenceField(enum.Enum):
    SAMPLE = "sample"
    REPORT = "report"


class ViolationCollector:
    """Deduplicate raw violation reports into one record per runtime location.

    ``ingest`` is synchronous and builds a record completely before inserting
    it, so callers on a single event loop never observe partial records.
    """

    def __init__(self, evidence_field: EvidenceField = EvidenceField.SAMPLE, logger: Optional[RichLogger] = None):
        self.evidence_field = evidence_field
        self.logger = logger or quiet_logger()
        self._records: Dict[str, ViolationRecord] = {}
        self.skipped = 0

    def ingest(self, raw_payload: RawPayload) -> None:
        reports = list(self._iter_reports(raw_payload))
        if not reports:
            self.skipped += 1
            self.logger.debug("Skipping payload without a violation report")
            return
        for report, fields in reports:
            self._ingest_report(report, fields)

    def _ingest_report(self, report: Mapping, fields: tuple) -> None:
        source_field, line_field, column_field, sample_field = fields
        url = report.get(source_field)
        line = positive_int(report.get(line_field))
        column = positive_int(report.get(column_field))
        if not isinstance(url, str) or not url or line is None or column is None:
            self.skipped += 1
            self.logger.debug(f"Skipping report without a usable location: {url!r}:{line}:{column}")
            return

        if self.evidence_field is EvidenceField.REPORT:
            evidence = json.dumps(report, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
        else:
            sample = report.get(sample_field)
            evidence = sample if isinstance(sample, str) else ""

        location = RuntimeLocation(url=url, line=line, column=column)
        record = self._records.get(location.key)
        if record is None:
            self._records[location.key] = ViolationRecord(runtime=location, evidence=[evidence])
            self.logger.debug(f"New violation at {location}")
            return
        record.add_occurrence(evidence)

    def _iter_reports(self, raw_payload: RawPayload) -> Iterator[tuple]:
        data = raw_payload
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError:
                return

        if isinstance(data, Mapping):
            report = data.get(LEGACY_ENVELOPE)
            if isinstance(report, Mapping):
                yield report, LEGACY_FIELDS
            return

        if isinstance(data, list):
            for entry in data:
                if not isinstance(entry, Mapping) or entry.get("type") != REPORTING_API_TYPE:
                    continue
                body = entry.get("body")
                if isinstance(body, Mapping):
                    yield body, REPORTING_FIELDS

    def records(self) -> List[ViolationRecord]:
        return list(self._records.values())

    def get(self, url: str, line: int, column: int) -> Optional[ViolationRecord]:
        return self._records.get(RuntimeLocation(url, line, column).key)

    @property
    def total_occurrences(self) -> int:
        return sum(record.count for record in self._records.values())

    def __len__(self) -> int:
        return len(self._records)
