from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .collector import ViolationCollector
from .console import RichLogger
from .models import Resolution, RuntimeLocation, SourceLocation, ViolationRecord
from .normalize import positive_int
from .resolver import LocationResolver


def summary_line(count: int, suffix: str = "") -> str:
    noun = "violation" if count == 1 else "violations"
    tail = f" {suffix}" if suffix else ""
    return f"Found {count} {noun}{tail}."


def render_entries(records: Sequence[ViolationRecord]) -> List[str]:
    return [f"{idx}. {record}" for idx, record in enumerate(records, start=1)]


def render_report(records: Sequence[ViolationRecord], count: Optional[int] = None, suffix: str = "") -> List[str]:
    total = sum(record.count for record in records) if count is None else count
    return [summary_line(total, suffix)] + render_entries(records)


async def resolve_records(records: Sequence[ViolationRecord], resolver: LocationResolver) -> None:
    pending = [record for record in records if not record.resolved]
    results = await asyncio.gather(
        *(resolver.resolve_async(record.runtime) for record in pending),
        return_exceptions=True,
    )
    for record, result in zip(pending, results):
        if isinstance(result, BaseException):
            resolver.logger.error(f"Resolution crashed for {record.runtime}: {result!r}")
            continue
        record.attach(result)


async def resolve_and_render(collector: ViolationCollector, resolver: LocationResolver) -> List[str]:
    # Sorted on runtime keys so the order never depends on arrival or resolution.
    records = sorted(collector.records(), key=lambda r: r.runtime_key)
    await resolve_records(records, resolver)
    return render_report(records, count=collector.total_occurrences)


def record_to_dict(record: ViolationRecord) -> Dict[str, object]:
    source = None
    if record.source is not None:
        source = {"path": record.source.path, "line": record.source.line, "column": record.source.column}
    return {
        "url": record.runtime.url,
        "line": record.runtime.line,
        "column": record.runtime.column,
        "source": source,
        "evidence": list(record.evidence),
    }


def record_from_dict(data: Dict[str, object]) -> Optional[ViolationRecord]:
    url = data.get("url")
    line = positive_int(data.get("line"))
    column = positive_int(data.get("column"))
    if not isinstance(url, str) or line is None or column is None:
        return None
    record = ViolationRecord(runtime=RuntimeLocation(url=url, line=line, column=column))
    source = data.get("source")
    if isinstance(source, dict):
        path = source.get("path")
        src_line = positive_int(source.get("line"))
        src_col = positive_int(source.get("column"))
        if isinstance(path, str) and path and src_line is not None and src_col is not None:
            record.attach(Resolution.resolved(SourceLocation(path=path, line=src_line, column=src_col)))
    evidence = data.get("evidence") or []
    if isinstance(evidence, list):
        for item in evidence:
            record.add_occurrence(str(item))
    return record


class ResultWriter:
    def __init__(self, out_path: Path, logger: RichLogger):
        self.out_path = out_path
        self.logger = logger

    def write(self, records: Iterable[ViolationRecord]) -> None:
        self.out_path.parent.mkdir(parents=True, exist_ok=True)
        ordered = sorted(records, key=lambda r: r.runtime_key)
        tmp_path = self.out_path.with_suffix(self.out_path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            for record in ordered:
                handle.write(json.dumps(record_to_dict(record), ensure_ascii=False) + "\n")
        tmp_path.replace(self.out_path)
        self.logger.done(f"Captured violations written to: {self.out_path}")


def load_records(path: Path, logger: RichLogger) -> List[ViolationRecord]:
    records: List[ViolationRecord] = []
    with open(path, "r", encoding="utf-8", errors="replace") as handle:
        for line_no, line in enumerate(handle, start=1):
            raw = line.strip()
            if not raw:
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warn(f"Skipping unreadable record at {path}:{line_no}")
                continue
            record = record_from_dict(data) if isinstance(data, dict) else None
            if record is None:
                logger.warn(f"Skipping incomplete record at {path}:{line_no}")
                continue
            records.append(record)
    return records
