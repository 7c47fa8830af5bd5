from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List

from rich.console import Console
from rich.table import Table

from .collector import EvidenceField, ViolationCollector
from .config import (
    DEFAULT_NAVIGATION_TIMEOUT,
    DEFAULT_REPORT_STAGE,
    DEFAULT_SETTLE_SECONDS,
    REPORT_STAGES,
    ScanConfig,
    config_from_args,
)
from .console import RichLogger
from .interceptor import capture
from .models import ViolationRecord
from .preflight import probe_endpoint
from .report import ResultWriter, load_records, render_report, resolve_and_render
from .resolver import LocationResolver
from .validation import TRUSTED_TYPES_ERROR, find_missed, read_analyzer_output, render_missed


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ttscanner",
        description="Collect Trusted Types violations from a running web app and map them back to source.",
    )
    sub = ap.add_subparsers(dest="command", required=True)

    scan = sub.add_parser(
        "scan",
        help="Open the app in a browser, capture violation reports and print a resolved report.",
    )
    scan.add_argument(
        "-e",
        "--endpoint",
        help="Endpoint of the running application to scan (default: http://127.0.0.1:8080). "
        "You can also set TTSCANNER_ENDPOINT.",
    )
    scan.add_argument(
        "-p",
        "--path",
        help="Path to the tested project's root (default: current directory). "
        "You can also set TTSCANNER_PROJECT_ROOT.",
    )
    scan.add_argument(
        "--static-prefix",
        default="",
        help="URL path prefix under which build output is served, stripped before looking on disk.",
    )
    scan.add_argument("--no-headless", action="store_true", help="Show the browser window.")
    scan.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_NAVIGATION_TIMEOUT,
        help="Navigation timeout in seconds (default: 30).",
    )
    scan.add_argument(
        "--settle",
        type=float,
        default=DEFAULT_SETTLE_SECONDS,
        help="Seconds to keep collecting reports after the page went idle (default: 3).",
    )
    scan.add_argument(
        "--report-stage",
        choices=REPORT_STAGES,
        default=DEFAULT_REPORT_STAGE,
        help="Interception stage for violation reports (default: request).",
    )
    scan.add_argument(
        "--evidence",
        choices=[f.value for f in EvidenceField],
        default=EvidenceField.SAMPLE.value,
        help="What to keep per occurrence: the script sample or the whole report (default: sample).",
    )
    scan.add_argument("-o", "--output", help="Write the captured violations to this JSONL file.")
    scan.add_argument("-v", "--verbose", action="store_true", help="Verbose debug logs")

    validate = sub.add_parser(
        "validate",
        help="List captured violations the static analyzer did not report.",
    )
    validate.add_argument("--records", required=True, help="JSONL file written by 'scan --output'.")
    validate.add_argument("--analyzer-output", required=True, help="File holding the analyzer's output.")
    validate.add_argument(
        "--code",
        default=TRUSTED_TYPES_ERROR,
        help="Diagnostic code marking relevant analyzer lines (default: TS21228).",
    )
    validate.add_argument("-v", "--verbose", action="store_true", help="Verbose debug logs")

    return ap


def _print_lines(logger: RichLogger, lines: List[str]) -> None:
    for line in lines:
        logger.line(line)


def _print_summary(console: Console, records: List[ViolationRecord]) -> None:
    resolved = sum(1 for r in records if r.resolved)
    table = Table(title="Scan Summary", header_style="bold")
    table.add_column("Locations", justify="right")
    table.add_column("Resolved", justify="right")
    table.add_column("Unresolved", justify="right")
    table.add_column("Occurrences", justify="right")
    table.add_row(
        str(len(records)),
        str(resolved),
        str(len(records) - resolved),
        str(sum(r.count for r in records)),
    )
    console.print(table)


def _write_capture(config: ScanConfig, collector: ViolationCollector, logger: RichLogger) -> None:
    if not config.output:
        return
    try:
        ResultWriter(config.output, logger).write(collector.records())
    except OSError as exc:
        logger.error(f"Failed to write {config.output}: {exc}")


async def scan_and_report(config: ScanConfig, collector: ViolationCollector, logger: RichLogger) -> List[str]:
    await capture(config, collector, logger)
    if collector.skipped:
        logger.debug(f"Skipped {collector.skipped} malformed report(s)")
    resolver = LocationResolver(config.project_root, static_prefix=config.static_prefix, logger=logger)
    lines = await resolve_and_render(collector, resolver)
    _write_capture(config, collector, logger)
    return lines


def run_scan(args) -> int:
    console = Console(stderr=True)
    logger = RichLogger(console=console, verbose=args.verbose)

    try:
        config = config_from_args(args)
    except ValueError as exc:
        logger.error(str(exc))
        return 2

    probe_endpoint(config.endpoint, logger)
    collector = ViolationCollector(evidence_field=config.evidence_field, logger=logger)
    try:
        lines = asyncio.run(scan_and_report(config, collector, logger))
    except KeyboardInterrupt:
        logger.warn("Scan interrupted, reporting unresolved locations")
        records = sorted(collector.records(), key=lambda r: r.runtime_key)
        lines = render_report(records, count=collector.total_occurrences)
        _write_capture(config, collector, logger)
    _print_lines(logger, lines)
    if args.verbose:
        _print_summary(console, collector.records())
    return 0


def run_validate(args) -> int:
    console = Console(stderr=True)
    logger = RichLogger(console=console, verbose=args.verbose)

    records_path = Path(args.records).expanduser()
    if not records_path.is_file():
        logger.error(f"Records file not found: {records_path}")
        return 2
    try:
        analyzer_output = read_analyzer_output(Path(args.analyzer_output).expanduser())
    except OSError as exc:
        logger.error(f"Failed to read analyzer output: {exc}")
        return 2

    records = load_records(records_path, logger)
    logger.info(f"Loaded {len(records)} captured violation(s) from {records_path}")
    missed = find_missed(analyzer_output, records, code=args.code)
    _print_lines(logger, render_missed(missed))
    if args.verbose:
        _print_summary(console, records)
    return 0


def main() -> int:
    args = build_arg_parser().parse_args()
    if args.command == "scan":
        return run_scan(args)
    if args.command == "validate":
        return run_validate(args)
    return 2
