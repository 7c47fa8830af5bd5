from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .collector import EvidenceField

DEFAULT_ENDPOINT = "http://127.0.0.1:8080"
DEFAULT_PROJECT_ROOT = "."
DEFAULT_NAVIGATION_TIMEOUT = 30.0
DEFAULT_SETTLE_SECONDS = 3.0
DEFAULT_REPORT_STAGE = "request"
REPORT_STAGES = ("request", "response")

ENDPOINT_ENV_KEYS = ("TTSCANNER_ENDPOINT",)
PROJECT_ROOT_ENV_KEYS = ("TTSCANNER_PROJECT_ROOT",)


@dataclass(frozen=True)
class ScanConfig:
    endpoint: str = DEFAULT_ENDPOINT
    project_root: Path = Path(DEFAULT_PROJECT_ROOT)
    static_prefix: str = ""
    headless: bool = True
    verbose: bool = False
    navigation_timeout: float = DEFAULT_NAVIGATION_TIMEOUT
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    report_stage: str = DEFAULT_REPORT_STAGE
    evidence_field: EvidenceField = EvidenceField.SAMPLE
    output: Optional[Path] = None

    @property
    def report_uri(self) -> str:
        return self.endpoint

    @property
    def policy_header(self) -> str:
        return f"require-trusted-types-for 'script'; report-uri {self.report_uri}"


def _from_env(explicit: str | None, keys: tuple[str, ...], default: str) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    for key in keys:
        value = os.environ.get(key, "")
        if value.strip():
            return value.strip()
    return default


def resolve_endpoint(explicit: str | None) -> str:
    return _from_env(explicit, ENDPOINT_ENV_KEYS, DEFAULT_ENDPOINT)


def resolve_project_root(explicit: str | None) -> Path:
    return Path(_from_env(explicit, PROJECT_ROOT_ENV_KEYS, DEFAULT_PROJECT_ROOT)).expanduser()


def config_from_args(args) -> ScanConfig:
    stage = (args.report_stage or DEFAULT_REPORT_STAGE).lower()
    if stage not in REPORT_STAGES:
        raise ValueError(f"Unknown report stage: {args.report_stage}")
    return ScanConfig(
        endpoint=resolve_endpoint(args.endpoint),
        project_root=resolve_project_root(args.path),
        static_prefix=args.static_prefix or "",
        headless=not args.no_headless,
        verbose=args.verbose,
        navigation_timeout=max(1.0, args.timeout),
        settle_seconds=max(0.0, args.settle),
        report_stage=stage,
        evidence_field=EvidenceField(args.evidence),
        output=Path(args.output).expanduser() if args.output else None,
    )
