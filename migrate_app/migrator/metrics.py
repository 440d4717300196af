"""Prometheus metrics helpers for the migrator."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_stage_runs = Counter(
    "migrator_stage_runs_total",
    "Migration stage executions by stage and outcome.",
    ["stage", "outcome"],
)
_stage_rows = Counter(
    "migrator_stage_rows_total",
    "Rows handled by migration stages.",
    ["stage", "result"],
)
_stage_duration = Histogram(
    "migrator_stage_duration_seconds",
    "Duration of migration stages in seconds.",
    ["stage"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 900, 1800),
)
_identity_fallbacks = Counter(
    "migrator_identity_fallback_total",
    "Old user ids resolved to the fallback user because no mapping existed.",
)
_cleanup_runs = Counter(
    "migrator_cleanup_total",
    "Cleanup operations by kind and whether the safety gate allowed them.",
    ["kind", "outcome"],
)


def record_stage_run(
    stage: str,
    *,
    outcome: Literal["success", "failure"],
    duration_seconds: float,
    rows_processed: int = 0,
    rows_failed: int = 0,
) -> None:
    """Capture metrics for one stage execution."""

    _stage_runs.labels(stage=stage, outcome=outcome).inc()
    _stage_duration.labels(stage=stage).observe(duration_seconds)
    if rows_processed:
        _stage_rows.labels(stage=stage, result="processed").inc(rows_processed)
    if rows_failed:
        _stage_rows.labels(stage=stage, result="failed").inc(rows_failed)


def record_identity_fallback() -> None:
    _identity_fallbacks.inc()


def record_cleanup(kind: str, *, performed: bool) -> None:
    """Increment the cleanup counter."""

    _cleanup_runs.labels(kind=kind, outcome="performed" if performed else "skipped").inc()
