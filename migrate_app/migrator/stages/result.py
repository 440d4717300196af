"""Result object shared by the migration stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class StageResult:
    """Outcome statistics for one stage execution."""

    stage: str
    rows_processed: int = 0
    rows_failed: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False
    cleanup: Dict[str, Any] | None = None

    def add(self, family: str, amount: int = 1) -> None:
        self.counts[family] = self.counts.get(family, 0) + amount

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "rows_processed": self.rows_processed,
            "rows_failed": self.rows_failed,
            "counts": dict(self.counts),
            "warnings": list(self.warnings),
            "skipped": self.skipped,
            "cleanup": self.cleanup,
        }

    def counts_payload(self) -> dict[str, int]:
        """Flat per-family counts persisted on the job."""

        payload = {"rows_processed": self.rows_processed, "rows_failed": self.rows_failed}
        payload.update(self.counts)
        return payload
