"""
Destructive pre-stage cleanup of the target site.

Every operation is gated: it only deletes or drops when the run is forced or
the environment is not production. Options and extra-table cleanup also need
the job's ``clean_unused_data`` flag; content cleanup always runs before the
posts stage so the copy starts from empty tables. A blocked operation reports
``performed=False`` and touches nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .metrics import record_cleanup
from .stores import TargetStore
from .wordpress import CONTENT_TABLES, CORE_OPTIONS, NETWORK_TABLES

logger = logging.getLogger(__name__)

PRODUCTION = "production"

# Suffixes such as ``3_posts`` belong to another network site sharing the base prefix.
_OTHER_SITE_SUFFIX = re.compile(r"^\d+_")


@dataclass
class CleanupOutcome:
    """Result of one cleanup operation."""

    kind: str
    performed: bool
    tables: list[str] = field(default_factory=list)
    rows_deleted: int = 0
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "performed": self.performed,
            "tables": list(self.tables),
            "rows_deleted": self.rows_deleted,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class CleanupPolicy:
    """Safety gate plus the cleanup operations it guards."""

    environment: str
    force: bool = False
    enabled: bool = True

    def allowed(self) -> bool:
        return self.force or (self.environment or "").lower() != PRODUCTION

    def _blocked(self, kind: str, *, optional: bool = True) -> CleanupOutcome | None:
        if optional and not self.enabled:
            return CleanupOutcome(kind=kind, performed=False, reason="cleanup disabled for this job")
        if not self.allowed():
            logger.warning(
                "Skipping %s cleanup in %s environment; pass --force to override.",
                kind,
                self.environment,
                extra={"migrator_cleanup": kind, "migrator_environment": self.environment},
            )
            record_cleanup(kind, performed=False)
            return CleanupOutcome(kind=kind, performed=False, reason="blocked in production without force")
        return None

    def clean_content(self, target: TargetStore, *, stage: str | None = None) -> CleanupOutcome:
        """Empty the target site's posts, post meta and taxonomy tables."""

        blocked = self._blocked("content", optional=False)
        if blocked is not None:
            return blocked

        outcome = CleanupOutcome(kind="content", performed=True)
        for name in CONTENT_TABLES:
            table = target.table(name)
            outcome.rows_deleted += target.delete_all(table, stage=stage)
            outcome.tables.append(table.name)
        record_cleanup("content", performed=True)
        logger.info(
            "Cleared %s content rows from %s",
            outcome.rows_deleted,
            ", ".join(outcome.tables),
            extra={"migrator_cleanup": "content", "migrator_rows_deleted": outcome.rows_deleted},
        )
        return outcome

    def clean_options(self, target: TargetStore, *, stage: str | None = None) -> CleanupOutcome:
        """Delete every target option except the core site-identity options."""

        blocked = self._blocked("options")
        if blocked is not None:
            return blocked

        table = target.table("options")
        deleted = target.delete_all(table, table.c.option_name.not_in(CORE_OPTIONS), stage=stage)
        record_cleanup("options", performed=True)
        logger.info(
            "Cleared %s options from %s",
            deleted,
            table.name,
            extra={"migrator_cleanup": "options", "migrator_rows_deleted": deleted},
        )
        return CleanupOutcome(kind="options", performed=True, tables=[table.name], rows_deleted=deleted)

    def clean_extra_tables(
        self,
        target: TargetStore,
        *,
        migrate_extra_tables: bool,
        stage: str | None = None,
    ) -> CleanupOutcome:
        """Drop non-core tables under the target prefix when extra tables are migrated."""

        if not migrate_extra_tables:
            return CleanupOutcome(kind="extra_tables", performed=False, reason="extra tables not migrated")
        blocked = self._blocked("extra_tables")
        if blocked is not None:
            return blocked

        outcome = CleanupOutcome(kind="extra_tables", performed=True)
        for name in target.extra_table_names():
            suffix = name[len(target.prefix):]
            if suffix in NETWORK_TABLES or _OTHER_SITE_SUFFIX.match(suffix):
                continue
            target.drop_table(name, stage=stage)
            outcome.tables.append(name)
        record_cleanup("extra_tables", performed=True)
        logger.info(
            "Dropped %s extra tables under %s",
            len(outcome.tables),
            target.prefix,
            extra={"migrator_cleanup": "extra_tables", "migrator_tables": outcome.tables},
        )
        return outcome
