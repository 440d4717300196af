"""
Options stage: copy site options into the target site's options table.

Core site-identity options are never written, denylisted options are skipped,
and the source prefix is stripped from option names. Values are written as
stored (serialized payloads included), so re-running converges on the source
values.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from ..context import MigrationContext
from ..transforms import normalize_text, strip_prefix
from ..wordpress import CORE_OPTIONS
from .result import StageResult

logger = logging.getLogger(__name__)

STAGE = "options"


def migrate_options(context: MigrationContext) -> StageResult:
    """Upsert every eligible source option by name."""

    result = StageResult(stage=STAGE)
    source, target = context.source, context.target
    source_options = source.table("options")
    target_options = target.table("options")
    denylist = context.denylists.options
    carries_autoload = "autoload" in source_options.c and "autoload" in target_options.c

    statement = (
        select(source_options)
        .where(
            source_options.c.option_name.not_in(CORE_OPTIONS),
            *denylist.exclusion_clauses(source_options.c.option_name),
        )
        .order_by(source_options.c.option_id.asc())
    )

    logger.info(
        "Migrating options from %s into %s",
        source_options.name,
        target_options.name,
        extra=context.log_extra(STAGE),
    )

    with source.storage_errors(stage=STAGE, table=source_options.name):
        for batch in source.iter_batches(statement):
            for option in batch:
                option_name = strip_prefix(option["option_name"], context.settings.source_prefix)
                if option_name in CORE_OPTIONS or denylist.excludes(option_name):
                    result.add("options_skipped")
                    continue

                values = {"option_value": normalize_text(option["option_value"])}
                if carries_autoload:
                    values["autoload"] = option["autoload"]
                outcome = target.update_or_insert(
                    target_options,
                    {"option_name": option_name},
                    values,
                    stage=STAGE,
                )
                result.add(f"options_{outcome}")
                result.rows_processed += 1

    logger.info(
        "Completed options migration. Total options migrated: %s",
        result.rows_processed,
        extra=context.log_extra(STAGE, rows_processed=result.rows_processed),
    )
    return result
