"""
Extra-tables stage: plugin tables living under the source prefix.

Every non-core table is recreated under the target prefix from the source's
reflected structure (table, index and constraint names re-prefixed) and its
rows copied verbatim. Rows are upserted by primary key; a table without one
is emptied on the target before its rows are copied again. No identity
remapping happens here.
"""

from __future__ import annotations

import logging

from sqlalchemy import MetaData, Table, select

from ..context import MigrationContext
from ..transforms import swap_prefix
from .result import StageResult

logger = logging.getLogger(__name__)

STAGE = "extra"


def migrate_extra_tables(context: MigrationContext) -> StageResult:
    """Recreate and copy every extra table when the job asks for it."""

    result = StageResult(stage=STAGE)
    if not context.settings.migrate_extra_tables:
        result.skipped = True
        result.warn("Extra tables are not migrated for this job.")
        logger.info(
            "Skipping extra tables for site %s; migrate_extra_tables is off.",
            context.site_id,
            extra=context.log_extra(STAGE),
        )
        return result

    source, target = context.source, context.target
    for source_name in source.extra_table_names():
        target_name = swap_prefix(source_name, source.prefix, target.prefix)
        source_table = source.reflect(source_name)
        if ensure_target_table(context, source_table, target_name):
            result.add("tables_created")
        target_table = target.reflect(target_name)
        if not target_table.primary_key.columns:
            # No key to upsert on: replace the copy wholesale.
            target.delete_all(target_table, stage=STAGE)
            result.add("tables_replaced")

        copied = 0
        with source.storage_errors(stage=STAGE, table=source_name):
            for batch in source.iter_batches(select(source_table)):
                copied += target.upsert_rows(target_table, batch, stage=STAGE)

        result.add("tables_copied")
        result.add("rows_copied", copied)
        result.rows_processed += 1
        logger.info(
            "Copied extra table %s to %s (%s rows)",
            source_name,
            target_name,
            copied,
            extra=context.log_extra(STAGE, table=target_name, rows=copied),
        )

    logger.info(
        "Completed extra tables migration. Total tables: %s",
        result.rows_processed,
        extra=context.log_extra(STAGE, rows_processed=result.rows_processed),
    )
    return result


def ensure_target_table(context: MigrationContext, source_table: Table, target_name: str) -> bool:
    """Create ``target_name`` from ``source_table``'s structure if absent. Returns True when created."""

    target = context.target
    if target.has_table(target_name):
        return False

    source_prefix, target_prefix = context.source.prefix, target.prefix
    target_table = source_table.to_metadata(MetaData(), name=target_name)
    for item in (*target_table.indexes, *target_table.constraints):
        if item.name:
            item.name = _retarget_name(item.name, source_prefix, target_prefix)

    with target.storage_errors(stage=STAGE, table=target_name):
        target_table.create(target.engine, checkfirst=True)
    logger.info(
        "Created table %s from %s",
        target_name,
        source_table.name,
        extra=context.log_extra(STAGE, table=target_name),
    )
    return True


def _retarget_name(name: str, source_prefix: str, target_prefix: str) -> str:
    # Index names are database-wide on some backends, so unprefixed names get the target prefix.
    if source_prefix and source_prefix in name:
        return name.replace(source_prefix, target_prefix)
    return f"{target_prefix}{name}"
