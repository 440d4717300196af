"""
Posts stage: posts, post meta and the taxonomy graph.

Runs in three strictly ordered phases:

1. Zero dates on the source posts table are rewritten to the epoch (and, on
   MySQL, the column defaults changed) so the copy does not trip stricter
   date handling on the target. This mutates the source and is a no-op on
   re-runs.
2. Posts are copied in batches, upserted by ``ID``, with the original author
   parked in a holding column. Each distinct parked author is then resolved
   through the identity map, ``post_author`` is rewritten, and the holding
   column is dropped.
3. Post meta (minus denylisted keys), terms, term taxonomy and term
   relationships are upserted by primary key in dependency order.

A storage failure in any phase aborts the stage; rows already written stay
and are overwritten on the next run.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import Table, select, text, update

from ..context import MigrationContext
from ..denylist import Denylist
from ..transforms import normalize_columns
from ..wordpress import AUTHOR_HOLDING_COLUMN, EPOCH_DATE, POST_DATE_COLUMNS, ZERO_DATE
from .result import StageResult

logger = logging.getLogger(__name__)

STAGE = "posts"

POST_TEXT_COLUMNS = ("post_content", "post_title", "post_excerpt", "post_name", "post_content_filtered", "guid")
POSTMETA_TEXT_COLUMNS = ("meta_value",)

# (table, text columns to normalize) copied after posts, in dependency order.
TAXONOMY_TABLES = (
    ("terms", ("name", "slug")),
    ("term_taxonomy", ("taxonomy", "description")),
    ("term_relationships", ()),
)


def migrate_posts(context: MigrationContext) -> StageResult:
    """Copy posts and their associated data, then rewrite authorship."""

    result = StageResult(stage=STAGE)

    normalized = normalize_source_dates(context)
    result.add("source_dates_normalized", normalized)

    copied = _copy_posts(context, result)
    result.rows_processed = copied
    result.add("posts", copied)

    _copy_postmeta(context, result)
    for name, text_columns in TAXONOMY_TABLES:
        result.add(name, _copy_table(context, name, text_columns))

    logger.info(
        "Completed posts migration. Total posts migrated: %s",
        copied,
        extra=context.log_extra(STAGE, rows_processed=copied, counts=dict(result.counts)),
    )
    return result


def normalize_source_dates(context: MigrationContext) -> int:
    """Rewrite zero dates in the source posts table to the epoch."""

    source = context.source
    posts_name = source.table_name("posts")
    quoted_table = source.quote(posts_name)
    changed = 0
    for column in POST_DATE_COLUMNS:
        quoted_column = source.quote(column)
        changed += source.execute(
            text(f"UPDATE {quoted_table} SET {quoted_column} = :epoch WHERE {quoted_column} = :zero"),
            params={"epoch": EPOCH_DATE, "zero": ZERO_DATE},
            stage=STAGE,
            table=posts_name,
        )
        if source.dialect in ("mysql", "mariadb"):
            source.execute(
                text(f"ALTER TABLE {quoted_table} ALTER {quoted_column} SET DEFAULT '{EPOCH_DATE}'"),
                stage=STAGE,
                table=posts_name,
            )
    if changed:
        logger.info(
            "Normalized %s zero dates in source table %s",
            changed,
            posts_name,
            extra=context.log_extra(STAGE, source_dates_normalized=changed),
        )
    return changed


def _copy_posts(context: MigrationContext, result: StageResult) -> int:
    source, target = context.source, context.target
    target_posts_name = target.table_name("posts")

    target.add_column(target_posts_name, AUTHOR_HOLDING_COLUMN, "BIGINT NULL", stage=STAGE)
    target_posts = target.reflect(target_posts_name)
    source_posts = source.table("posts")

    copied = 0
    statement = select(source_posts).order_by(source_posts.c.ID.asc())
    with source.storage_errors(stage=STAGE, table=source_posts.name):
        for batch in source.iter_batches(statement):
            rows = []
            for row in batch:
                payload = normalize_columns(row, POST_TEXT_COLUMNS)
                payload[AUTHOR_HOLDING_COLUMN] = row["post_author"]
                rows.append(payload)
            copied += target.upsert_rows(target_posts, rows, stage=STAGE)

    _backfill_authors(context, target_posts, result)
    target.drop_column(target_posts_name, AUTHOR_HOLDING_COLUMN, stage=STAGE)
    return copied


def _backfill_authors(context: MigrationContext, target_posts: Table, result: StageResult) -> None:
    """Replace parked source author ids with their mapped network user ids."""

    target = context.target
    holding = target_posts.c[AUTHOR_HOLDING_COLUMN]
    statement = select(holding).where(holding.is_not(None)).distinct().order_by(holding.asc())
    with target.storage_errors(stage=STAGE, table=target_posts.name):
        old_authors = target.scalars(statement)

    for old_author_id in old_authors:
        resolution = context.identity.resolve(int(old_author_id))
        if not resolution.mapped:
            result.add("authors_fallback")
            result.warn(
                f"Author {resolution.old_user_id} has no identity mapping; "
                f"assigned to user {resolution.new_user_id}."
            )
        else:
            result.add("authors_remapped")
        target.execute(
            update(target_posts)
            .where(holding == old_author_id)
            .values({"post_author": resolution.new_user_id, AUTHOR_HOLDING_COLUMN: None}),
            stage=STAGE,
            table=target_posts.name,
        )


def _copy_postmeta(context: MigrationContext, result: StageResult) -> None:
    result.add(
        "postmeta",
        _copy_table(context, "postmeta", POSTMETA_TEXT_COLUMNS, denylist=context.denylists.postmeta),
    )


def _copy_table(
    context: MigrationContext,
    name: str,
    text_columns: Iterable[str],
    *,
    denylist: Denylist | None = None,
) -> int:
    """
    Upsert every row of a per-site table from source to target.

    ``denylist`` filters on the table's ``meta_key`` column.
    """

    source, target = context.source, context.target
    source_table = source.table(name)
    target_table = target.table(name)
    text_columns = tuple(text_columns)

    statement = select(source_table)
    if denylist is not None:
        clauses = denylist.exclusion_clauses(source_table.c.meta_key)
        if clauses:
            statement = statement.where(*clauses)
    if source_table.primary_key.columns:
        statement = statement.order_by(*source_table.primary_key.columns)

    copied = 0
    with source.storage_errors(stage=STAGE, table=source_table.name):
        for batch in source.iter_batches(statement):
            rows = [normalize_columns(row, text_columns) for row in batch]
            copied += target.upsert_rows(target_table, rows, stage=STAGE)

    logger.info(
        "Copied %s rows from %s to %s",
        copied,
        source_table.name,
        target_table.name,
        extra=context.log_extra(STAGE, table=target_table.name, rows=copied),
    )
    return copied
