"""Media stage: attachment file paths and metadata."""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import select

from ..context import MigrationContext
from ..transforms import normalize_text
from ..wordpress import ATTACHMENT_META_KEYS
from .result import StageResult

logger = logging.getLogger(__name__)

STAGE = "media"


def migrate_media(context: MigrationContext) -> StageResult:
    """
    Upsert ``_wp_attached_file`` and ``_wp_attachment_metadata`` for every source attachment.

    Post ids are shared between source and target, so entries land on the
    same id. Empty source values are left alone.
    """

    result = StageResult(stage=STAGE)
    source, target = context.source, context.target
    source_posts = source.table("posts")
    source_postmeta = source.table("postmeta")
    target_postmeta = target.table("postmeta")

    attachments = (
        select(source_posts.c.ID)
        .where(source_posts.c.post_type == "attachment")
        .order_by(source_posts.c.ID.asc())
    )

    with source.storage_errors(stage=STAGE, table=source_posts.name):
        for batch in source.iter_batches(attachments):
            post_ids = [row["ID"] for row in batch]
            meta = _attachment_meta(context, source_postmeta, post_ids)
            for post_id in post_ids:
                for meta_key in ATTACHMENT_META_KEYS:
                    value = meta[post_id].get(meta_key)
                    if not value:
                        continue
                    target.update_or_insert(
                        target_postmeta,
                        {"post_id": post_id, "meta_key": meta_key},
                        {"meta_value": value},
                        stage=STAGE,
                    )
                    result.add(meta_key.lstrip("_"))
                result.rows_processed += 1

    logger.info(
        "Completed media data migration. Total attachments: %s",
        result.rows_processed,
        extra=context.log_extra(STAGE, rows_processed=result.rows_processed),
    )
    return result


def _attachment_meta(context: MigrationContext, source_postmeta, post_ids) -> dict[int, dict[str, str]]:
    statement = (
        select(source_postmeta.c.post_id, source_postmeta.c.meta_key, source_postmeta.c.meta_value)
        .where(
            source_postmeta.c.post_id.in_(post_ids),
            source_postmeta.c.meta_key.in_(ATTACHMENT_META_KEYS),
        )
        .order_by(source_postmeta.c.meta_id.asc())
    )
    meta: dict[int, dict[str, str]] = defaultdict(dict)
    for row in context.source.fetch_all(statement):
        meta[row["post_id"]][row["meta_key"]] = normalize_text(row["meta_value"])
    return meta
