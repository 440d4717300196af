"""
Users stage: merge source users into the network user table.

Users are matched across sites by e-mail; a match reuses the existing network
account, otherwise a new row is inserted with the login, password hash,
registration date and activation key carried over verbatim. User meta follows
the user, minus denylisted keys, with prefix-bound keys rewritten to the
target site's prefix. Every old/new pair is recorded in the identity map.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import Table, func, select
from sqlalchemy.exc import SQLAlchemyError

from ..context import MigrationContext
from ..errors import BulkOperationError
from ..transforms import normalize_columns
from ..wordpress import PREFIXED_USERMETA_KEYS
from .result import StageResult

logger = logging.getLogger(__name__)

STAGE = "users"

USER_TEXT_COLUMNS = ("user_login", "user_nicename", "user_email", "user_url", "display_name")


def migrate_users(context: MigrationContext) -> StageResult:
    """Copy users and user meta into the network tables."""

    result = StageResult(stage=STAGE)
    source, target = context.source, context.target
    source_users = source.table("users")
    source_usermeta = source.table("usermeta")
    target_users = target.network_table("users")
    target_usermeta = target.network_table("usermeta")
    rewritten_keys = {
        f"{context.settings.source_prefix}{key}": f"{context.settings.target_prefix}{key}"
        for key in PREFIXED_USERMETA_KEYS
    }

    logger.info(
        "Migrating users from %s into %s",
        source_users.name,
        target_users.name,
        extra=context.log_extra(STAGE),
    )

    statement = select(source_users).order_by(source_users.c.ID.asc())
    with source.storage_errors(stage=STAGE, table=source_users.name):
        for batch in source.iter_batches(statement):
            for user in batch:
                if _migrate_user(context, user, source_usermeta, target_users, target_usermeta, rewritten_keys, result):
                    result.rows_processed += 1

    logger.info(
        "Completed user migration. Total users migrated: %s",
        result.rows_processed,
        extra=context.log_extra(STAGE, rows_processed=result.rows_processed, rows_failed=result.rows_failed),
    )
    return result


def _migrate_user(
    context: MigrationContext,
    user: Mapping[str, Any],
    source_usermeta: Table,
    target_users: Table,
    target_usermeta: Table,
    rewritten_keys: Mapping[str, str],
    result: StageResult,
) -> bool:
    """Migrate one user; a storage failure is recorded on ``result`` and does not abort the batch."""

    old_user_id = int(user["ID"])
    try:
        new_user_id, reused = _resolve_target_user(context, user, target_users)
        meta_written = _copy_usermeta(
            context,
            old_user_id,
            new_user_id,
            source_usermeta,
            target_usermeta,
            rewritten_keys,
        )
        context.identity.record_mapping(old_user_id, new_user_id)
    except (BulkOperationError, SQLAlchemyError) as exc:
        context.identity.session.rollback()
        result.rows_failed += 1
        result.warn(f"User {old_user_id} ({user.get('user_login')}) was not migrated: {exc}")
        logger.warning(
            "Failed to migrate user %s",
            old_user_id,
            exc_info=True,
            extra=context.log_extra(STAGE, old_user_id=old_user_id),
        )
        return False

    result.add("users_reused" if reused else "users_inserted")
    result.add("usermeta", meta_written)
    return True


def _resolve_target_user(
    context: MigrationContext,
    user: Mapping[str, Any],
    target_users: Table,
) -> tuple[int, bool]:
    """Return ``(new_user_id, reused)`` for a source user row."""

    old_user_id = int(user["ID"])
    mapped = context.identity.lookup(old_user_id)
    if mapped is not None:
        return mapped, True

    existing = _find_existing_user(context, user, target_users)
    if existing is not None:
        return existing, True

    columns = set(target_users.c.keys())
    values = {
        key: value
        for key, value in normalize_columns(user, USER_TEXT_COLUMNS).items()
        if key != "ID" and key in columns
    }
    new_user_id = context.target.insert_row(target_users, values, stage=STAGE)
    if new_user_id is None:
        raise BulkOperationError(
            f"Inserting user {user.get('user_login')} did not return an id.",
            stage=STAGE,
            table=target_users.name,
        )
    return int(new_user_id), False


def _find_existing_user(
    context: MigrationContext,
    user: Mapping[str, Any],
    target_users: Table,
) -> int | None:
    email = (user.get("user_email") or "").strip()
    if email:
        criteria = func.lower(target_users.c.user_email) == email.lower()
    else:
        criteria = target_users.c.user_login == user.get("user_login")
    statement = select(target_users.c.ID).where(criteria).order_by(target_users.c.ID.asc()).limit(1)
    with context.target.storage_errors(stage=STAGE, table=target_users.name):
        matches = context.target.scalars(statement)
    return int(matches[0]) if matches else None


def _copy_usermeta(
    context: MigrationContext,
    old_user_id: int,
    new_user_id: int,
    source_usermeta: Table,
    target_usermeta: Table,
    rewritten_keys: Mapping[str, str],
) -> int:
    statement = (
        select(source_usermeta.c.meta_key, source_usermeta.c.meta_value)
        .where(
            source_usermeta.c.user_id == old_user_id,
            *context.denylists.usermeta.exclusion_clauses(source_usermeta.c.meta_key),
        )
        .order_by(source_usermeta.c.umeta_id.asc())
    )
    with context.source.storage_errors(stage=STAGE, table=source_usermeta.name):
        rows = context.source.fetch_all(statement)

    written = 0
    for row in rows:
        meta_key = rewritten_keys.get(row["meta_key"], row["meta_key"])
        context.target.update_or_insert(
            target_usermeta,
            {"user_id": new_user_id, "meta_key": meta_key},
            {"meta_value": normalize_columns(row, ("meta_value",))["meta_value"]},
            stage=STAGE,
        )
        written += 1
    return written
