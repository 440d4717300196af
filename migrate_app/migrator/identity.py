"""
Old-user-id to new-user-id translations for one target site.

Mappings are written once by the users stage and read by the posts stage to
fix authorship. Resolution never fails: an unmapped id resolves to the
configured fallback user and is reported as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from migrate_app.models import IdentityMapping, db

from .metrics import record_identity_fallback

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_USER_ID = 1


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving an old user id."""

    old_user_id: int
    new_user_id: int
    mapped: bool


class IdentityMapper:
    """Append-only identity map scoped to a single target site."""

    def __init__(
        self,
        site_id: int,
        *,
        session: Session | None = None,
        site_label: str | None = None,
        fallback_user_id: int = DEFAULT_FALLBACK_USER_ID,
    ) -> None:
        self.site_id = site_id
        self.session = session or db.session
        self.site_label = site_label
        self.fallback_user_id = int(fallback_user_id)
        self._cache: dict[int, int] = {}

    def lookup(self, old_user_id: int) -> int | None:
        old_user_id = int(old_user_id)
        if old_user_id in self._cache:
            return self._cache[old_user_id]
        stmt = select(IdentityMapping.new_user_id).where(
            IdentityMapping.site_id == self.site_id,
            IdentityMapping.old_user_id == old_user_id,
        )
        new_user_id = self.session.scalar(stmt)
        if new_user_id is not None:
            self._cache[old_user_id] = int(new_user_id)
            return int(new_user_id)
        return None

    def record_mapping(self, old_user_id: int, new_user_id: int) -> int:
        """
        Record ``old_user_id -> new_user_id`` once.

        If a mapping already exists it is kept; a conflicting new id is
        logged and ignored. Returns the id now stored for ``old_user_id``.
        """

        old_user_id = int(old_user_id)
        new_user_id = int(new_user_id)
        existing = self.lookup(old_user_id)
        if existing is not None:
            if existing != new_user_id:
                logger.warning(
                    "Identity mapping for site %s user %s already points to %s; ignoring %s",
                    self.site_id,
                    old_user_id,
                    existing,
                    new_user_id,
                    extra={"migrator_site_id": self.site_id, "migrator_old_user_id": old_user_id},
                )
            return existing

        self.session.add(
            IdentityMapping(
                site_id=self.site_id,
                site_label=self.site_label,
                old_user_id=old_user_id,
                new_user_id=new_user_id,
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            stored = self.lookup(old_user_id)
            if stored is None:
                raise
            return stored

        self._cache[old_user_id] = new_user_id
        return new_user_id

    def resolve(self, old_user_id: int) -> Resolution:
        new_user_id = self.lookup(old_user_id)
        if new_user_id is not None:
            return Resolution(old_user_id=int(old_user_id), new_user_id=new_user_id, mapped=True)

        logger.warning(
            "No identity mapping for site %s user %s; using fallback user %s",
            self.site_id,
            old_user_id,
            self.fallback_user_id,
            extra={"migrator_site_id": self.site_id, "migrator_old_user_id": old_user_id},
        )
        record_identity_fallback()
        return Resolution(old_user_id=int(old_user_id), new_user_id=self.fallback_user_id, mapped=False)

    def mappings(self) -> dict[int, int]:
        stmt = (
            select(IdentityMapping.old_user_id, IdentityMapping.new_user_id)
            .where(IdentityMapping.site_id == self.site_id)
            .order_by(IdentityMapping.old_user_id.asc())
        )
        return {int(old): int(new) for old, new in self.session.execute(stmt)}
