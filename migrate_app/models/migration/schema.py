"""
SQLAlchemy models for the migration control plane.

One ``MigrationJob`` row exists per target site; ``IdentityMapping`` rows record
the user-identity translations produced by the users stage and consumed by
the posts stage.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..base import BaseModel, db


class MigrationJobStatus(str, enum.Enum):
    """Lifecycle states for a migration job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationJob(BaseModel):
    """Configuration and progress for migrating one single-site install into a network site."""

    __tablename__ = "migration_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int] = mapped_column(db.Integer, nullable=False, unique=True, index=True)
    site_label: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    source_db_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    source_prefix: Mapped[str] = mapped_column(db.String(255), nullable=False)
    target_prefix: Mapped[str] = mapped_column(db.String(255), nullable=False)
    migrate_extra_tables: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    clean_unused_data: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    status: Mapped[MigrationJobStatus] = mapped_column(
        Enum(MigrationJobStatus, name="migration_job_status_enum"),
        nullable=False,
        default=MigrationJobStatus.PENDING,
    )
    current_operation: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    current_stage: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    completed_stages_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    lease_token: Mapped[str | None] = mapped_column(
        db.String(64),
        nullable=True,
        comment="Token of the invocation currently running this job; NULL when idle.",
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    __table_args__ = (Index("idx_migration_jobs_status", "status"),)

    def __repr__(self):
        return f"<MigrationJob site={self.site_id} status={self.status.value if self.status else None}>"

    @property
    def completed_stages(self) -> tuple[str, ...]:
        return tuple(self.completed_stages_json or ())

    def mark_stage_completed(self, stage: str) -> None:
        stages = list(self.completed_stages_json or [])
        if stage not in stages:
            stages.append(stage)
        self.completed_stages_json = stages

    def record_counts(self, stage: str, counts: dict[str, int]) -> None:
        merged = dict(self.counts_json or {})
        merged[stage] = dict(counts)
        self.counts_json = merged


class IdentityMapping(BaseModel):
    """Old (source) user id to new (network) user id for one target site."""

    __tablename__ = "identity_mappings"

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int] = mapped_column(db.Integer, nullable=False, index=True)
    site_label: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    old_user_id: Mapped[int] = mapped_column(db.BigInteger, nullable=False, index=True)
    new_user_id: Mapped[int] = mapped_column(db.BigInteger, nullable=False, index=True)

    __table_args__ = (UniqueConstraint("site_id", "old_user_id", name="uq_identity_mappings_site_old_user"),)

    def __repr__(self):
        return f"<IdentityMapping site={self.site_id} {self.old_user_id}->{self.new_user_id}>"
