"""
Service helpers for migration job configuration and progress reads.

The CLI and the status blueprint consume these helpers so SQLAlchemy logic for
the control plane stays in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from migrate_app.models import IdentityMapping, MigrationJob, MigrationJobStatus, db

from .errors import ConfigurationError, MigrationInProgressError
from .wordpress import blog_prefix

EDITABLE_FIELDS = (
    "site_label",
    "source_db_name",
    "source_prefix",
    "target_prefix",
    "migrate_extra_tables",
    "clean_unused_data",
)


@dataclass(slots=True)
class ProgressSummary:
    """Serializable progress view of a migration job."""

    site_id: int
    site_label: str | None
    source_db_name: str
    source_prefix: str
    target_prefix: str
    migrate_extra_tables: bool
    clean_unused_data: bool
    status: str
    current_stage: str | None
    current_operation: str | None
    error_summary: str | None
    completed_stages: tuple[str, ...]
    counts: Mapping[str, Any]
    identity_mappings: int
    lease_active: bool
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_id": self.site_id,
            "site_label": self.site_label,
            "source_db_name": self.source_db_name,
            "source_prefix": self.source_prefix,
            "target_prefix": self.target_prefix,
            "migrate_extra_tables": self.migrate_extra_tables,
            "clean_unused_data": self.clean_unused_data,
            "status": self.status,
            "current_stage": self.current_stage,
            "current_operation": self.current_operation,
            "error_summary": self.error_summary,
            "completed_stages": list(self.completed_stages),
            "counts": dict(self.counts),
            "identity_mappings": self.identity_mappings,
            "lease_active": self.lease_active,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
        }


class JobService:
    """Facade for creating, editing and reading migration jobs."""

    def __init__(self, session: Session | None = None, *, base_prefix: str = "wp_") -> None:
        self.session: Session = session or db.session
        self.base_prefix = base_prefix

    # ---------------------------------------------------------------------
    # Configuration records
    # ---------------------------------------------------------------------

    def create_job(
        self,
        *,
        site_id: int,
        source_db_name: str,
        source_prefix: str,
        target_prefix: str | None = None,
        site_label: str | None = None,
        migrate_extra_tables: bool = False,
        clean_unused_data: bool = False,
    ) -> MigrationJob:
        if self._find(site_id) is not None:
            raise ConfigurationError(f"A migration job for site {site_id} already exists.")
        _require_text("source_db_name", source_db_name)
        _require_text("source_prefix", source_prefix)

        job = MigrationJob(
            site_id=int(site_id),
            site_label=site_label,
            source_db_name=source_db_name.strip(),
            source_prefix=source_prefix.strip(),
            target_prefix=(target_prefix or "").strip() or blog_prefix(self.base_prefix, site_id),
            migrate_extra_tables=bool(migrate_extra_tables),
            clean_unused_data=bool(clean_unused_data),
            status=MigrationJobStatus.PENDING,
        )
        self.session.add(job)
        self.session.commit()
        return job

    def update_job(self, site_id: int, **changes: Any) -> MigrationJob:
        job = self.get_job(site_id)
        _ensure_idle(job)
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ConfigurationError("Unsupported job fields: " + ", ".join(unknown) + ".")
        for key, value in changes.items():
            if value is None:
                continue
            if key in ("source_db_name", "source_prefix", "target_prefix"):
                _require_text(key, value)
                value = value.strip()
            setattr(job, key, value)
        self.session.commit()
        return job

    def delete_job(self, site_id: int) -> None:
        """Delete a job; identity mappings are kept so a recreated job resumes with them."""

        job = self.get_job(site_id)
        _ensure_idle(job)
        self.session.delete(job)
        self.session.commit()

    # ---------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------

    def get_job(self, site_id: int) -> MigrationJob:
        job = self._find(site_id)
        if job is None:
            raise ConfigurationError(f"No migration job configured for site {site_id}.")
        return job

    def list_jobs(self, *, statuses: Iterable[str | MigrationJobStatus] | None = None) -> list[MigrationJob]:
        stmt = select(MigrationJob).order_by(MigrationJob.site_id.asc())
        resolved = [_coerce_status(value) for value in (statuses or ()) if value]
        if resolved:
            stmt = stmt.where(MigrationJob.status.in_(resolved))
        return list(self.session.scalars(stmt))

    def progress(self, site_id: int) -> ProgressSummary:
        return self.summarize(self.get_job(site_id))

    def summarize(self, job: MigrationJob) -> ProgressSummary:
        mapping_count = self.session.scalar(
            select(func.count(IdentityMapping.id)).where(IdentityMapping.site_id == job.site_id)
        )
        duration_seconds: float | None = None
        if job.started_at:
            finished = _aware(job.finished_at) or datetime.now(timezone.utc)
            duration_seconds = (finished - _aware(job.started_at)).total_seconds()

        return ProgressSummary(
            site_id=job.site_id,
            site_label=job.site_label,
            source_db_name=job.source_db_name,
            source_prefix=job.source_prefix,
            target_prefix=job.target_prefix,
            migrate_extra_tables=bool(job.migrate_extra_tables),
            clean_unused_data=bool(job.clean_unused_data),
            status=job.status.value if isinstance(job.status, MigrationJobStatus) else str(job.status),
            current_stage=job.current_stage,
            current_operation=job.current_operation,
            error_summary=job.error_summary,
            completed_stages=job.completed_stages,
            counts=dict(job.counts_json or {}),
            identity_mappings=int(mapping_count or 0),
            lease_active=_lease_active(job),
            started_at=job.started_at,
            finished_at=job.finished_at,
            duration_seconds=duration_seconds,
        )

    def _find(self, site_id: int) -> MigrationJob | None:
        return self.session.scalar(select(MigrationJob).where(MigrationJob.site_id == int(site_id)))


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _require_text(name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{name} must be a non-empty string.")


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _lease_active(job: MigrationJob) -> bool:
    if not job.lease_token:
        return False
    expires = _aware(job.lease_expires_at)
    return expires is None or expires > datetime.now(timezone.utc)


def _ensure_idle(job: MigrationJob) -> None:
    if _lease_active(job):
        raise MigrationInProgressError(job.site_id)


def _coerce_status(value: str | MigrationJobStatus) -> MigrationJobStatus:
    if isinstance(value, MigrationJobStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return MigrationJobStatus(normalized)
    except ValueError:
        raise ConfigurationError(f"Unsupported status filter '{value}'.") from None
