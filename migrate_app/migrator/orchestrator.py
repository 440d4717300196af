"""
Migration orchestrator.

Sequences stages for one ``MigrationJob``, persists status and
current-operation notes at every stage boundary, and maps any stage failure
to a ``failed`` job before re-raising it to the caller. A per-job lease keeps
two invocations from running the same job at once.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from migrate_app.models import MigrationJob, MigrationJobStatus, db

from .cleanup import CleanupOutcome
from .context import MigrationContext, build_migration_context, resolve_source_url, resolve_target_url
from .errors import ConfigurationError, MigrationInProgressError
from .metrics import record_stage_run
from .registry import STAGE_EXTRA, STAGE_OPTIONS, STAGE_POSTS, StageDescriptor, resolve_stages
from .stages import STAGE_RUNNERS, StageResult

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 6 * 60 * 60

ContextFactory = Callable[..., MigrationContext]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MigrationReport:
    """Outcome of one orchestrator invocation."""

    site_id: int
    status: str
    requested_stage: str | None
    stages: list[StageResult] = field(default_factory=list)

    @property
    def rows_processed(self) -> int:
        return sum(result.rows_processed for result in self.stages)

    @property
    def warnings(self) -> list[str]:
        return [warning for result in self.stages for warning in result.warnings]

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_id": self.site_id,
            "status": self.status,
            "requested_stage": self.requested_stage,
            "rows_processed": self.rows_processed,
            "stages": [result.to_dict() for result in self.stages],
        }


class MigrationOrchestrator:
    """Run a full migration or a single stage for a job."""

    def __init__(
        self,
        *,
        config: Mapping[str, Any],
        session: Session | None = None,
        context_factory: ContextFactory | None = None,
        runners: Mapping[str, Callable[[MigrationContext], StageResult]] | None = None,
    ) -> None:
        self.config = config
        self.session: Session = session or db.session
        self.context_factory = context_factory or build_migration_context
        self.runners = dict(runners or STAGE_RUNNERS)
        self.lease_seconds = int(config.get("MIGRATOR_LEASE_SECONDS") or DEFAULT_LEASE_SECONDS)

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def run(self, site_id: int, *, stage: str | None = None, force: bool = False) -> MigrationReport:
        """
        Run ``stage`` (or every stage in order) for the job targeting ``site_id``.

        Configuration problems raise ``ConfigurationError`` before the job is
        touched. Any failure after the job is marked ``in_progress`` marks it
        ``failed`` with the message kept as the operation note, then re-raises.
        """

        job = self._get_job(site_id)
        descriptors = resolve_stages(stage)
        if stage is not None:
            self._check_prerequisites(job, descriptors[0])
        if self.context_factory is build_migration_context:
            resolve_source_url(self.config, job.source_db_name)
            resolve_target_url(self.config)

        token = self._acquire_lease(job)
        report = MigrationReport(site_id=site_id, status=MigrationJobStatus.IN_PROGRESS.value, requested_stage=stage)
        job.status = MigrationJobStatus.IN_PROGRESS
        job.started_at = _utcnow()
        job.finished_at = None
        job.error_summary = None
        job.current_stage = None
        job.current_operation = "Starting full migration" if stage is None else f"Starting {stage} stage"
        self.session.commit()

        logger.info(
            "Migration started for site %s",
            site_id,
            extra={"migrator_site_id": site_id, "migrator_requested_stage": stage, "migrator_force": force},
        )

        current: StageDescriptor | None = None
        context: MigrationContext | None = None
        try:
            context = self.context_factory(job, self.config, session=self.session, force=force)
            for descriptor in descriptors:
                current = descriptor
                report.stages.append(self._run_stage(job, token, context, descriptor))
        except Exception as exc:
            self._mark_failed(job, token, current, exc)
            raise
        finally:
            if context is not None:
                context.close()

        job.status = MigrationJobStatus.COMPLETED
        job.finished_at = _utcnow()
        job.current_stage = None
        job.current_operation = (
            f"Completed full migration for site {site_id}"
            if stage is None
            else f"Completed {stage} stage for site {site_id}"
        )
        self._release_lease(job)
        self.session.commit()
        report.status = MigrationJobStatus.COMPLETED.value

        logger.info(
            "Migration completed for site %s",
            site_id,
            extra={"migrator_site_id": site_id, "migrator_rows_processed": report.rows_processed},
        )
        return report

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _get_job(self, site_id: int) -> MigrationJob:
        job = self.session.scalar(select(MigrationJob).where(MigrationJob.site_id == site_id))
        if job is None:
            raise ConfigurationError(f"No migration job configured for site {site_id}.")
        return job

    @staticmethod
    def _check_prerequisites(job: MigrationJob, descriptor: StageDescriptor) -> None:
        missing = [name for name in descriptor.requires if name not in job.completed_stages]
        if missing:
            raise ConfigurationError(
                f"Stage '{descriptor.name}' requires {', '.join(missing)} to have completed for site {job.site_id}.",
                stage=descriptor.name,
            )

    def _acquire_lease(self, job: MigrationJob) -> str:
        token = uuid.uuid4().hex
        now = _utcnow()
        result = self.session.execute(
            update(MigrationJob)
            .where(
                MigrationJob.id == job.id,
                or_(
                    MigrationJob.lease_token.is_(None),
                    MigrationJob.lease_expires_at.is_(None),
                    MigrationJob.lease_expires_at < now,
                ),
            )
            .values(lease_token=token, lease_expires_at=now + timedelta(seconds=self.lease_seconds))
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        if result.rowcount != 1:
            raise MigrationInProgressError(job.site_id)
        self.session.refresh(job)
        return token

    def _renew_lease(self, job: MigrationJob, token: str) -> None:
        if job.lease_token != token:
            raise MigrationInProgressError(job.site_id)
        job.lease_expires_at = _utcnow() + timedelta(seconds=self.lease_seconds)

    @staticmethod
    def _release_lease(job: MigrationJob) -> None:
        job.lease_token = None
        job.lease_expires_at = None

    def _run_stage(
        self,
        job: MigrationJob,
        token: str,
        context: MigrationContext,
        descriptor: StageDescriptor,
    ) -> StageResult:
        self._renew_lease(job, token)
        job.current_stage = descriptor.name
        job.current_operation = f"Starting {descriptor.title.lower()} migration"
        self.session.commit()

        started = time.perf_counter()
        try:
            cleanup = self._run_cleanup(context, descriptor)
            result = self.runners[descriptor.name](context)
        except Exception:
            record_stage_run(descriptor.name, outcome="failure", duration_seconds=time.perf_counter() - started)
            raise

        duration = time.perf_counter() - started
        if cleanup is not None:
            result.cleanup = cleanup.to_dict()
        record_stage_run(
            descriptor.name,
            outcome="success",
            duration_seconds=duration,
            rows_processed=result.rows_processed,
            rows_failed=result.rows_failed,
        )

        job.record_counts(descriptor.name, result.counts_payload())
        if not result.skipped:
            job.mark_stage_completed(descriptor.name)
        job.current_operation = (
            f"Completed {descriptor.title.lower()} migration. Total rows: {result.rows_processed}"
            + (f" ({result.rows_failed} failed)" if result.rows_failed else "")
        )
        self.session.commit()

        logger.info(
            "Stage %s finished for site %s",
            descriptor.name,
            job.site_id,
            extra=context.log_extra(
                descriptor.name,
                rows_processed=result.rows_processed,
                rows_failed=result.rows_failed,
                duration_seconds=round(duration, 3),
            ),
        )
        return result

    @staticmethod
    def _run_cleanup(context: MigrationContext, descriptor: StageDescriptor) -> CleanupOutcome | None:
        policy, target = context.cleanup, context.target
        if descriptor.name == STAGE_OPTIONS:
            return policy.clean_options(target, stage=descriptor.name)
        if descriptor.name == STAGE_POSTS:
            return policy.clean_content(target, stage=descriptor.name)
        if descriptor.name == STAGE_EXTRA:
            return policy.clean_extra_tables(
                target,
                migrate_extra_tables=context.settings.migrate_extra_tables,
                stage=descriptor.name,
            )
        return None

    def _mark_failed(
        self,
        job: MigrationJob,
        token: str,
        descriptor: StageDescriptor | None,
        exc: Exception,
    ) -> None:
        self.session.rollback()
        stage_name = getattr(exc, "stage", None) or (descriptor.name if descriptor else None)
        message = str(exc) or exc.__class__.__name__
        job.status = MigrationJobStatus.FAILED
        job.finished_at = _utcnow()
        job.current_stage = stage_name
        job.current_operation = f"{stage_name} stage failed: {message}" if stage_name else f"Migration failed: {message}"
        job.error_summary = message
        if job.lease_token == token:
            self._release_lease(job)
        self.session.commit()
        logger.error(
            "Migration failed for site %s",
            job.site_id,
            exc_info=True,
            extra={"migrator_site_id": job.site_id, "migrator_stage": stage_name},
        )
