"""Migrator Celery tasks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from .orchestrator import MigrationOrchestrator


@shared_task(name="migrator.healthcheck", bind=True)
def migrator_healthcheck(self) -> dict[str, Any]:
    """Heartbeat task used by worker health checks."""

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="migrator.run_migration", bind=True)
def run_migration(self, *, site_id: int, stage: str | None = None, force: bool = False) -> dict[str, Any]:
    """
    Run a migration (or one stage) for ``site_id`` on the worker.

    Failures are recorded on the job by the orchestrator and re-raised so the
    task result reflects them.
    """

    current_app.logger.info(
        "Migration task started",
        extra={
            "migrator_site_id": site_id,
            "migrator_stage": stage,
            "migrator_force": force,
            "migrator_task_id": self.request.id,
        },
    )
    report = MigrationOrchestrator(config=current_app.config).run(site_id, stage=stage, force=force)
    return report.to_dict()
