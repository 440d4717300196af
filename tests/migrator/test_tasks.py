from __future__ import annotations

import json

from migrate_app.migrator import get_celery_app
from migrate_app.models import MigrationJobStatus, db


def test_run_migration_task_executes_stage(migrator_app, wp, job_factory):
    wp.insert_source("users", {"ID": 1, "user_login": "alice", "user_email": "alice@example.com"})
    job = job_factory()
    task = get_celery_app(migrator_app).tasks["migrator.run_migration"]

    payload = task.apply(kwargs={"site_id": wp.site_id, "stage": "users"}).get()

    assert payload["status"] == "completed"
    assert payload["requested_stage"] == "users"
    assert payload["stages"][0]["counts"]["users_inserted"] == 1
    db.session.refresh(job)
    assert job.status == MigrationJobStatus.COMPLETED


def test_migrate_queue_sends_task(migrator_app, runner, job_factory, monkeypatch):
    job_factory()
    celery_app = get_celery_app(migrator_app)
    sent = {}

    class FakeResult:
        id = "task-123"

    def fake_send_task(name, kwargs=None, **options):
        sent["name"] = name
        sent["kwargs"] = kwargs
        return FakeResult()

    monkeypatch.setattr(celery_app, "send_task", fake_send_task)

    result = runner.invoke(args=["migrator", "migrate", "2", "--stage", "media", "--queue"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"site_id": 2, "stage": "media", "task_id": "task-123", "status": "queued"}
    assert sent == {"name": "migrator.run_migration", "kwargs": {"site_id": 2, "stage": "media", "force": False}}


def test_migrate_queue_requires_configured_job(migrator_app, runner):
    result = runner.invoke(args=["migrator", "migrate", "9", "--queue"])
    assert result.exit_code != 0
    assert "No migration job configured for site 9" in result.output
