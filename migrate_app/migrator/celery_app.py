"""
Celery wiring for out-of-process migrations.

``flask migrator migrate --queue`` sends ``migrator.run_migration`` to the
``migrations`` queue and ``flask migrator worker run`` consumes it. Without a
configured broker both sides share a SQLite file in the instance folder.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from celery import Celery
from flask import Flask
from kombu import Queue

from .errors import ConfigurationError

DEFAULT_QUEUE_NAME = "migrations"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
EXTENSION_KEY = "migrator"


def _sqlite_transport_path(app: Flask) -> str:
    path = Path(app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.as_posix()


def _extra_conf(app: Flask) -> dict[str, Any]:
    raw = app.config.get("CELERY_CONFIG")
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"CELERY_CONFIG is not valid JSON: {exc}") from exc
    return dict(raw)


def create_celery_app(app: Flask) -> Celery:
    """Build the Celery app for ``app``; tasks run inside its application context."""

    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker_url and result_backend):
        sqlite_path = _sqlite_transport_path(app)
        broker_url = broker_url or f"sqla+sqlite:///{sqlite_path}"
        result_backend = result_backend or f"db+sqlite:///{sqlite_path}"

    celery_app = Celery(app.import_name, broker=broker_url, backend=result_backend)
    celery_app.conf.update(
        task_default_queue=DEFAULT_QUEUE_NAME,
        task_queues=[Queue(DEFAULT_QUEUE_NAME)],
        # One migration per worker slot.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_time_limit=app.config.get("MIGRATOR_TASK_TIME_LIMIT", 6 * 60 * 60),
        task_soft_time_limit=app.config.get("MIGRATOR_TASK_SOFT_TIME_LIMIT", 5 * 60 * 60 + 45 * 60),
        worker_hijack_root_logger=False,
    )
    celery_app.conf.update(_extra_conf(app))

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    # Registers the shared tasks with this app.
    from . import tasks  # noqa: F401

    app.logger.info(
        "Migrator Celery app configured",
        extra={"migrator_celery_broker_url": broker_url, "migrator_celery_queue": DEFAULT_QUEUE_NAME},
    )
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    """Return the app's Celery instance, or None when the migrator is disabled."""

    state = app.extensions.get(EXTENSION_KEY)
    if not state or not state.get("enabled"):
        return None
    return ensure_celery_app(app, state)
