"""
Migrator feature package.

Provides conditional blueprint, CLI and worker registration for the staged
single-site to network-site migration engine.
"""

from __future__ import annotations

from flask import Flask

from migrate_app.utils.migrator import is_migrator_enabled

from .celery_app import EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import get_disabled_migrator_group, migrator_cli
from .errors import (
    BulkOperationError,
    ConfigurationError,
    MigrationInProgressError,
    MigratorError,
    SourceUnavailableError,
)
from .job_service import JobService, ProgressSummary
from .orchestrator import MigrationOrchestrator, MigrationReport
from .views import migrator_blueprint

__all__ = [
    "init_migrator",
    "EXTENSION_KEY",
    "get_celery_app",
    "BulkOperationError",
    "ConfigurationError",
    "JobService",
    "MigrationInProgressError",
    "MigrationOrchestrator",
    "MigrationReport",
    "MigratorError",
    "ProgressSummary",
    "SourceUnavailableError",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = migrator_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(migrator_cli)
    else:
        app.cli.add_command(get_disabled_migrator_group())


def init_migrator(app: Flask) -> None:
    """
    Conditionally mount the migrator blueprint, CLI and Celery app.

    State is recorded in ``app.extensions['migrator']`` for the CLI and views.
    """
    enabled = is_migrator_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("MIGRATOR_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Migrator disabled via MIGRATOR_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)

    if migrator_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(migrator_blueprint)
    elif migrator_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Migrator blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)

    app.logger.info(
        "Migrator enabled (environment=%s, target base prefix=%s)",
        app.config.get("MIGRATOR_ENVIRONMENT"),
        app.config.get("MIGRATOR_TARGET_BASE_PREFIX"),
    )
