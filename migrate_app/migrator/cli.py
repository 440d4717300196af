"""
CLI commands for configuring and running site migrations.

Mounted on the Flask CLI as ``flask migrator``.
"""

from __future__ import annotations

import json
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import AppGroup, ScriptInfo

from migrate_app.utils.migrator import get_target_base_prefix, is_migrator_enabled

from .celery_app import DEFAULT_QUEUE_NAME, EXTENSION_KEY, get_celery_app
from .errors import MigratorError
from .job_service import JobService
from .orchestrator import MigrationOrchestrator
from .registry import stage_names


@click.group(name="migrator", cls=AppGroup, invoke_without_command=True)
@click.pass_context
def migrator_cli(ctx):
    """
    Site migration commands.

    Lists configured jobs when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_migrator_enabled(app):
        raise click.ClickException("Migrator is disabled via MIGRATOR_ENABLED=false. Enable it to run migrations.")
    if ctx.invoked_subcommand is None:
        ctx.invoke(list_jobs)


def get_disabled_migrator_group() -> click.Group:
    """Return a minimal command group that informs the operator the migrator is disabled."""

    @click.group(name="migrator", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Migrator commands are unavailable because MIGRATOR_ENABLED=false.")

    return disabled_group


def _job_service() -> JobService:
    return JobService(base_prefix=get_target_base_prefix())


def _fail(exc: MigratorError) -> click.ClickException:
    stage = getattr(exc, "stage", None)
    prefix = f"[{stage}] " if stage else ""
    return click.ClickException(f"{prefix}{exc}")


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Migrator Celery app is unavailable. Ensure MIGRATOR_ENABLED=true before running worker commands."
        )
    return celery_app


@migrator_cli.command("list")
@click.option("--status", "statuses", multiple=True, help="Only show jobs in this status (repeatable).")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table.")
def list_jobs(statuses: tuple[str, ...] = (), as_json: bool = False):
    """List sites configured for migration."""
    service = _job_service()
    try:
        jobs = service.list_jobs(statuses=statuses)
    except MigratorError as exc:
        raise _fail(exc) from exc

    if as_json:
        click.echo(json.dumps([service.summarize(job).to_dict() for job in jobs], indent=2))
        return
    if not jobs:
        click.echo("No sites found.")
        return

    click.echo(f"{'Site ID':>7}  {'Database':<24} {'Prefix':<10} {'Target':<10} Status")
    for job in jobs:
        click.echo(
            f"{job.site_id:>7}  {job.source_db_name:<24} {job.source_prefix:<10} "
            f"{job.target_prefix:<10} {job.status.value}"
        )


@migrator_cli.command("add")
@click.argument("site_id", type=int)
@click.option("--db-name", required=True, help="Name of the source single-site database.")
@click.option("--source-prefix", default="wp_", show_default=True, help="Table prefix of the source site.")
@click.option("--target-prefix", help="Table prefix of the target site (defaults to the network's blog prefix).")
@click.option("--label", help="Human readable site label.")
@click.option("--extra-tables/--no-extra-tables", default=False, show_default=True)
@click.option("--clean-unused/--no-clean-unused", default=False, show_default=True)
def add_job(
    site_id: int,
    db_name: str,
    source_prefix: str,
    target_prefix: Optional[str],
    label: Optional[str],
    extra_tables: bool,
    clean_unused: bool,
):
    """Configure a site for migration."""
    try:
        job = _job_service().create_job(
            site_id=site_id,
            source_db_name=db_name,
            source_prefix=source_prefix,
            target_prefix=target_prefix,
            site_label=label,
            migrate_extra_tables=extra_tables,
            clean_unused_data=clean_unused,
        )
    except MigratorError as exc:
        raise _fail(exc) from exc
    click.echo(f"Site {job.site_id} configured ({job.source_db_name}.{job.source_prefix}* -> {job.target_prefix}*).")


@migrator_cli.command("update")
@click.argument("site_id", type=int)
@click.option("--db-name", help="Name of the source single-site database.")
@click.option("--source-prefix", help="Table prefix of the source site.")
@click.option("--target-prefix", help="Table prefix of the target site.")
@click.option("--label", help="Human readable site label.")
@click.option("--extra-tables/--no-extra-tables", default=None)
@click.option("--clean-unused/--no-clean-unused", default=None)
def update_job(
    site_id: int,
    db_name: Optional[str],
    source_prefix: Optional[str],
    target_prefix: Optional[str],
    label: Optional[str],
    extra_tables: Optional[bool],
    clean_unused: Optional[bool],
):
    """Edit a site's migration configuration."""
    try:
        _job_service().update_job(
            site_id,
            source_db_name=db_name,
            source_prefix=source_prefix,
            target_prefix=target_prefix,
            site_label=label,
            migrate_extra_tables=extra_tables,
            clean_unused_data=clean_unused,
        )
    except MigratorError as exc:
        raise _fail(exc) from exc
    click.echo(f"Site {site_id} updated.")


@migrator_cli.command("delete")
@click.argument("site_id", type=int)
@click.confirmation_option(prompt="Delete this migration job?")
def delete_job(site_id: int):
    """Delete a site's migration job. Migrated data and identity mappings are kept."""
    try:
        _job_service().delete_job(site_id)
    except MigratorError as exc:
        raise _fail(exc) from exc
    click.echo(f"Site {site_id} deleted.")


@migrator_cli.command("migrate")
@click.argument("site_id", type=int)
@click.option("--stage", type=click.Choice(stage_names()), help="Run only this stage.")
@click.option("--force", is_flag=True, help="Allow destructive cleanup even in production.")
@click.option("--queue", "queued", is_flag=True, help="Enqueue the migration on the worker instead of running inline.")
@click.option("--json", "as_json", is_flag=True, help="Emit the run report as JSON.")
@click.pass_context
def migrate(ctx, site_id: int, stage: Optional[str], force: bool, queued: bool, as_json: bool):
    """Migrate data from the source site into the network site."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()

    if queued:
        try:
            _job_service().get_job(site_id)
        except MigratorError as exc:
            raise _fail(exc) from exc
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                "migrator.run_migration",
                kwargs={"site_id": site_id, "stage": stage, "force": force},
            )
        except Exception as exc:  # pragma: no cover - broker failures
            raise click.ClickException(f"Failed to enqueue migration for site {site_id}: {exc}") from exc
        app.logger.info(
            "Migration queued via CLI",
            extra={"migrator_site_id": site_id, "migrator_stage": stage, "migrator_task_id": async_result.id},
        )
        click.echo(json.dumps({"site_id": site_id, "stage": stage, "task_id": async_result.id, "status": "queued"}))
        return

    try:
        report = MigrationOrchestrator(config=app.config).run(site_id, stage=stage, force=force)
    except MigratorError as exc:
        raise _fail(exc) from exc

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, sort_keys=True))
        return
    for result in report.stages:
        if result.skipped:
            click.echo(f"{result.stage}: skipped")
            continue
        failed = f", {result.rows_failed} failed" if result.rows_failed else ""
        click.echo(f"{result.stage}: {result.rows_processed} rows{failed}")
        for warning in result.warnings:
            click.echo(f"  warning: {warning}", err=True)
    if stage:
        click.echo(f"Stage '{stage}' completed successfully for site {site_id}")
    else:
        click.echo(f"Migration completed successfully for site {site_id}")


@migrator_cli.command("progress")
@click.argument("site_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Emit JSON.")
def progress(site_id: int, as_json: bool):
    """Show migration progress for a site."""
    try:
        summary = _job_service().progress(site_id)
    except MigratorError as exc:
        raise _fail(exc) from exc

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
        return
    click.echo(f"Migration Status for Site {site_id}:")
    click.echo("----------------------------------------")
    click.echo(f"Status: {summary.status.replace('_', ' ').capitalize()}")
    if summary.current_operation:
        click.echo(f"Operation: {summary.current_operation}")
    if summary.completed_stages:
        click.echo(f"Completed stages: {', '.join(summary.completed_stages)}")
    for stage, counts in summary.counts.items():
        rendered = ", ".join(f"{key}={value}" for key, value in counts.items())
        click.echo(f"  {stage}: {rendered}")
    click.echo(f"Identity mappings: {summary.identity_mappings}")
    click.echo("----------------------------------------")


@migrator_cli.group(name="worker")
def worker_group():
    """Manage the migrator background worker."""


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    app.extensions.setdefault(EXTENSION_KEY, {})["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting migrator worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Validate worker connectivity by executing the heartbeat task."""
    info = ctx.ensure_object(ScriptInfo)
    celery_app = _resolve_celery(info.load_app())
    task = celery_app.tasks.get("migrator.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'migrator.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))
