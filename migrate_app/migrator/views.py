"""
Migrator blueprint endpoints for health and job progress.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request

from migrate_app.utils.migrator import get_target_base_prefix, is_migrator_enabled

from .celery_app import DEFAULT_QUEUE_NAME, EXTENSION_KEY
from .errors import ConfigurationError
from .job_service import JobService
from .registry import get_stage_registry

migrator_blueprint = Blueprint("migrator", __name__, url_prefix="/migrator")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _ensure_migrator_enabled_api():
    if not is_migrator_enabled(current_app):
        return _json_error("Migrator is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _job_service() -> JobService:
    return JobService(base_prefix=get_target_base_prefix(current_app))


@migrator_blueprint.get("/health")
def migrator_healthcheck():
    """Lightweight health endpoint proving the migrator blueprint mounted correctly."""
    state = current_app.extensions.get(EXTENSION_KEY, {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker_enabled": state.get("worker_enabled", False),
                "queue": DEFAULT_QUEUE_NAME,
                "environment": current_app.config.get("MIGRATOR_ENVIRONMENT"),
                "stages": [
                    {"name": descriptor.name, "title": descriptor.title, "requires": list(descriptor.requires)}
                    for descriptor in get_stage_registry().values()
                ],
            }
        ),
        HTTPStatus.OK,
    )


@migrator_blueprint.get("/jobs")
def migrator_jobs_list():
    enabled_response = _ensure_migrator_enabled_api()
    if enabled_response:
        return enabled_response

    statuses = [token.strip() for token in request.args.get("status", "").split(",") if token.strip()]
    service = _job_service()
    start_time = time.perf_counter()
    try:
        jobs = service.list_jobs(statuses=statuses)
    except ConfigurationError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    payload = {"jobs": [service.summarize(job).to_dict() for job in jobs], "total": len(jobs)}
    current_app.logger.info(
        "Migration jobs list retrieved",
        extra={
            "migrator_job_count": len(jobs),
            "migrator_status_filter": statuses,
            "migrator_response_time_ms": round((time.perf_counter() - start_time) * 1000, 2),
        },
    )
    return jsonify(payload), HTTPStatus.OK


@migrator_blueprint.get("/jobs/<int:site_id>")
def migrator_job_detail(site_id: int):
    enabled_response = _ensure_migrator_enabled_api()
    if enabled_response:
        return enabled_response

    try:
        summary = _job_service().progress(site_id)
    except ConfigurationError as exc:
        return _json_error(str(exc), HTTPStatus.NOT_FOUND)
    return jsonify(summary.to_dict()), HTTPStatus.OK
