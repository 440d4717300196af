# migrate_app/utils/logging_config.py

"""
Structured logging setup for the migration service.

Handlers are driven by the ``LOG_*`` and ``ENABLE_*_LOGGING`` configuration
keys. JSON output carries any ``extra={...}`` fields attached to a record so
stage/site context ends up in log aggregation.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Attributes present on every LogRecord; everything else came from ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(app):
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        return logging.INFO
    return level


def setup_logging(app):
    """
    Configure ``app.logger`` and the ``migrate_app`` logger hierarchy.

    Safe to call repeatedly; previously installed handlers are replaced so tests
    can re-run it after changing configuration.
    """
    level = _resolve_level(app)
    formatter = _build_formatter(app)
    handlers = []

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "migrator.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for logger in (app.logger, logging.getLogger("migrate_app")):
        for existing in list(logger.handlers):
            logger.removeHandler(existing)
            existing.close()
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)

    # app.logger is named after the import name; keep records from propagating
    # twice when it is not part of the migrate_app hierarchy.
    logging.getLogger("migrate_app").propagate = not handlers

    app.logger.info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "log_handlers": len(handlers)},
    )
    return app.logger
