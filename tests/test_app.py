import json
import logging

from flask import Flask

from config.validation import validate_environment
from migrate_app.models.base import db
from migrate_app.utils.logging_config import JSONFormatter, setup_logging


class TestAppFactory:
    """Application wiring checks"""

    def test_app_creation(self, app):
        assert app is not None
        assert app.config["TESTING"] is True
        assert app.config["MIGRATOR_ENABLED"] is True

    def test_app_database_initialization(self, app):
        assert db.engine is not None
        assert db.session is not None

    def test_migrator_mounted(self, app):
        assert "migrator" in app.blueprints
        assert "migrator" in app.cli.commands

    def test_error_handler_404_returns_json(self, client):
        response = client.get("/nonexistent-route")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Not found"}


class TestEnvironmentValidation:
    """Startup environment validation"""

    PRODUCTION_ENV = {
        "SECRET_KEY": "a-real-secret",
        "DATABASE_URL": "postgresql://jobs@db/migrator",
        "MIGRATOR_ENABLED": "true",
        "MIGRATOR_SOURCE_DATABASE_URL": "mysql+pymysql://wp@db/{db_name}",
        "MIGRATOR_TARGET_DATABASE_URL": "mysql+pymysql://wp@db/network",
    }

    def _set_env(self, monkeypatch, **overrides):
        for key in list(self.PRODUCTION_ENV) + [
            "MIGRATOR_FALLBACK_USER_ID",
            "MIGRATOR_WORKER_ENABLED",
            "CELERY_BROKER_URL",
            "CELERY_SQLITE_PATH",
        ]:
            monkeypatch.delenv(key, raising=False)
        values = dict(self.PRODUCTION_ENV, **overrides)
        for key, value in values.items():
            if value is not None:
                monkeypatch.setenv(key, value)

    def test_non_production_skips_validation(self, monkeypatch):
        self._set_env(monkeypatch, SECRET_KEY=None, DATABASE_URL=None)
        assert validate_environment("development") == (True, [])

    def test_complete_production_environment_is_valid(self, monkeypatch):
        self._set_env(monkeypatch)
        assert validate_environment("production") == (True, [])

    def test_source_url_requires_placeholder(self, monkeypatch):
        self._set_env(monkeypatch, MIGRATOR_SOURCE_DATABASE_URL="mysql+pymysql://wp@db/legacy")
        is_valid, errors = validate_environment("production")
        assert is_valid is False
        assert any("{db_name}" in error for error in errors)

    def test_missing_values_are_all_reported(self, monkeypatch):
        self._set_env(
            monkeypatch,
            SECRET_KEY="your-secret-key",
            MIGRATOR_TARGET_DATABASE_URL=None,
            MIGRATOR_FALLBACK_USER_ID="admin",
            MIGRATOR_WORKER_ENABLED="true",
        )
        is_valid, errors = validate_environment("production")
        assert is_valid is False
        assert len(errors) == 4

    def test_disabled_migrator_skips_store_urls(self, monkeypatch):
        self._set_env(
            monkeypatch,
            MIGRATOR_ENABLED="false",
            MIGRATOR_SOURCE_DATABASE_URL=None,
            MIGRATOR_TARGET_DATABASE_URL=None,
        )
        assert validate_environment("production") == (True, [])


class TestLoggingConfig:
    """Structured logging setup"""

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord("migrate_app.test", logging.INFO, __file__, 10, "Stage %s done", ("users",), None)
        record.migrator_site_id = 2

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Stage users done"
        assert payload["level"] == "INFO"
        assert payload["migrator_site_id"] == 2

    def test_file_logging_writes_json(self, tmp_path):
        app = Flask(__name__)
        app.config.update(
            LOG_LEVEL="INFO",
            LOG_FORMAT="json",
            LOG_DIR=str(tmp_path),
            ENABLE_FILE_LOGGING=True,
            ENABLE_CONSOLE_LOGGING=False,
        )

        setup_logging(app)
        logging.getLogger("migrate_app.migrator").info("Migration started", extra={"migrator_site_id": 7})
        for handler in logging.getLogger("migrate_app").handlers:
            handler.flush()

        lines = (tmp_path / "migrator.log").read_text(encoding="utf-8").splitlines()
        entries = [json.loads(line) for line in lines]
        assert entries[-1]["message"] == "Migration started"
        assert entries[-1]["migrator_site_id"] == 7
        assert logging.getLogger("migrate_app").propagate is False
