# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py loads TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from migrate_app.models import db  # noqa: E402


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "DEBUG",
            "MIGRATOR_ENABLED": True,
            "MIGRATOR_ENVIRONMENT": "testing",
            "MIGRATOR_TARGET_BASE_PREFIX": "wp_",
            "MIGRATOR_FALLBACK_USER_ID": 1,
            "MIGRATOR_BATCH_SIZE": 2,
            "MIGRATOR_SOURCE_DATABASE_URL": None,
            "MIGRATOR_TARGET_DATABASE_URL": None,
            "CELERY_SQLITE_PATH": str(tmp_path / "celery.sqlite"),
        }
    )

    from migrate_app.utils.logging_config import setup_logging

    setup_logging(flask_app)

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()
