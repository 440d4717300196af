# config/validation.py

"""
Environment variable validation for the migration service.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

DB_NAME_PLACEHOLDER = "{db_name}"


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to the job-tracking database.")

    if os.environ.get("MIGRATOR_ENABLED", "true").lower() in {"1", "true", "yes", "on"}:
        source_url = os.environ.get("MIGRATOR_SOURCE_DATABASE_URL", "")
        if not source_url:
            errors.append("MIGRATOR_SOURCE_DATABASE_URL is required when the migrator is enabled.")
        elif DB_NAME_PLACEHOLDER not in source_url:
            errors.append(
                f"MIGRATOR_SOURCE_DATABASE_URL must contain the {DB_NAME_PLACEHOLDER} placeholder "
                "so each job can point at its own source database."
            )
        if not os.environ.get("MIGRATOR_TARGET_DATABASE_URL"):
            errors.append("MIGRATOR_TARGET_DATABASE_URL is required when the migrator is enabled.")

    fallback_user_id = os.environ.get("MIGRATOR_FALLBACK_USER_ID")
    if fallback_user_id is not None and not fallback_user_id.strip().isdigit():
        errors.append("MIGRATOR_FALLBACK_USER_ID must be a positive integer.")

    if os.environ.get("MIGRATOR_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL") and not os.environ.get("CELERY_SQLITE_PATH"):
            errors.append("CELERY_BROKER_URL or CELERY_SQLITE_PATH is required when MIGRATOR_WORKER_ENABLED=true")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
