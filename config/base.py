# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """
    Parse an integer environment value, falling back to ``default``.

    Values below ``minimum`` are clamped up to it.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return minimum
    return number


def _resolve_environment():
    """
    Name the deployment environment that gates destructive cleanup.

    ``WP_ENV`` wins so the value matches the WordPress install being migrated;
    ``FLASK_ENV`` is used otherwise.
    """
    return (os.environ.get("WP_ENV") or os.environ.get("FLASK_ENV") or "development").strip().lower()


_config_dir = os.path.dirname(os.path.abspath(__file__))
_project_root = os.path.dirname(_config_dir)
DENYLIST_DIR = os.path.join(_config_dir, "denylists")


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Migrator configuration
    MIGRATOR_ENABLED = _coerce_bool(os.environ.get("MIGRATOR_ENABLED"), default=True)
    MIGRATOR_ENVIRONMENT = _resolve_environment()

    # Source URL is a template; "{db_name}" is replaced with each job's database name.
    MIGRATOR_SOURCE_DATABASE_URL = os.environ.get("MIGRATOR_SOURCE_DATABASE_URL")
    MIGRATOR_TARGET_DATABASE_URL = os.environ.get("MIGRATOR_TARGET_DATABASE_URL")
    MIGRATOR_TARGET_BASE_PREFIX = os.environ.get("MIGRATOR_TARGET_BASE_PREFIX", "wp_")
    MIGRATOR_FALLBACK_USER_ID = _coerce_int(os.environ.get("MIGRATOR_FALLBACK_USER_ID"), 1, minimum=1)
    MIGRATOR_BATCH_SIZE = _coerce_int(os.environ.get("MIGRATOR_BATCH_SIZE"), 500, minimum=1)
    MIGRATOR_LEASE_SECONDS = _coerce_int(os.environ.get("MIGRATOR_LEASE_SECONDS"), 6 * 60 * 60, minimum=60)

    MIGRATOR_UNUSED_USERMETA_PATH = os.environ.get(
        "MIGRATOR_UNUSED_USERMETA_PATH",
        os.path.join(DENYLIST_DIR, "unused_usermeta.yaml"),
    )
    # Unset means no exclusions.
    MIGRATOR_UNUSED_POSTMETA_PATH = os.environ.get("MIGRATOR_UNUSED_POSTMETA_PATH")
    MIGRATOR_UNUSED_OPTIONS_PATH = os.environ.get("MIGRATOR_UNUSED_OPTIONS_PATH")

    # Background worker
    MIGRATOR_WORKER_ENABLED = _coerce_bool(os.environ.get("MIGRATOR_WORKER_ENABLED"), default=False)
    MIGRATOR_TASK_TIME_LIMIT = _coerce_int(os.environ.get("MIGRATOR_TASK_TIME_LIMIT"), 6 * 60 * 60, minimum=60)
    MIGRATOR_TASK_SOFT_TIME_LIMIT = _coerce_int(
        os.environ.get("MIGRATOR_TASK_SOFT_TIME_LIMIT"), 5 * 60 * 60 + 45 * 60, minimum=60
    )
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path_normalized = os.path.join(instance_path, "migrator_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = False
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    MIGRATOR_ENABLED = True
    MIGRATOR_ENVIRONMENT = "testing"
    MIGRATOR_BATCH_SIZE = 2


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    MIGRATOR_ENVIRONMENT = (os.environ.get("WP_ENV") or "production").strip().lower()
