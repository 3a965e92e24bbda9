"""
Centralized configuration for the lesson engine service.

Settings are read from the environment on every call so tests can
monkeypatch them. .env and .env.local are loaded by main.py and conftest.py.
"""

import logging
import math
import os

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PCT = 0.95
DEFAULT_AUGMENT_MAX_PER_HOUR = 3


def is_dev_mode() -> bool:
    """Check if running in development mode (--dev flag or DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running in a deployed environment."""
    return bool(os.environ.get("RAILWAY_ENVIRONMENT"))


def is_sql_echo() -> bool:
    return os.environ.get("SQL_ECHO", "").lower() == "true"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "")


def get_api_port() -> int:
    """Get API server port from env or default."""
    return int(os.getenv("API_PORT", "8000"))


def get_frontend_url() -> str:
    return os.environ.get("FRONTEND_URL", "http://localhost:5173").rstrip("/")


def get_allowed_origins() -> list[str]:
    """CORS origins: local dev servers plus the configured frontend."""
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        f"http://localhost:{get_api_port()}",
    ]
    frontend_url = get_frontend_url()
    if frontend_url not in origins:
        origins.append(frontend_url)
    return origins


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    return value if math.isfinite(value) else default


def get_default_threshold_pct() -> float:
    """Fraction of a lesson's duration that must be watched before assessment."""
    value = _get_float("LESSON_THRESHOLD_PCT", DEFAULT_THRESHOLD_PCT)
    return min(max(value, 0.0), 1.0)


def get_augment_max_per_hour() -> int:
    """Maximum augmentations served per user and lesson in a rolling hour."""
    value = _get_float("AUGMENT_MAX_PER_HOUR", DEFAULT_AUGMENT_MAX_PER_HOUR)
    return max(int(value), 0)


# Required environment variables
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("JWT_SECRET", "Secret key for JWT tokens", True),
    ("SENTRY_DSN", "Sentry DSN for error reporting", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        if os.environ.get(name):
            continue
        if is_production():
            errors.append(f"  ✗ {name}: Not set ({description})")
        elif required_in_dev or not in_dev:
            warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        for error in errors:
            logger.error(error)
        return False, warnings

    return True, warnings
