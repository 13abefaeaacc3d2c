"""Application configuration helpers."""

import logging
import os

from dotenv import load_dotenv

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_DOTENV_PATH = os.path.join(_BASE_DIR, ".env")

if os.path.exists(_DOTENV_PATH):
    load_dotenv(_DOTENV_PATH)


class ConfigError(RuntimeError):
    """Raised when configuration values are missing or invalid."""


SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "institute_session")

# Staff account allowed to record level changes and run backfills.
ADMIN_USER = os.getenv("ADMIN_USER", "admin")
ADMIN_PASS = os.getenv("ADMIN_PASS", "admin")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_MONGO_URI_CACHE = None
_DB_NAME_CACHE = None


def get_log_level():
    """Return the numeric logging level, falling back to INFO for unknown names."""

    level = logging.getLevelName(LOG_LEVEL)
    return level if isinstance(level, int) else logging.INFO


def get_mongo_uri():
    """Return the MongoDB connection string from the environment."""

    global _MONGO_URI_CACHE

    if _MONGO_URI_CACHE:
        return _MONGO_URI_CACHE

    uri = os.getenv("MONGODB_URI")
    if not uri:
        raise ConfigError("MONGODB_URI is not set. Define it in backend/.env.")

    _MONGO_URI_CACHE = uri
    return uri


def get_db_name():
    """Return the database name from MONGODB_DB or the path of the MongoDB URI."""

    global _DB_NAME_CACHE

    if _DB_NAME_CACHE:
        return _DB_NAME_CACHE

    db_name = os.getenv("MONGODB_DB")
    if db_name:
        _DB_NAME_CACHE = db_name
        return db_name

    missing = ConfigError(
        "Database name not found. Provide it via MONGODB_URI or MONGODB_DB."
    )

    main = get_mongo_uri().split("?", 1)[0].rstrip("/")
    after_scheme = main.split("://", 1)[1] if "://" in main else main
    if "/" not in after_scheme:
        raise missing

    candidate = after_scheme.split("/", 1)[1]
    if not candidate:
        raise missing

    _DB_NAME_CACHE = candidate
    return candidate


__all__ = [
    "ADMIN_NAME",
    "ADMIN_PASS",
    "ADMIN_USER",
    "ConfigError",
    "LOG_LEVEL",
    "SECRET_KEY",
    "SESSION_COOKIE_NAME",
    "get_db_name",
    "get_log_level",
    "get_mongo_uri",
]
