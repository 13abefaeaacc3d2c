"""JSON error responses shared by the route modules."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from flask import jsonify
from pymongo.errors import PyMongoError

from ..config import ConfigError
from ..levels.errors import (
    InvalidTransition,
    LevelError,
    NotFound,
    StaleLedger,
    ValidationError,
)

logger = logging.getLogger(__name__)


def json_error(message: str, status: int, details: Mapping[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = dict(details)
    return jsonify(payload), status


def handle_config_error(exc: ConfigError):
    logger.exception("Missing configuration for MongoDB")
    return json_error(str(exc), 500)


def handle_db_error(action: str, exc: PyMongoError):
    logger.exception("%s due to MongoDB error", action)
    return json_error("Database unavailable. Please try again later.", 503)


def handle_level_error(exc: LevelError):
    if isinstance(exc, NotFound):
        return json_error("Student not found.", 404)
    if isinstance(exc, InvalidTransition):
        return json_error(
            exc.reason,
            409,
            {
                "current_level": exc.current_level,
                "requested_level": exc.requested_level,
            },
        )
    if isinstance(exc, StaleLedger):
        return json_error(str(exc), 409)
    if isinstance(exc, ValidationError):
        return json_error(exc.message, 400, exc.details)
    return json_error(str(exc), 400)


def string_keys(mapping: Mapping[Any, Any]) -> Dict[str, Any]:
    """Recursively turn int level keys into strings for JSON payloads."""

    return {
        str(key): string_keys(value) if isinstance(value, Mapping) else value
        for key, value in mapping.items()
    }


__all__ = [
    "handle_config_error",
    "handle_db_error",
    "handle_level_error",
    "json_error",
    "string_keys",
]
