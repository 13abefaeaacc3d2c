"""Enquiry level and correspondence endpoints."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request
from pymongo.errors import PyMongoError

from ..config import ConfigError
from ..db import serialize_level_event, serialize_remark
from ..levels.errors import LevelError
from ..levels.ledger import BACKFILL_ACTOR_LABEL, history_of, resolve_current_level
from ..levels.transitions import LEVEL_LABELS, MIN_LEVEL
from ..services import enquiries
from ..utils.params import parse_date_arg
from .auth_simple import current_actor, require_admin
from .responses import (
    handle_config_error,
    handle_db_error,
    handle_level_error,
    json_error,
)

enquiries_bp = Blueprint("enquiries", __name__, url_prefix="/api")


def _json_body() -> Dict[str, Any] | None:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None


@enquiries_bp.get("/students/<student_id>/levels")
def level_timeline(student_id: str):
    try:
        document = enquiries.get_student(student_id)
        level = resolve_current_level(document)
        return jsonify(
            {
                "student_id": student_id,
                "current_level": level,
                "current_level_label": LEVEL_LABELS[level],
                "level_history": [
                    serialize_level_event(entry) for entry in history_of(document)
                ],
            }
        )
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load level history", exc)


@enquiries_bp.put("/students/<student_id>/level")
@require_admin
def change_level(student_id: str):
    payload = _json_body()
    if payload is None:
        return json_error("Request body must be JSON.", 400)
    if payload.get("level") in (None, ""):
        return json_error("Level is required.", 400, {"level": "Level is required."})

    try:
        result = enquiries.record_level_change(
            student_id,
            payload.get("level"),
            payload.get("notes"),
            current_actor(),
            payload.get("regression_reason"),
        )
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to update enquiry level", exc)

    message = "Enquiry level updated successfully and correspondence recorded."
    if result.admitted:
        message = "Student officially admitted; correspondence recorded."

    return jsonify(
        {
            "ok": True,
            "message": message,
            "current_level": result.event.level,
            "admitted": result.admitted,
            "event": serialize_level_event(result.event.to_document()),
            "correspondence": serialize_remark(result.remark),
        }
    )


@enquiries_bp.post("/students/<student_id>/backfill")
@require_admin
def backfill_levels(student_id: str):
    payload = _json_body() or {}

    from_level = payload.get("from_level")
    if from_level in (None, ""):
        from_level = MIN_LEVEL
    to_level = payload.get("to_level")
    if to_level == "":
        to_level = None

    try:
        achieved_on = parse_date_arg(payload.get("achieved_on"), name="achieved_on")
        events = enquiries.backfill_student(
            student_id,
            from_level=from_level,
            to_level=to_level,
            achieved_on=achieved_on,
            actor_label=str(payload.get("actor_label") or BACKFILL_ACTOR_LABEL),
        )
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to backfill level history", exc)

    body = {
        "ok": True,
        "created": len(events),
        "events": [serialize_level_event(event.to_document()) for event in events],
    }
    return jsonify(body), 201 if events else 200


@enquiries_bp.post("/students/<student_id>/remarks")
@require_admin
def add_remark(student_id: str):
    payload = _json_body()
    if payload is None:
        return json_error("Request body must be JSON.", 400)

    try:
        entry = enquiries.add_remark(student_id, payload.get("remark"), current_actor())
        return jsonify({"ok": True, "remark": serialize_remark(entry)}), 201
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to add remark", exc)


@enquiries_bp.get("/students/<student_id>/remarks")
def list_remarks(student_id: str):
    try:
        document, remarks = enquiries.list_remarks(student_id)
        return jsonify(
            {
                "student": {
                    "_id": str(document.get("_id", student_id)),
                    "full_name": document.get("full_name"),
                    "email": document.get("email"),
                },
                "remarks": [serialize_remark(entry) for entry in remarks],
            }
        )
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load remarks", exc)


@enquiries_bp.get("/remarks/students")
def students_with_remarks():
    try:
        students = enquiries.students_with_remark_status()
        return jsonify({"students": students, "count": len(students)})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list students with remarks", exc)


__all__ = ["enquiries_bp"]
