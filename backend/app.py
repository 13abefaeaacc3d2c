from __future__ import annotations

import logging
import re
from typing import Any, Dict, Tuple

from flask import Flask, jsonify, request
from pymongo.errors import DuplicateKeyError, PyMongoError

from institute import config
from institute.config import ConfigError
from institute.db import get_students_collection, serialize_student, utc_now
from institute.levels.errors import LevelError, ValidationError
from institute.levels.transitions import coerce_level
from institute.routes import (
    auth_simple_bp,
    current_actor,
    enquiries_bp,
    reports_bp,
    require_admin,
)
from institute.routes.responses import (
    handle_config_error,
    handle_db_error,
    handle_level_error,
    json_error,
)
from institute.services import enquiries
from institute.utils.normalize import normalize_campus, normalize_gender, normalize_program
from institute.utils.params import (
    parse_date_arg,
    parse_level_arg,
    parse_paging_params,
    parse_report_filters,
)

logging.basicConfig(
    level=config.get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.config["SESSION_COOKIE_NAME"] = config.SESSION_COOKIE_NAME

app.register_blueprint(auth_simple_bp)
app.register_blueprint(enquiries_bp)
app.register_blueprint(reports_bp)

logger = logging.getLogger(__name__)

# Level fields only change through PUT /api/students/<id>/level.
_LEDGER_FIELDS = ("current_level", "level", "level_history", "is_admitted", "admitted_on")


def _clean_string(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _validate_student_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    if "_id" in payload and _clean_string(payload.get("_id")):
        cleaned["_id"] = _clean_string(payload.get("_id"))

    if require_all or "full_name" in payload:
        full_name = _clean_string(payload.get("full_name"))
        if full_name:
            cleaned["full_name"] = full_name
        else:
            errors["full_name"] = "Full name is required."

    if "email" in payload:
        email = _clean_string(payload.get("email"))
        if email and ("@" not in email or "." not in email.split("@")[-1]):
            errors["email"] = "Enter a valid email address."
        elif email:
            cleaned["email"] = email.lower()

    if "phone" in payload:
        cleaned["phone"] = _clean_string(payload.get("phone"))

    if "gender" in payload and _clean_string(payload.get("gender")):
        gender = normalize_gender(payload.get("gender"))
        if gender is None:
            errors["gender"] = "Gender must be Male or Female."
        else:
            cleaned["gender"] = gender

    if "program" in payload:
        try:
            program = normalize_program(payload.get("program"))
        except ValidationError as exc:
            errors["program"] = exc.message
        else:
            if program:
                cleaned["program"] = program

    if "campus" in payload and _clean_string(payload.get("campus")):
        campus = normalize_campus(payload.get("campus"))
        if campus is None:
            errors["campus"] = "Campus must be Boys or Girls."
        else:
            cleaned["campus"] = campus

    if require_all:
        raw_level = payload.get("current_level", payload.get("level"))
        if raw_level not in (None, ""):
            try:
                cleaned["current_level"] = coerce_level(raw_level, field="current_level")
            except ValidationError as exc:
                errors.update(exc.details)
    else:
        for field in _LEDGER_FIELDS:
            if field in payload:
                errors[field] = (
                    "Enquiry level cannot be edited here; use the level change endpoint."
                )

    return cleaned, errors


@app.get("/api/health")
def health():
    return jsonify({"ok": True})


@app.get("/api/students")
def list_students():
    try:
        paging = parse_paging_params(
            request.args,
            allowed_sort_fields={
                "full_name": "full_name",
                "created_on": "created_on",
                "current_level": "current_level",
            },
            default_sort="full_name",
        )
        report_filters = parse_report_filters(request.args)
        min_level = parse_level_arg(request.args.get("min_level"), name="min_level")
        max_level = parse_level_arg(request.args.get("max_level"), name="max_level")
        created_from = parse_date_arg(request.args.get("created_from"), name="created_from")
        created_to = parse_date_arg(
            request.args.get("created_to"), name="created_to", inclusive_end=True
        )
    except LevelError as exc:
        return handle_level_error(exc)

    filters: Dict[str, Any] = dict(report_filters)
    if request.args.get("include_deleted") not in ("1", "true"):
        filters["deleted_at"] = None

    query = _clean_string(request.args.get("q"))
    if query:
        pattern = re.escape(query)
        filters["$or"] = [
            {"full_name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]

    level_range: Dict[str, int] = {}
    if min_level is not None:
        level_range["$gte"] = min_level
    if max_level is not None:
        level_range["$lte"] = max_level
    if level_range:
        filters["current_level"] = level_range

    created_range: Dict[str, Any] = {}
    if created_from is not None:
        created_range["$gte"] = created_from
    if created_to is not None:
        created_range["$lte"] = created_to
    if created_range:
        filters["created_on"] = created_range

    try:
        collection = get_students_collection()
        total = collection.count_documents(filters)

        page = paging.page
        page_size = paging.page_size
        max_page = (total + page_size - 1) // page_size if total else 0

        if max_page == 0:
            page = 1
        elif page > max_page:
            page = max_page

        skip = (page - 1) * page_size if total else 0

        cursor = (
            collection.find(filters, projection={"remarks": 0})
            .sort([paging.sort])
            .skip(skip)
            .limit(page_size)
        )

        items = [serialize_student(doc) for doc in cursor]

        return jsonify(
            {
                "items": items,
                "page": page,
                "page_size": page_size,
                "sort": paging.normalized_sort,
                "total": total,
                "has_next": page < max_page if max_page else False,
                "has_prev": page > 1,
            }
        )
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list students", exc)


@app.get("/api/students/<student_id>")
def get_student(student_id: str):
    try:
        document = enquiries.get_student(student_id)
        return jsonify(serialize_student(document, include_history=True))
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load student", exc)


@app.post("/api/students")
@require_admin
def create_student():
    data = request.get_json(silent=True)
    cleaned, errors = _validate_student_payload(data, require_all=True)
    if errors:
        details = {k: v for k, v in errors.items() if k != "_global"}
        message = errors.get("_global", "Validation failed.")
        return json_error(message, 400, details if details else None)

    try:
        document = enquiries.create_student(cleaned, current_actor())
        return jsonify(serialize_student(document, include_history=True)), 201
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        logger.exception("Duplicate key error while creating student")
        return json_error(
            "A student with this email or ID already exists.",
            409,
            {"email": "Email already in use."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to create student", exc)


@app.put("/api/students/<student_id>")
@require_admin
def update_student(student_id: str):
    data = request.get_json(silent=True)
    cleaned, errors = _validate_student_payload(data, require_all=False)

    if "_id" in cleaned and cleaned["_id"] != student_id:
        errors["_id"] = "Student ID cannot be changed."
    cleaned.pop("_id", None)

    if errors:
        return json_error("Validation failed.", 400, errors)

    if not cleaned:
        return json_error("No changes supplied.", 400)

    cleaned["updated_on"] = utc_now()

    try:
        collection = get_students_collection()
        result = collection.update_one(
            {"_id": student_id, "deleted_at": None}, {"$set": cleaned}
        )
        if result.matched_count == 0:
            return json_error("Student not found.", 404)
        return jsonify({"ok": True})
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        logger.exception("Duplicate key error while updating student")
        return json_error(
            "A student with this email already exists.",
            409,
            {"email": "Email already in use."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to update student", exc)


@app.delete("/api/students/<student_id>")
@require_admin
def delete_student(student_id: str):
    hard = request.args.get("hard") in ("1", "true")

    try:
        collection = get_students_collection()
        if hard:
            result = collection.delete_one({"_id": student_id})
            found = result.deleted_count > 0
        else:
            result = collection.update_one(
                {"_id": student_id, "deleted_at": None},
                {"$set": {"deleted_at": utc_now()}},
            )
            found = result.matched_count > 0

        if not found:
            return json_error("Student not found.", 404)

        logger.info("Deleted student %s (%s)", student_id, "hard" if hard else "soft")
        return jsonify({"ok": True, "hard": hard})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete student", exc)


if __name__ == "__main__":
    app.run(debug=True)
