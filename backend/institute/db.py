"""MongoDB helpers for the application."""

from datetime import datetime, timezone

from pymongo import ASCENDING, DESCENDING, IndexModel, MongoClient
from pymongo.collection import Collection

from .config import get_db_name, get_mongo_uri
from .levels.ledger import history_of, resolve_current_level

_MONGO_CLIENT = None
_MONGO_DB = None


def _get_client():
    """Create (or reuse) a MongoDB client using the configured URI."""

    global _MONGO_CLIENT

    if _MONGO_CLIENT is None:
        _MONGO_CLIENT = MongoClient(get_mongo_uri(), serverSelectionTimeoutMS=5000)
    return _MONGO_CLIENT


def get_db():
    """Return the application's MongoDB database instance."""

    global _MONGO_DB

    if _MONGO_DB is None:
        _MONGO_DB = _get_client()[get_db_name()]
    return _MONGO_DB


def utc_now() -> datetime:
    """Current time as the naive UTC datetime pymongo hands back on reads."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


_students_indexes_created = False


def _ensure_students_indexes(collection: Collection) -> None:
    global _students_indexes_created
    if _students_indexes_created:
        return

    collection.create_indexes(
        [
            IndexModel(
                [("email", ASCENDING)],
                name="unique_email",
                unique=True,
                sparse=True,
            ),
            IndexModel(
                [("current_level", ASCENDING), ("created_on", DESCENDING)],
                name="level_created",
                background=True,
            ),
            IndexModel(
                [("level_history.achieved_on", ASCENDING)],
                name="level_history_achieved_on",
                background=True,
            ),
            IndexModel(
                [("full_name", ASCENDING)],
                name="full_name_asc",
                background=True,
            ),
        ]
    )
    _students_indexes_created = True


def get_students_collection() -> Collection:
    """Return the collection that stores student and enquiry documents."""

    collection = get_db()["students"]
    _ensure_students_indexes(collection)
    return collection


def _isoformat(value):
    return value.isoformat() if isinstance(value, datetime) else None


def serialize_level_event(entry):
    """Convert a level_history sub-document into a JSON-serialisable dict."""

    event = {
        "level": entry.get("level"),
        "achieved_on": _isoformat(entry.get("achieved_on")),
        "actor_id": entry.get("actor_id"),
        "actor_name": entry.get("actor_name") or "System",
        "is_regression": bool(entry.get("is_regression", False)),
    }
    if event["is_regression"]:
        event["previous_level"] = entry.get("previous_level")
    for optional in ("reason", "notes"):
        if entry.get(optional):
            event[optional] = entry.get(optional)
    return event


def serialize_remark(entry):
    return {
        "remark": entry.get("remark"),
        "author_id": entry.get("author_id"),
        "author_name": entry.get("author_name"),
        "timestamp": _isoformat(entry.get("timestamp")),
    }


def serialize_student(document, *, include_history=False):
    """Convert a MongoDB student document into a JSON-serialisable dict.

    ``current_level`` is resolved from the ledger so stale stored values are
    never reported.
    """

    student = {
        "_id": str(document.get("_id", "")),
        "full_name": document.get("full_name"),
        "email": document.get("email"),
        "gender": document.get("gender"),
        "program": document.get("program"),
        "campus": document.get("campus"),
        "current_level": resolve_current_level(document),
        "created_on": _isoformat(document.get("created_on")),
        "is_admitted": bool(document.get("is_admitted", False)),
    }

    if "phone" in document:
        student["phone"] = document.get("phone")
    if document.get("admitted_on"):
        student["admitted_on"] = _isoformat(document.get("admitted_on"))
    if document.get("deleted_at"):
        student["deleted_at"] = _isoformat(document.get("deleted_at"))
    if include_history:
        student["level_history"] = [
            serialize_level_event(entry) for entry in history_of(document)
        ]

    return student


__all__ = [
    "get_db",
    "get_students_collection",
    "serialize_level_event",
    "serialize_remark",
    "serialize_student",
    "utc_now",
]
