"""Seed helper that loads sample enquiries into MongoDB."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from institute.config import ConfigError, get_db_name, get_mongo_uri
from institute.db import utc_now
from institute.levels.ledger import Actor, initial_history
from institute.services.enquiries import MILESTONE_FIELDS
from institute.utils.normalize import campus_for_gender, normalize_gender, normalize_program

SEED_PATH = Path(__file__).resolve().parent / "seed.json"

SEED_ACTOR = Actor(id="seed", name="Seed Script")


def read_seed_file() -> List[Dict[str, Any]]:
    with SEED_PATH.open("r", encoding="utf-8") as seed_file:
        data = json.load(seed_file)
    students = data.get("students") if isinstance(data, dict) else None
    if not isinstance(students, list):
        raise ValueError("Seed file must contain a 'students' list")
    return students


def build_student(raw: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Turn a seed entry into a student document with a consistent ledger.

    ``days_ago`` places the enquiry in the past so every report window has data.
    """

    created_on = now - timedelta(days=int(raw.get("days_ago", 0)))
    level = int(raw.get("current_level", 1))
    gender = normalize_gender(raw.get("gender"))

    document: Dict[str, Any] = {
        "_id": raw["_id"],
        "full_name": raw["full_name"],
        "email": raw.get("email"),
        "phone": raw.get("phone", ""),
        "gender": gender,
        "program": normalize_program(raw.get("program")),
        "campus": campus_for_gender(gender),
        "created_on": created_on,
        "updated_on": created_on,
        "current_level": level,
        "level_history": [
            event.to_document() for event in initial_history(level, created_on, SEED_ACTOR)
        ],
        "remarks": [],
        "deleted_at": None,
    }
    for reached, field in MILESTONE_FIELDS.items():
        if reached <= level:
            document[field] = created_on
    if level == 5:
        document["is_admitted"] = True
        document["admitted_on"] = created_on
    return document


def main() -> None:
    try:
        uri = get_mongo_uri()
        db_name = get_db_name()
    except ConfigError as exc:  # pragma: no cover - simple CLI utility
        print(f"Configuration error: {exc}")
        raise SystemExit(1)

    client = MongoClient(uri, serverSelectionTimeoutMS=5000)
    collection = client[db_name]["students"]

    try:
        now = utc_now()
        documents = [build_student(raw, now) for raw in read_seed_file()]

        collection.delete_many({})
        if documents:
            collection.insert_many(documents)

        print(f"Loaded {len(documents)} student(s) into 'students' collection")
        print(f"Seeding complete for database '{db_name}'.")
    except PyMongoError as exc:  # pragma: no cover - requires Mongo connection
        print(f"MongoDB error: {exc}")
        raise SystemExit(1)
    finally:
        client.close()


if __name__ == "__main__":
    main()
