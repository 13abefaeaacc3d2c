"""Reports and analytics endpoints."""

from __future__ import annotations

import csv
import io
import logging

from flask import Blueprint, Response, jsonify, request
from pymongo.errors import PyMongoError

from ..config import ConfigError
from ..levels.errors import LevelError
from ..services import reporting
from ..utils.params import parse_date_range_args, parse_report_args, parse_window_arg
from .responses import (
    handle_config_error,
    handle_db_error,
    handle_level_error,
    string_keys,
)

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

logger = logging.getLogger(__name__)

CSV_FIELDNAMES = [
    "student_id",
    "full_name",
    "gender",
    "program",
    "campus",
    "level",
    "achieved_on",
    "actor_name",
    "is_regression",
    "previous_level",
]


def _window_fields(window, date_range):
    fields = {"window": window}
    if date_range is not None:
        fields["date_range"] = {
            "start": date_range.start.isoformat(),
            "end": date_range.end.isoformat(),
        }
    return fields


@reports_bp.get("/progression")
def progression_report():
    try:
        window, date_range, filters = parse_report_args(request.args)
        levels = reporting.get_progression_report(window, filters, date_range=date_range)
        return jsonify(
            {
                **_window_fields(window, date_range),
                "filters": filters,
                "levels": string_keys(levels),
            }
        )
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to generate progression report", exc)


@reports_bp.get("/level-breakdown")
def level_breakdown():
    try:
        window = parse_window_arg(request.args)
        date_range = parse_date_range_args(request.args, window)
        breakdown = reporting.get_level_breakdown(window, date_range=date_range)
        return jsonify({**_window_fields(window, date_range), "levels": string_keys(breakdown)})
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to generate level breakdown", exc)


@reports_bp.get("/principal-stats")
def principal_stats():
    try:
        window, date_range, filters = parse_report_args(request.args)
        stats = reporting.get_principal_stats(window, filters, date_range=date_range)
        return jsonify(
            {
                **_window_fields(window, date_range),
                "filters": filters,
                "data": string_keys(stats),
            }
        )
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to generate principal stats", exc)


@reports_bp.get("/overview")
def overview():
    try:
        return jsonify(string_keys(reporting.get_overview()))
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to generate overview", exc)


@reports_bp.get("/integrity")
def integrity():
    try:
        problems = reporting.find_integrity_issues()
        return jsonify({"count": len(problems), "students": problems})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to check level history integrity", exc)


@reports_bp.get("/level-history.csv")
def export_level_history_csv():
    try:
        window, date_range, filters = parse_report_args(request.args)
        rows = reporting.export_level_history_rows(window, filters, date_range=date_range)
    except LevelError as exc:
        return handle_level_error(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to export level history", exc)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_FIELDNAMES)
    writer.writeheader()
    writer.writerows(rows)

    logger.info("Exported %d level history row(s) for window %s", len(rows), window)

    filename = f"level_history_{window}.csv"
    response = Response(output.getvalue(), mimetype="text/csv")
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response


__all__ = ["reports_bp"]
