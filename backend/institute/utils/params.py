"""Parsing of pagination, sorting, level, date and report-filter query parameters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Tuple

from pymongo import ASCENDING, DESCENDING

from ..levels.errors import ValidationError
from ..levels.transitions import MAX_LEVEL, MIN_LEVEL
from ..levels.windows import CUSTOM, DateRange, end_of_day, parse_window
from .normalize import normalize_campus, normalize_gender, normalize_program


class QueryParamError(ValidationError):
    """Raised when a query string parameter is invalid."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message, {name: message})


@dataclass
class PagingParams:
    page: int
    page_size: int
    sort: Tuple[str, int]
    normalized_sort: str

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size


def parse_int_arg(
    raw_value: str | None,
    *,
    name: str,
    default: int | None,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if raw_value in (None, ""):
        return default

    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        raise QueryParamError(name, f"{name} must be an integer.") from None

    if minimum is not None and value < minimum:
        raise QueryParamError(name, f"{name} must be ≥ {minimum}.")
    if maximum is not None and value > maximum:
        raise QueryParamError(name, f"{name} must be ≤ {maximum}.")
    return value


def parse_level_arg(raw_value: str | None, *, name: str) -> int | None:
    return parse_int_arg(
        raw_value, name=name, default=None, minimum=MIN_LEVEL, maximum=MAX_LEVEL
    )


def parse_date_arg(raw_value: str | None, *, name: str, inclusive_end: bool = False) -> datetime | None:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp.

    A bare date used as an upper bound covers the whole day.
    """

    cleaned = str(raw_value).strip() if raw_value is not None else ""
    if not cleaned:
        return None

    try:
        value = datetime.fromisoformat(cleaned)
    except ValueError:
        raise QueryParamError(name, f"{name} must be a date (YYYY-MM-DD) or ISO timestamp.") from None

    if value.tzinfo is not None:
        value = value.replace(tzinfo=None) - value.utcoffset()
    if inclusive_end and len(cleaned) == 10:
        value = end_of_day(value)
    return value


def _parse_sort_arg(
    raw_sort: str | None,
    *,
    allowed_fields: Mapping[str, str],
    default_sort: str,
) -> Tuple[Tuple[str, int], str]:
    if not allowed_fields:
        raise QueryParamError("sort", "No sort fields configured.")

    sort_value = raw_sort or default_sort
    direction = ASCENDING
    field_key = sort_value

    if sort_value.startswith("-"):
        direction = DESCENDING
        field_key = sort_value[1:]

    if field_key not in allowed_fields:
        options = [
            value
            for field in sorted(allowed_fields)
            for value in (field, f"-{field}")
        ]
        raise QueryParamError("sort", "sort must be one of: " + ", ".join(options) + ".")

    normalized = f"-{field_key}" if direction == DESCENDING else field_key
    return (allowed_fields[field_key], direction), normalized


def parse_paging_params(
    args: Mapping[str, str],
    *,
    default_page: int = 1,
    default_page_size: int = 10,
    max_page_size: int = 100,
    allowed_sort_fields: Mapping[str, str],
    default_sort: str,
) -> PagingParams:
    """Parse standard pagination parameters from a request args mapping."""

    page = parse_int_arg(args.get("page"), name="page", default=default_page, minimum=1)
    page_size = parse_int_arg(
        args.get("page_size"),
        name="page_size",
        default=default_page_size,
        minimum=1,
        maximum=max_page_size,
    )
    sort_tuple, normalized_sort = _parse_sort_arg(
        args.get("sort"),
        allowed_fields=allowed_sort_fields,
        default_sort=default_sort,
    )

    return PagingParams(
        page=page,
        page_size=page_size,
        sort=sort_tuple,
        normalized_sort=normalized_sort,
    )


def parse_window_arg(args: Mapping[str, str], *, default: str = "allTime") -> str:
    # dashboards historically sent ``dateFilter``
    return parse_window(args.get("window") or args.get("dateFilter"), default=default)


def parse_report_filters(args: Mapping[str, str]) -> Dict[str, str]:
    """Canonical gender/program/campus filters; unknown values are rejected."""

    filters: Dict[str, str] = {}

    gender_raw = args.get("gender")
    if gender_raw:
        gender = normalize_gender(gender_raw)
        if gender is None:
            raise QueryParamError("gender", "gender must be Male or Female.")
        filters["gender"] = gender

    program = normalize_program(args.get("program"))
    if program:
        filters["program"] = program

    campus_raw = args.get("campus")
    if campus_raw:
        campus = normalize_campus(campus_raw)
        if campus is None:
            raise QueryParamError("campus", "campus must be Boys or Girls.")
        filters["campus"] = campus

    return filters


def _first_arg(args: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = args.get(name)
        if value not in (None, ""):
            return value
    return None


def parse_date_range_args(args: Mapping[str, str], window: str) -> DateRange | None:
    """``startDate``/``endDate`` bounds of a ``custom`` window.

    The end date covers the whole day. Other windows ignore the bounds.
    """

    if window != CUSTOM:
        return None

    start = parse_date_arg(_first_arg(args, "start_date", "startDate"), name="startDate")
    end = parse_date_arg(
        _first_arg(args, "end_date", "endDate"), name="endDate", inclusive_end=True
    )
    if start is None or end is None:
        message = "A custom window needs startDate and endDate."
        raise QueryParamError("window", message)
    return DateRange(start, end)


def parse_report_args(
    args: Mapping[str, str],
) -> Tuple[str, DateRange | None, Dict[str, Any]]:
    """Window, optional custom range and filters shared by the report endpoints.

    ``min_level`` (or ``minLevel``) keeps students whose level is at least
    that value; it is added to the filters.
    """

    window = parse_window_arg(args)
    date_range = parse_date_range_args(args, window)
    filters: Dict[str, Any] = dict(parse_report_filters(args))

    min_level_raw = _first_arg(args, "min_level", "minLevel")
    if min_level_raw != "all":
        min_level = parse_level_arg(min_level_raw, name="min_level")
        if min_level is not None:
            filters["min_level"] = min_level

    return window, date_range, filters


__all__ = [
    "PagingParams",
    "QueryParamError",
    "parse_date_arg",
    "parse_date_range_args",
    "parse_int_arg",
    "parse_level_arg",
    "parse_paging_params",
    "parse_report_args",
    "parse_report_filters",
    "parse_window_arg",
]
