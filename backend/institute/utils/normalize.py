"""Canonical gender, program and campus values for student records."""

from __future__ import annotations

from typing import Any, Dict, Tuple

from ..levels.errors import ValidationError

MALE = "Male"
FEMALE = "Female"

BOYS_CAMPUS = "Boys"
GIRLS_CAMPUS = "Girls"

_GENDER_ALIASES: Dict[str, str] = {
    "male": MALE,
    "m": MALE,
    "boy": MALE,
    "boys": MALE,
    "female": FEMALE,
    "f": FEMALE,
    "girl": FEMALE,
    "girls": FEMALE,
}

PROGRAMS: Tuple[str, ...] = (
    "ICS-PHY",
    "ICS-STAT",
    "ICOM",
    "Pre Engineering",
    "Pre Medical",
    "FA",
    "FA IT",
    "General Science",
)

_PROGRAM_ALIASES: Dict[str, str] = {program.lower(): program for program in PROGRAMS}
_PROGRAM_ALIASES.update(
    {
        "ics": "ICS-PHY",
        "ics phy": "ICS-PHY",
        "ics stat": "ICS-STAT",
        "f.a": "FA",
        "f.a.": "FA",
        "f.a it": "FA IT",
        "fa-it": "FA IT",
        "pre eng": "Pre Engineering",
        "pre-engineering": "Pre Engineering",
        "pre med": "Pre Medical",
        "pre-medical": "Pre Medical",
    }
)


def _clean(value: Any) -> str:
    return " ".join(str(value).split()) if value is not None else ""


def clean_label(value: Any) -> str | None:
    """Whitespace-collapsed text, or None when blank."""

    return _clean(value) or None


def normalize_gender(value: Any) -> str | None:
    """Return ``Male``/``Female`` for any known spelling, otherwise None."""

    cleaned = _clean(value)
    if not cleaned:
        return None
    return _GENDER_ALIASES.get(cleaned.lower())


def normalize_program(value: Any, *, strict: bool = True) -> str | None:
    cleaned = _clean(value)
    if not cleaned:
        return None

    program = _PROGRAM_ALIASES.get(cleaned.lower())
    if program is None and strict:
        message = "Invalid program. Valid programs are: " + ", ".join(PROGRAMS) + "."
        raise ValidationError(message, {"program": message})
    return program


def campus_for_gender(gender: str | None) -> str:
    return GIRLS_CAMPUS if gender == FEMALE else BOYS_CAMPUS


def normalize_campus(value: Any) -> str | None:
    cleaned = _clean(value).lower()
    if cleaned in ("boys", "boy", "male"):
        return BOYS_CAMPUS
    if cleaned in ("girls", "girl", "female"):
        return GIRLS_CAMPUS
    return None


__all__ = [
    "BOYS_CAMPUS",
    "FEMALE",
    "GIRLS_CAMPUS",
    "MALE",
    "PROGRAMS",
    "campus_for_gender",
    "clean_label",
    "normalize_campus",
    "normalize_gender",
    "normalize_program",
]
