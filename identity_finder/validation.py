"""Submission checks for report cards and found cards.

The server only enforces presence and type of the known fields; format rules
(phone pattern, description length) belong to the client form.
"""
from typing import Any, Dict, List, Mapping, Sequence

from .constants import (
    FOUND_CARD_FIELD_COLUMNS,
    OPTIONAL_FOUND_CARD_FIELDS,
    OPTIONAL_REPORT_FIELDS,
    REPORT_FIELD_COLUMNS,
    REQUIRED_FOUND_CARD_FIELDS,
    REQUIRED_REPORT_FIELDS,
)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def missing_fields(submission: Mapping[str, Any], required: Sequence[str] = REQUIRED_REPORT_FIELDS) -> List[str]:
    """Return required field names that are absent, null or blank, in canonical order."""
    return [name for name in required if _is_blank(submission.get(name))]


def invalid_fields(submission: Mapping[str, Any],
                   fields: Sequence[str] = REQUIRED_REPORT_FIELDS + OPTIONAL_REPORT_FIELDS) -> List[str]:
    """Return field names that are present but not strings."""
    return [
        name for name in fields
        if submission.get(name) is not None and not isinstance(submission[name], str)
    ]


def _build_fields(submission: Mapping[str, Any], required: Sequence[str], optional: Sequence[str],
                  columns: Mapping[str, str]) -> Dict[str, Any]:
    missing = missing_fields(submission, required)
    if missing:
        raise ValueError(f"Missing required fields: {missing}")
    invalid = invalid_fields(submission, tuple(required) + tuple(optional))
    if invalid:
        raise ValueError(f"Fields must be strings: {invalid}")

    fields: Dict[str, Any] = {}
    for name in required:
        fields[columns[name]] = submission[name].strip()
    for name in optional:
        fields[columns[name]] = submission.get(name) or None
    return fields


def build_report_fields(submission: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a valid report card submission to repository column names.

    Required fields are trimmed. Optional fields pass through unchanged and
    default to None. Anything else in the submission is dropped.
    """
    return _build_fields(submission, REQUIRED_REPORT_FIELDS, OPTIONAL_REPORT_FIELDS, REPORT_FIELD_COLUMNS)


def build_found_card_fields(submission: Mapping[str, Any]) -> Dict[str, Any]:
    """Same mapping for a found card submission."""
    return _build_fields(submission, REQUIRED_FOUND_CARD_FIELDS, OPTIONAL_FOUND_CARD_FIELDS,
                         FOUND_CARD_FIELD_COLUMNS)
