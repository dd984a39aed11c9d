"""Shared parsing helpers for request payloads.

parse_date_input:  raises ValueError on bad input (callers map it to a 400)
parse_bool_arg:    tolerant query-string boolean
"""
from datetime import date, datetime


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS (→ date), DD.MM.YYYY, date objects.
    Empty values return None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_bool_arg(value) -> bool:
    """True for "1", "true", "yes", "on" (any case); False otherwise."""
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")
