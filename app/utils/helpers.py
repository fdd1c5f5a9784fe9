"""Shared parsing helpers for services and blueprints.

parse_date_input:  raises ValueError on bad input (service validation)
parse_bool:        JSON / query-string flags → bool, raises ValueError
query_int:         optional integer query parameter, None on bad input
"""
import logging
from datetime import date, datetime

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off", ""}


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS, DD.MM.YYYY, date objects.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_bool(value) -> bool:
    """Parse a JSON or query-string flag.

    None → False. Raises ValueError for anything that is not a recognisable
    boolean.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValueError(f"Not a boolean: {value!r}")


def query_int(args, name, default=None):
    """Read an integer query parameter; returns ``default`` on missing/bad input."""
    raw = args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-integer query parameter %s=%r", name, raw)
        return default
