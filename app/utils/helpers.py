"""Shared request-parsing helpers for blueprints.

json_body:     JSON object body or a 400 error tuple
optional_int:  integer field of a body or a 400 error tuple
query_bool:    truthy query-string flag
parse_date:    YYYY-MM-DD → date, None on bad input

Tuple-return pattern, NOT abort:
    data, err = json_body()
    if err:
        return err
"""
import logging
from datetime import date

from flask import request

from app.services.schedule_calendar import parse_iso
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def json_body(required: bool = False):
    """Return (dict, None) or (None, error_response).

    A missing body is an empty dict unless ``required`` is set; a body that
    is not a JSON object is always rejected.
    """
    data = request.get_json(silent=True)
    if data is None:
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, "JSON body is required")
        return {}, None
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "JSON body must be an object")
    return data, None


def optional_int(data: dict, key: str):
    """Return (int | None, None) or (None, error_response) for ``data[key]``."""
    value = data.get(key)
    if value is None:
        return None, None
    if isinstance(value, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{key} must be an integer",
                               details={key: "must be an integer"})
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{key} must be an integer",
                               details={key: "must be an integer"})


def query_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


def parse_date(value) -> date | None:
    """Parse an ISO date string. Returns None on bad or empty input."""
    try:
        return parse_iso(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable date value: %r", value)
        return None
