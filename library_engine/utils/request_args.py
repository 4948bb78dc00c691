"""Request body and query string parsing for the JSON endpoints.

Bad input raises ValidationError so the app's error handler answers 400.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from flask import request

from library_engine.errors import ValidationError
from library_engine.utils.dates import parse_timestamp


def get_json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def to_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def require_int(data: Dict[str, Any], field: str) -> int:
    if data.get(field) is None:
        raise ValidationError(f"{field} is required")
    return to_int(data[field], field)


def optional_int(data: Dict[str, Any], field: str) -> Optional[int]:
    if data.get(field) in (None, ''):
        return None
    return to_int(data[field], field)


def optional_datetime(data: Dict[str, Any], field: str = 'now') -> Optional[datetime]:
    """Parse 'YYYY-MM-DD HH:MM:SS' (or a bare date); None when absent."""
    value = data.get(field)
    if value in (None, ''):
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be formatted YYYY-MM-DD HH:MM:SS")


def parse_bool(value: Optional[str]) -> bool:
    return (value or '').lower() in ('true', '1', 'yes', 'on')
