"""Helpers for reading JSON API input."""
from typing import Any, Dict, Optional

from flask import request

from quotation_tool.exceptions import BusinessLogicError


def get_json_body() -> Dict[str, Any]:
    """Request body as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BusinessLogicError('A JSON object body is required')
    return data


def optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    """Integer field of a payload or query string, None when absent."""
    value = data.get(key)
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise BusinessLogicError(f'{key} must be an integer', payload={'field': key})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BusinessLogicError(f'{key} must be an integer', payload={'field': key})
