"""
Helpers shared by the JSON blueprints
"""

from typing import Any, Dict, Optional

from flask import request

from auth_utils import get_current_user
from services.common.errors import ValidationError


def json_body() -> Dict[str, Any]:
    """The request body as a JSON object, or ValidationError"""
    data = request.get_json(silent=True)
    if data is None and not request.data:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def owner_scope() -> Optional[int]:
    """None for admins (every owner), the caller's id otherwise"""
    user = get_current_user()
    return None if user.is_admin else user.id


def parse_int(value, field: str) -> int:
    """Convert an id from JSON or a query string to int exactly once"""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={'field': field})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer", details={'field': field})
