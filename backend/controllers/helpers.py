from typing import Dict, Optional

from flask import g, request
from security import ValidationError


def current_user() -> Optional[dict]:
    return getattr(g, "current_user", None)


def current_user_id() -> Optional[str]:
    user = current_user()
    return user["id"] if user else None


def is_admin_user() -> bool:
    user = current_user()
    return bool(user["is_admin"]) if user and "is_admin" in user else False


def actor_name() -> str:
    user = current_user() or {}
    return user.get("name") or user.get("email") or str(user.get("id") or "unknown")


def parse_pagination(default_limit: int = 50, max_limit: int = 500) -> Dict[str, int]:
    try:
        limit_raw = request.args.get("limit", default_limit)
        limit = int(limit_raw)
        if limit <= 0:
            raise ValueError
    except (TypeError, ValueError):
        raise ValidationError("limit must be a positive integer", code="invalid_query")

    try:
        offset_raw = request.args.get("offset", 0)
        offset = int(offset_raw)
        if offset < 0:
            raise ValueError
    except (TypeError, ValueError):
        raise ValidationError(
            "offset must be a non-negative integer", code="invalid_query"
        )

    limit = min(limit, max_limit)
    return {"limit": limit, "offset": offset}
