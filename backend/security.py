import secrets
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Mapping, Optional

import jwt  # type: ignore[import]
from flask import current_app, g, jsonify, request
from infra import rate_limiter
from pydantic import ValidationError as PydanticValidationError
from schemas import ActivityCreatePayload, BulkActionPayload, DescriptorEnvelope


def rate_limit(endpoint_name: str, limit: int, window_seconds: int):
    """Wrapper for the infra rate limiter to be used in controllers."""
    user_obj = getattr(g, "current_user", None)
    if user_obj:
        identifier = f"user:{user_obj['id']}"
    else:
        identifier = (
            request.headers.get("X-API-Key") or request.remote_addr or "anonymous"
        )
    is_limited = rate_limiter.check_rate_limit(
        endpoint_name, identifier, limit, window_seconds
    )
    if is_limited:
        return error_response("too_many_requests", "Rate limit exceeded", 429)
    return None


def require_api_key():
    """Require API key when STEWARD_API_KEY is set."""
    api_key: Optional[str] = current_app.config.get("API_KEY")
    if not api_key:
        return None

    if request.method == "OPTIONS":
        return None

    public_endpoints = current_app.config.get("PUBLIC_ENDPOINTS", {"home"})
    if request.endpoint in public_endpoints:
        return None

    provided = request.headers.get("X-API-Key") or request.args.get("api_key")
    if provided != api_key:
        return error_response("unauthorized", "Unauthorized", 401)
    return None


def admin_check_failure():
    """Return an error response unless the current user is an administrator."""
    user_obj = getattr(g, "current_user", None)
    if not user_obj:
        return error_response("unauthorized", "Missing or invalid access token", 401)
    if not user_obj.get("is_admin"):
        return error_response("forbidden", "Admin privileges required", 403)
    return None


def require_admin(fn):
    @wraps(fn)
    def wrapped(*args, **kwargs):
        failure = admin_check_failure()
        if failure:
            return failure
        return fn(*args, **kwargs)

    return wrapped


def jwt_required():
    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            if not getattr(g, "current_user", None):
                return error_response(
                    "unauthorized", "Missing or invalid access token", 401
                )
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def issue_access_token(user: Mapping[str, Any]) -> Dict[str, str]:
    """Mint a signed access token and its CSRF companion for an identity row."""
    csrf_token = secrets.token_urlsafe(16)
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=int(current_app.config.get("JWT_EXP_MINUTES", 60))
    )
    payload = {
        "sub": str(user["id"]),
        "email": user.get("email"),
        "name": user.get("name") or "",
        "role": user.get("role") or "user",
        "csrf": csrf_token,
        "exp": expires,
    }
    access_token = jwt.encode(
        payload,
        current_app.config["JWT_SECRET"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )
    return {"access_token": access_token, "csrf_token": csrf_token}


class ValidationError(Exception):
    def __init__(
        self,
        message: str,
        *,
        code: str = "invalid_input",
        status: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details or {}


def error_response(
    code: str,
    message: str,
    status: int,
    details: Optional[Dict[str, Any]] = None,
):
    payload = {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }
    return jsonify(payload), status


_IGNORED_LOC_PARTS = {"__root__", "descriptor", "embedded", "client-server"}


def _loc_to_field(loc) -> str:
    return ".".join(str(part) for part in loc or () if part not in _IGNORED_LOC_PARTS)


def _extract_error_info(exc: PydanticValidationError) -> tuple[str, Dict[str, Any]]:
    errors = exc.errors()
    missing_fields = [
        _loc_to_field(err.get("loc"))
        for err in errors
        if err.get("type") == "missing"
    ]
    if missing_fields:
        return (
            f"Missing required field(s): {', '.join(missing_fields)}",
            {"fields": missing_fields},
        )
    if errors:
        first = errors[0]
        message = first.get("msg") or ""
        if message.startswith("Value error, "):
            message = message.split(", ", 1)[1]
        field = _loc_to_field(first.get("loc"))
        if message:
            return message, {"field": field} if field else {}
    return str(exc), {}


def validate_activity_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload", code="invalid_json")

    try:
        data = ActivityCreatePayload.model_validate(payload)
    except PydanticValidationError as exc:
        message, details = _extract_error_info(exc)
        raise ValidationError(message, details=details)

    return data.model_dump()


def validate_bulk_action_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid form payload", code="invalid_form")

    try:
        data = BulkActionPayload.model_validate(payload)
    except PydanticValidationError as exc:
        message, details = _extract_error_info(exc)
        raise ValidationError(message, details=details)

    return data.model_dump()


def validate_backend_descriptor(payload: Any):
    try:
        envelope = DescriptorEnvelope.model_validate({"descriptor": payload})
    except PydanticValidationError as exc:
        message, details = _extract_error_info(exc)
        raise ValidationError(message, code="invalid_configuration", details=details)

    return envelope.descriptor
