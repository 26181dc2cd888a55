from typing import Any, Dict

import structlog
from flask import Blueprint, jsonify, request

from controllers.helpers import parse_pagination
from extensions import setup_gate
from infra.db_adapter import BackendConnectionError
from security import admin_check_failure, error_response, validate_activity_payload
from services.common import activity_log

activity_bp = Blueprint("activity", __name__, url_prefix="/api")
logger = structlog.get_logger("steward.backend")


@activity_bp.get("/activity")
def list_activity():
    # Before setup there is nothing to read and no admin to check against.
    # A configured backend that is down falls through and reports the failure.
    if not setup_gate.is_configured():
        return jsonify({"activities": []})

    failure = admin_check_failure()
    if failure:
        return failure

    pagination = parse_pagination(default_limit=50)
    try:
        events = activity_log.list(pagination["limit"], pagination["offset"])
    except BackendConnectionError as exc:
        logger.error("activity.list_failed", error=str(exc), **pagination)
        return error_response("internal_error", "Failed to fetch activities", 500)

    return jsonify({"activities": [event.to_dict() for event in events]})


@activity_bp.post("/activity")
def log_activity():
    if not setup_gate.is_configured():
        return jsonify(
            {
                "success": True,
                "activity": None,
                "message": "Activity logging disabled during setup",
            }
        )

    failure = admin_check_failure()
    if failure:
        return failure

    data: Dict[str, Any] = request.get_json(silent=True)
    payload = validate_activity_payload(data)
    try:
        event = activity_log.append(
            action=payload["action"],
            actor=payload["user"],
            type=payload["type"],
            target=payload["target"],
            metadata=payload["metadata"],
        )
    except BackendConnectionError as exc:
        logger.error("activity.append_failed", error=str(exc), action=payload["action"])
        return error_response("internal_error", "Failed to log activity", 500)

    return jsonify({"success": True, "activity": event.to_dict() if event else None})
