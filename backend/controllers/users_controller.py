from flask import Blueprint, current_app, jsonify, request

from controllers.helpers import actor_name, current_user_id
from repositories import users_repo
from security import (
    ValidationError,
    jwt_required,
    rate_limit,
    require_admin,
    validate_bulk_action_payload,
)
from services.bulk_service import BulkActionRequest, PartialBatchFailure
from services.common import get_bulk_orchestrator

users_bp = Blueprint("users", __name__)


@users_bp.get("/dashboard/users")
@jwt_required()
@require_admin
def list_users():
    return jsonify({"users": users_repo.list_all_users()})


@users_bp.post("/dashboard/users")
@jwt_required()
@require_admin
def bulk_action():
    limits = current_app.config["RATE_LIMITS"]["bulk_action"]
    limited = rate_limit("bulk_action", limits["limit"], limits["window"])
    if limited:
        return limited

    data = validate_bulk_action_payload(
        {
            "intent": request.form.get("intent"),
            "userIds": request.form.getlist("userIds"),
            "banReason": request.form.get("banReason"),
            "role": request.form.get("role"),
        }
    )
    try:
        bulk_request = BulkActionRequest.build(
            data["intent"],
            data["user_ids"],
            actor=actor_name(),
            ban_reason=data["ban_reason"],
            role=data["role"],
            requester_id=current_user_id(),
        )
    except ValidationError as exc:
        return jsonify({"success": False, "error": exc.message})

    orchestrator = get_bulk_orchestrator(requester_id=current_user_id())
    try:
        result = orchestrator.dispatch(bulk_request)
    except PartialBatchFailure as exc:
        return jsonify({"success": False, "error": exc.message})

    return jsonify(
        {
            "success": True,
            "processed": result.processed,
            "confirmed": result.confirmed,
        }
    )
