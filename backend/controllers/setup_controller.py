from flask import Blueprint, jsonify, request

from controllers.helpers import is_admin_user
from extensions import config_store, connection_manager, setup_gate
from security import error_response
from services import setup_service
from services.common import activity_log

setup_bp = Blueprint("setup", __name__, url_prefix="/api/setup")


@setup_bp.get("/status")
def status():
    return jsonify(setup_service.setup_status(setup_gate))


@setup_bp.post("")
def run_setup():
    # Once configured, only an administrator may point the audit log elsewhere.
    if setup_service.setup_locked(config_store) and not is_admin_user():
        return error_response("conflict", "Setup already completed", 409)

    result = setup_service.complete_setup(
        request.get_json(silent=True),
        config_store=config_store,
        connection_manager=connection_manager,
        activity_log=activity_log,
        gate=setup_gate,
    )
    return jsonify(result), 201
