from flask import Blueprint, jsonify

from extensions import config_store, connection_manager, setup_gate
from infra import health_service

admin_bp = Blueprint("admin", __name__)


@admin_bp.get("/")
def home():
    return jsonify({"status": "ok"}), 200


@admin_bp.get("/healthz")
def health():
    summary, healthy = health_service.build_health_summary(
        setup_gate, config_store, connection_manager
    )
    status_code = 200 if healthy else 503
    return jsonify(summary), status_code
