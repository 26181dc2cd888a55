from typing import Optional

from flask import current_app

from extensions import config_store, connection_manager, setup_gate
from services.activity_log import ActivityLog
from services.bulk_service import DEFAULT_MAX_WORKERS, BulkOrchestrator
from services.identity_provider import UserDirectory

activity_log = ActivityLog(setup_gate, config_store, connection_manager)


def get_bulk_orchestrator(requester_id: Optional[str] = None) -> BulkOrchestrator:
    """Build an orchestrator bound to the running app's identity store."""
    app = current_app._get_current_object()
    directory = UserDirectory(app, requester_id=requester_id)
    return BulkOrchestrator(
        directory,
        activity_log,
        max_workers=app.config.get("BULK_MAX_WORKERS", DEFAULT_MAX_WORKERS),
    )
