"""
Setup service.

Completes (or re-runs) the one-time configuration of the audit backend:
verifies connectivity, creates the activity table, persists the descriptor
and invalidates the setup gate so the next check sees the new state.
"""

from pathlib import Path
from typing import Any, Dict

import structlog
from infra.config_store import ConfigStoreError
from infra.db_adapter import BackendConnectionError
from schemas import EmbeddedDescriptor
from security import ValidationError, validate_backend_descriptor

logger = structlog.get_logger("steward.setup")


def setup_status(gate) -> Dict[str, bool]:
    return {"setupComplete": gate.is_setup_complete()}


def setup_locked(config_store) -> bool:
    """True once a configuration has been persisted, whether or not its backend is up."""
    try:
        return config_store.is_marked_complete()
    except ConfigStoreError as exc:
        # An unreadable document still belongs to a deployment that ran setup.
        logger.warning("setup.config_unreadable", error=str(exc))
        return True


def complete_setup(
    raw_descriptor: Any,
    *,
    config_store,
    connection_manager,
    activity_log,
    gate,
) -> Dict[str, Any]:
    descriptor = validate_backend_descriptor(raw_descriptor)

    if isinstance(descriptor, EmbeddedDescriptor):
        Path(descriptor.path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    try:
        connection_manager.ping(descriptor)
        activity_log.ensure_schema(descriptor)
    except BackendConnectionError as exc:
        logger.error("setup.backend_unreachable", backend=descriptor.type, error=str(exc))
        raise ValidationError(
            "Unable to connect to the configured database",
            code="connection_failed",
            status=400,
            details={"reason": str(exc)},
        )

    # Switching backends is a reconfiguration: drop pools built for the old one.
    connection_manager.dispose()
    document = config_store.save(descriptor, setup_complete=True)
    gate.invalidate()
    logger.info("setup.completed", backend=descriptor.type)
    return {"setupComplete": True, "databaseConfig": _redacted(document["databaseConfig"])}


def _redacted(config: Dict[str, Any]) -> Dict[str, Any]:
    public = dict(config)
    if public.get("password"):
        public["password"] = "********"
    return public
