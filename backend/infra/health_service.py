import time
from typing import Dict, Optional, Tuple

import structlog
from repositories import health_repo

logger = structlog.get_logger("steward.health")

SERVER_START_TIME = time.time()


def check_identity_db() -> bool:
    try:
        return health_repo.check_identity_database()
    except Exception as exc:
        logger.warning("health.identity_db_check_failed", error=str(exc))
        return False


def check_audit_backend(config_store, connection_manager) -> Optional[bool]:
    """Ping the configured audit backend; None when nothing is configured yet."""
    try:
        descriptor = config_store.load_descriptor()
        if descriptor is None:
            return None
        return connection_manager.ping(descriptor)
    except Exception as exc:
        logger.warning("health.audit_backend_check_failed", error=str(exc))
        return False


def current_uptime_seconds(server_start_time: float) -> float:
    return max(0.0, time.time() - server_start_time)


def build_health_summary(
    gate, config_store, connection_manager, server_start_time: float = SERVER_START_TIME
) -> Tuple[Dict[str, object], bool]:
    identity_ok = check_identity_db()
    setup_complete = gate.is_setup_complete()
    audit_ok = check_audit_backend(config_store, connection_manager)
    summary = {
        "uptime_s": round(current_uptime_seconds(server_start_time), 2),
        "identity_db_ok": identity_ok,
        "setup_complete": setup_complete,
        "audit_backend_ok": audit_ok,
    }
    # Before setup there is no audit backend to be unhealthy.
    healthy = identity_ok and (audit_ok is not False)
    return summary, healthy
