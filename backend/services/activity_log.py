"""
Activity audit log service.

Append-only store of administrative events. Every read and write consults
the setup gate first; while setup is incomplete reads return nothing and
writes are skipped without touching storage.
"""

from __future__ import annotations

import json
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from infra.db_adapter import BackendConnectionError
from repositories import activity_repo
from schemas import ActivityType
from security import ValidationError, validate_activity_payload

audit_logger = structlog.get_logger("steward.audit")

DEFAULT_LIMIT = 50
_ID_ALPHABET = string.ascii_lowercase + string.digits


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_activity_id(moment: datetime) -> str:
    """Millisecond timestamp plus a random base36 suffix, e.g. ``1718000000000-k3j9x0a``."""
    millis = int(moment.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{millis}-{suffix}"


@dataclass(frozen=True)
class ActivityEvent:
    id: str
    action: str
    actor: str
    type: ActivityType
    timestamp: str
    created_at: str
    target: Optional[str] = None
    metadata: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "user": self.actor,
            "target": self.target,
            "type": self.type.value,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
            "createdAt": self.created_at,
        }

    def to_row(self) -> Dict[str, Any]:
        row = self.to_dict()
        row["metadata"] = None if self.metadata is None else json.dumps(self.metadata)
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ActivityEvent":
        raw_metadata = row.get("metadata")
        timestamp = _normalize_timestamp(row.get("timestamp"))
        return cls(
            id=str(row["id"]),
            action=row["action"],
            actor=row["user"],
            target=row.get("target"),
            type=ActivityType(row["type"]),
            metadata=json.loads(raw_metadata) if raw_metadata else None,
            timestamp=timestamp,
            created_at=_normalize_timestamp(row.get("createdAt")) or timestamp,
        )


def _normalize_timestamp(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return format_timestamp(value)
    return str(value)


class ActivityLog:
    def __init__(
        self,
        gate,
        config_store,
        connection_manager,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.gate = gate
        self.config_store = config_store
        self.connection_manager = connection_manager
        self.clock = clock

    def _open(self):
        # Resolved on every call so a reconfiguration takes effect immediately.
        descriptor = self.config_store.load_descriptor()
        if descriptor is None:
            raise BackendConnectionError("Database configuration not found")
        return self.connection_manager.open(descriptor)

    def _setup_pending(self) -> bool:
        """True while setup has not run; a configured but unreachable backend raises."""
        if self.gate.is_setup_complete():
            return False
        if self.gate.is_configured():
            raise BackendConnectionError("Audit backend is configured but unreachable")
        return True

    def list(self, limit: int = DEFAULT_LIMIT, offset: int = 0) -> List[ActivityEvent]:
        if limit <= 0:
            raise ValidationError("limit must be a positive integer", code="invalid_query")
        if offset < 0:
            raise ValidationError(
                "offset must be a non-negative integer", code="invalid_query"
            )
        if self._setup_pending():
            audit_logger.debug("activity_log.list_skipped", reason="setup_incomplete")
            return []

        with self._open() as conn:
            rows = activity_repo.list_activities(conn, limit, offset)
        return [ActivityEvent.from_row(row) for row in rows]

    def append(
        self,
        action: Optional[str],
        actor: Optional[str],
        target: Optional[str] = None,
        type: Optional[str] = None,
        metadata: Optional[Any] = None,
    ) -> Optional[ActivityEvent]:
        """Persist one event; returns None when skipped because setup is incomplete."""
        data = validate_activity_payload(
            {
                "action": action,
                "user": actor,
                "type": type.value if isinstance(type, ActivityType) else type,
                "target": target,
                "metadata": metadata,
            }
        )
        if self._setup_pending():
            audit_logger.debug(
                "activity_log.append_skipped",
                reason="setup_incomplete",
                action=data["action"],
            )
            return None

        moment = self.clock()
        timestamp = format_timestamp(moment)
        event = ActivityEvent(
            id=generate_activity_id(moment),
            action=data["action"],
            actor=data["user"],
            target=data["target"] or None,
            type=data["type"],
            metadata=data["metadata"],
            timestamp=timestamp,
            created_at=timestamp,
        )

        with self._open() as conn:
            activity_repo.insert_activity(conn, event.to_row())

        audit_logger.info(
            "activity_log.appended",
            activity_id=event.id,
            action=event.action,
            actor=event.actor,
            target=event.target,
            type=event.type.value,
            backend=conn.kind.value,
        )
        return event

    def ensure_schema(self, descriptor) -> None:
        with self.connection_manager.open(descriptor) as conn:
            activity_repo.create_schema(conn)
