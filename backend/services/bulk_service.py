"""
Bulk administrative operations.

Applies one action to a batch of users by fanning out one identity-provider
call per target on a thread pool and joining on all of them. Any failure
fails the whole batch; targets that were already mutated are not rolled
back. A successful batch is summarised by exactly one audit event.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from schemas import ALLOWED_ROLES, ActivityType
from security import ValidationError

logger = structlog.get_logger("steward.bulk")

DEFAULT_MAX_WORKERS = 8


class BulkIntent(str, Enum):
    BAN = "bulk-ban"
    UNBAN = "bulk-unban"
    ROLE = "bulk-role"
    DELETE = "bulk-delete"


class BatchState(str, Enum):
    RECEIVED = "received"
    DISPATCHING = "dispatching"
    ALL_SUCCEEDED = "all_succeeded"
    PARTIALLY_FAILED = "partially_failed"
    REPORTED = "reported"


_GENERIC_FAILURES = {
    BulkIntent.BAN: "Failed to bulk ban users",
    BulkIntent.UNBAN: "Failed to bulk unban users",
    BulkIntent.ROLE: "Failed to update user roles",
    BulkIntent.DELETE: "Failed to delete selected users",
}


@dataclass(frozen=True)
class BulkActionRequest:
    intent: BulkIntent
    target_ids: Tuple[str, ...]
    actor: str
    ban_reason: Optional[str] = None
    role: Optional[str] = None
    requester_id: Optional[str] = None

    @classmethod
    def build(
        cls,
        intent: str,
        target_ids: Sequence[str],
        *,
        actor: str,
        ban_reason: Optional[str] = None,
        role: Optional[str] = None,
        requester_id: Optional[str] = None,
    ) -> "BulkActionRequest":
        try:
            parsed_intent = BulkIntent(intent)
        except ValueError:
            raise ValidationError("Unsupported bulk action", code="invalid_intent")
        if parsed_intent is BulkIntent.ROLE and role not in ALLOWED_ROLES:
            raise ValidationError("Invalid role selected", code="invalid_role")
        # Duplicates would dispatch twice against the same user.
        unique_ids = tuple(dict.fromkeys(item for item in target_ids if item))
        return cls(
            intent=parsed_intent,
            target_ids=unique_ids,
            actor=actor,
            ban_reason=ban_reason,
            role=role,
            requester_id=requester_id,
        )


@dataclass
class TargetFailure:
    target_id: str
    message: str


class PartialBatchFailure(Exception):
    """One or more per-target calls failed; carries every failure."""

    def __init__(self, intent: BulkIntent, failures: List[TargetFailure], succeeded: List[str]):
        self.intent = intent
        self.failures = failures
        self.succeeded = succeeded
        message = failures[0].message if failures else _GENERIC_FAILURES[intent]
        super().__init__(message or _GENERIC_FAILURES[intent])
        self.message = str(self)


@dataclass
class BulkResult:
    intent: BulkIntent
    processed: int
    state: BatchState
    activity: Optional[Any] = None
    confirmed: List[Dict[str, Any]] = field(default_factory=list)


def _audit_summary(request: BulkActionRequest) -> Tuple[str, ActivityType]:
    if request.intent is BulkIntent.BAN:
        return "Banned multiple users", ActivityType.BAN
    if request.intent is BulkIntent.UNBAN:
        return "Unbanned multiple users", ActivityType.UNBAN
    if request.intent is BulkIntent.ROLE:
        return f"Updated role to {request.role}", ActivityType.EDIT
    return "Deleted multiple users", ActivityType.DELETE


class BulkOrchestrator:
    def __init__(self, identity_provider, activity_log, *, max_workers: int = DEFAULT_MAX_WORKERS):
        self.identity_provider = identity_provider
        self.activity_log = activity_log
        self.max_workers = max(1, int(max_workers))

    def _primitive(self, request: BulkActionRequest):
        provider = self.identity_provider
        if request.intent is BulkIntent.BAN:
            return lambda user_id: provider.ban_user(user_id, request.ban_reason)
        if request.intent is BulkIntent.UNBAN:
            return provider.unban_user
        if request.intent is BulkIntent.ROLE:
            return lambda user_id: provider.update_role(user_id, request.role)
        return provider.delete_user

    def _describe_targets(self, request: BulkActionRequest) -> str:
        try:
            rows = self.identity_provider.find_users(request.target_ids)
        except Exception as exc:
            logger.warning("bulk.target_lookup_failed", intent=request.intent.value, error=str(exc))
            rows = []
        emails = [row["email"] for row in rows if row.get("email")]
        return ", ".join(emails) or f"{len(request.target_ids)} users"

    def _fan_out(self, request: BulkActionRequest) -> Tuple[List[str], List[TargetFailure]]:
        primitive = self._primitive(request)
        workers = min(self.max_workers, len(request.target_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk") as executor:
            futures = [
                (target_id, executor.submit(primitive, target_id))
                for target_id in request.target_ids
            ]
            succeeded: List[str] = []
            failures: List[TargetFailure] = []
            for target_id, future in futures:
                exc = future.exception()
                if exc is None:
                    succeeded.append(target_id)
                else:
                    failures.append(TargetFailure(target_id, str(exc)))
        return succeeded, failures

    def dispatch(self, request: BulkActionRequest) -> BulkResult:
        state = BatchState.RECEIVED
        if not request.target_ids:
            logger.info("bulk.empty_batch", intent=request.intent.value, state=state.value)
            return BulkResult(request.intent, 0, BatchState.REPORTED)

        target_summary = self._describe_targets(request)

        state = BatchState.DISPATCHING
        logger.info(
            "bulk.dispatching",
            intent=request.intent.value,
            state=state.value,
            targets=len(request.target_ids),
            actor=request.actor,
            requester_id=request.requester_id,
        )
        succeeded, failures = self._fan_out(request)

        if failures:
            state = BatchState.PARTIALLY_FAILED
            logger.error(
                "bulk.partial_failure",
                intent=request.intent.value,
                state=state.value,
                succeeded=succeeded,
                failures=[{"id": f.target_id, "error": f.message} for f in failures],
            )
            raise PartialBatchFailure(request.intent, failures, succeeded)

        state = BatchState.ALL_SUCCEEDED
        action, activity_type = _audit_summary(request)
        activity = None
        try:
            activity = self.activity_log.append(
                action=action,
                actor=request.actor,
                type=activity_type,
                target=target_summary,
            )
        except Exception as exc:
            # The mutations already happened; the batch still reports success.
            logger.error(
                "bulk.audit_failed",
                intent=request.intent.value,
                state=state.value,
                error=str(exc),
            )

        confirmed: List[Dict[str, Any]] = []
        if request.intent is not BulkIntent.DELETE:
            try:
                confirmed = self.identity_provider.find_users(request.target_ids)
            except Exception as exc:
                logger.warning("bulk.confirm_lookup_failed", error=str(exc))

        logger.info(
            "bulk.completed",
            intent=request.intent.value,
            processed=len(succeeded),
            activity_id=getattr(activity, "id", None),
        )
        return BulkResult(
            intent=request.intent,
            processed=len(succeeded),
            state=BatchState.REPORTED,
            activity=activity,
            confirmed=confirmed,
        )
