"""
Optimistic state reconciler.

Keeps a local view of the user collection that reflects an administrative
mutation before the server confirms it. The view is snapshotted before the
mutation is applied; if the server rejects it, the targeted entities are
restored from that snapshot while the rest of the view is left alone.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import structlog
from services.bulk_service import BulkIntent

logger = structlog.get_logger("steward.optimistic")

Entity = Dict[str, Any]


class MutationInFlightError(Exception):
    """Raised when a mutation targets an entity that already has one pending."""

    def __init__(self, busy_ids: Iterable[str]):
        self.busy_ids = sorted(busy_ids)
        super().__init__(f"Mutation already pending for: {', '.join(self.busy_ids)}")


class MutationFailedError(Exception):
    """Raised when the server reports a failed mutation without raising."""


@dataclass
class Mutation:
    """Command object: apply eagerly, revert at most once."""

    intent: BulkIntent
    target_ids: Tuple[str, ...]
    transform: Callable[[Entity], Optional[Entity]]
    extra: Dict[str, str] = field(default_factory=dict)
    snapshot: Optional[List[Entity]] = None
    reverted: bool = False

    def apply(self, entities: List[Entity]) -> List[Entity]:
        self.snapshot = copy.deepcopy(entities)
        targets = set(self.target_ids)
        updated: List[Entity] = []
        for entity in copy.deepcopy(entities):
            if entity.get("id") in targets:
                entity = self.transform(entity)
                if entity is None:
                    continue
            updated.append(entity)
        return updated

    def revert(self, entities: List[Entity]) -> List[Entity]:
        """Put the targets back as snapshotted; other entities keep their current state."""
        if self.snapshot is None:
            raise RuntimeError("Mutation was never applied")
        if self.reverted:
            raise RuntimeError("Mutation was already reverted")
        self.reverted = True

        targets = set(self.target_ids)
        restored = [copy.deepcopy(e) for e in entities if e.get("id") not in targets]
        anchor = None
        for entity in self.snapshot:
            entity_id = entity.get("id")
            if entity_id in targets:
                # Re-insert right after the nearest earlier entity still present.
                position = 0
                if anchor is not None:
                    position = next(
                        (i + 1 for i, item in enumerate(restored) if item.get("id") == anchor),
                        0,
                    )
                restored.insert(position, copy.deepcopy(entity))
            if any(item.get("id") == entity_id for item in restored):
                anchor = entity_id
        return restored


def _set_fields(**changes: Any) -> Callable[[Entity], Entity]:
    def transform(entity: Entity) -> Entity:
        entity.update(changes)
        return entity

    return transform


def bulk_mutation(
    intent: str,
    target_ids: Iterable[str],
    *,
    role: Optional[str] = None,
    ban_reason: Optional[str] = None,
) -> Mutation:
    """Build the local effect of a bulk action."""
    parsed = BulkIntent(intent)
    ids = tuple(dict.fromkeys(target_ids))
    extra: Dict[str, str] = {}
    if parsed is BulkIntent.BAN:
        transform = _set_fields(banned=True, ban_reason=ban_reason)
        if ban_reason:
            extra["banReason"] = ban_reason
    elif parsed is BulkIntent.UNBAN:
        transform = _set_fields(banned=False, ban_reason=None)
    elif parsed is BulkIntent.ROLE:
        transform = _set_fields(role=role)
        extra["role"] = role or ""
    else:
        transform = lambda entity: None  # noqa: E731 - removal
    return Mutation(intent=parsed, target_ids=ids, transform=transform, extra=extra)


def _confirmed_rows(result: Any) -> List[Entity]:
    if isinstance(result, Mapping):
        if result.get("success") is False:
            raise MutationFailedError(result.get("error") or "Bulk action failed")
        rows = result.get("confirmed") or []
    else:
        rows = getattr(result, "confirmed", None) or []
    return [dict(row) for row in rows]


class OptimisticReconciler:
    def __init__(self, entities: Iterable[Entity] = ()):
        self._entities: List[Entity] = copy.deepcopy(list(entities))
        self._pending: Set[str] = set()
        self._lock = Lock()

    def view(self) -> List[Entity]:
        with self._lock:
            return copy.deepcopy(self._entities)

    def replace(self, entities: Iterable[Entity]) -> None:
        """Swap in a freshly loaded collection (e.g. after a revalidation)."""
        with self._lock:
            self._entities = copy.deepcopy(list(entities))

    def pending_ids(self) -> Set[str]:
        with self._lock:
            return set(self._pending)

    def apply(self, mutation: Mutation, send: Callable[[Mutation], Any]) -> Any:
        targets = set(mutation.target_ids)
        with self._lock:
            busy = self._pending & targets
            if busy:
                raise MutationInFlightError(busy)
            self._pending |= targets
            self._entities = mutation.apply(self._entities)

        try:
            try:
                result = send(mutation)
                confirmed = _confirmed_rows(result)
            except Exception as exc:
                with self._lock:
                    self._entities = mutation.revert(self._entities)
                logger.warning(
                    "optimistic.reverted",
                    intent=mutation.intent.value,
                    targets=list(mutation.target_ids),
                    error=str(exc),
                )
                raise

            if confirmed:
                by_id = {row.get("id"): row for row in confirmed}
                with self._lock:
                    self._entities = [
                        copy.deepcopy(by_id.get(entity.get("id"), entity))
                        for entity in self._entities
                    ]
            mutation.snapshot = None
            return result
        finally:
            with self._lock:
                self._pending -= targets
