"""
Per-user administrative primitives of the identity provider.

Each primitive runs inside its own application context so it can be called
from the bulk orchestrator's worker threads.
"""

from typing import Dict, List, Optional, Sequence

from repositories import users_repo
from schemas import ALLOWED_ROLES

DEFAULT_BAN_REASON = "Banned by administrator"


class IdentityError(Exception):
    """Base error for identity primitives."""


class UserNotFoundError(IdentityError):
    """Raised when a target user does not exist."""


class ForbiddenOperationError(IdentityError):
    """Raised when an operation is not allowed on the target user."""


class UserDirectory:
    def __init__(self, app, *, requester_id: Optional[str] = None):
        self.app = app
        self.requester_id = requester_id

    def _update(self, user_id: str, updates: Dict) -> None:
        with self.app.app_context():
            affected = users_repo.update_user(user_id, updates)
        if affected == 0:
            raise UserNotFoundError(f"User not found: {user_id}")

    def ban_user(self, user_id: str, reason: Optional[str] = None) -> None:
        self._update(user_id, {"banned": True, "ban_reason": reason or DEFAULT_BAN_REASON})

    def unban_user(self, user_id: str) -> None:
        self._update(user_id, {"banned": False, "ban_reason": None})

    def update_role(self, user_id: str, role: str) -> None:
        if role not in ALLOWED_ROLES:
            raise IdentityError("Invalid role selected")
        self._update(user_id, {"role": role})

    def delete_user(self, user_id: str) -> None:
        if self.requester_id is not None and self.requester_id == user_id:
            raise ForbiddenOperationError("Admins cannot delete their own account")
        with self.app.app_context():
            affected = users_repo.delete_user(user_id)
        if affected == 0:
            raise UserNotFoundError(f"User not found: {user_id}")

    def find_users(self, user_ids: Sequence[str]) -> List[dict]:
        with self.app.app_context():
            return users_repo.find_users(user_ids)
