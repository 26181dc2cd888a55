"""Repository handling identity rows used by the administrative primitives."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from db_utils import connection as sa_connection
from db_utils import transactional_connection
from extensions import db

_USER_COLUMNS = """
    id,
    email,
    COALESCE(NULLIF(name, ''), email) AS name,
    role,
    email_verified,
    banned,
    ban_reason,
    created_at
"""


def _serialize(row) -> dict:
    item = dict(row)
    item["banned"] = bool(item.get("banned"))
    item["email_verified"] = bool(item.get("email_verified"))
    created_at = item.get("created_at")
    if isinstance(created_at, datetime):
        item["created_at"] = created_at.isoformat()
    return item


def create_user(
    user_id: str,
    email: str,
    name: str,
    password_hash: str,
    role: str = "user",
    email_verified: bool = True,
) -> str:
    """Insert a new identity row and return its id."""
    now = datetime.now(timezone.utc).isoformat()
    with transactional_connection(db.engine) as conn:
        conn.execute(
            """
            INSERT INTO users
                (id, email, name, password_hash, role, email_verified, banned, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, FALSE, ?, ?)
            """,
            (user_id, email, name, password_hash, role, email_verified, now, now),
        )
    return user_id


def get_user_by_id(user_id: str) -> Optional[dict]:
    """Fetch a user row by id, returning None when absent."""
    conn = sa_connection(db.engine)
    try:
        row = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)
        ).fetchone()
    finally:
        conn.close()
    return _serialize(row) if row else None


def get_user_by_email(email: str) -> Optional[dict]:
    conn = sa_connection(db.engine)
    try:
        row = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE LOWER(email) = LOWER(?)", (email,)
        ).fetchone()
    finally:
        conn.close()
    return _serialize(row) if row else None


def find_users(user_ids: Sequence[str]) -> List[dict]:
    """Fetch the rows for the given ids, in the order the ids were given."""
    if not user_ids:
        return []
    placeholders = ", ".join("?" for _ in user_ids)
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id IN ({placeholders})",
            list(user_ids),
        ).fetchall()
    finally:
        conn.close()
    by_id = {row["id"]: _serialize(row) for row in rows}
    return [by_id[user_id] for user_id in user_ids if user_id in by_id]


def update_user(user_id: str, updates: Dict[str, Any]) -> int:
    """Update user fields from the provided mapping and return affected row count."""
    if not updates:
        return 0

    assignments: List[str] = []
    params: List[Any] = []
    for key, value in updates.items():
        assignments.append(f"{key} = ?")
        params.append(value)
    assignments.append("updated_at = ?")
    params.append(datetime.now(timezone.utc).isoformat())
    params.append(user_id)

    with transactional_connection(db.engine) as conn:
        result = conn.execute(
            f"UPDATE users SET {', '.join(assignments)} WHERE id = ?",
            params,
        )
        return result.rowcount


def delete_user(user_id: str) -> int:
    """Delete a user row by id and return affected row count."""
    with transactional_connection(db.engine) as conn:
        result = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return result.rowcount


def list_all_users() -> List[dict]:
    """List all users, newest first."""
    conn = sa_connection(db.engine)
    try:
        rows = conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users ORDER BY created_at DESC"
        ).fetchall()
    finally:
        conn.close()

    return [_serialize(row) for row in rows]
