from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from extensions import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_user_id() -> str:
    return uuid.uuid4().hex


class User(db.Model):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(db.String(64), primary_key=True, default=_new_user_id)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        db.String(16), nullable=False, default="user", server_default="user"
    )
    email_verified: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    banned: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    ban_reason: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:  # pragma: no cover - convenience
        status = "banned" if self.banned else "active"
        return f"<User {self.email} ({self.role}, {status})>"
