from __future__ import annotations

"""
User model.

Design decisions:
- Email is stored lower-cased; lookups normalize the same way.
- Role is a two-value ENUM (user / admin) stored by value.
- Failed-login bookkeeping (`login_attempts`, `lockout_until`) lives on
  the row so lockouts survive restarts, unlike the in-memory rate limiter.
- There is NO "current session" column.  Sessions are the only source of
  truth; see `session_service.has_active_session`.
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from app.models.session import UserSession


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [m.value for m in e]),
        default=UserRole.USER,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # ── Lockout bookkeeping ──────────────────────────────────────────
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lockout_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_password_change: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # ── Relationships ────────────────────────────────────────────────
    sessions: Mapped[list["UserSession"]] = relationship(  # noqa: F821
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User {self.username} <{self.email}>>"
