"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.

The wire format is camelCase (`accessToken`, `expiresAt`, ...); fields
are snake_case in Python and accept either spelling on input.

Request fields are optional at the schema level on purpose: the auth
service validates presence and shape itself, in a fixed order, and
answers 400 naming the offending field.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ── Auth ─────────────────────────────────────────────────────────────
class SignupRequest(CamelModel):
    username: str | None = None
    email: str | None = None
    password: str | None = None
    device_info: dict[str, Any] | None = None


class LoginRequest(CamelModel):
    email: str | None = None
    password: str | None = None
    device_info: dict[str, Any] | None = None


class RefreshTokenRequest(CamelModel):
    refresh_token: str | None = None


class ChangePasswordRequest(CamelModel):
    current_password: str | None = None
    new_password: str | None = None


# ── User ─────────────────────────────────────────────────────────────
class UserOut(CamelModel):
    id: uuid.UUID
    username: str
    email: str
    role: str
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None


class AuthResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut


class RefreshResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime


class AuthStatusResponse(CamelModel):
    authenticated: bool
    user: UserOut | None = None


# ── Sessions ─────────────────────────────────────────────────────────
class SessionOut(CamelModel):
    id: uuid.UUID
    ip_address: str | None = None
    user_agent: str | None = None
    device_info: dict[str, Any] | None = None
    last_activity: datetime
    created_at: datetime
    expires_at: datetime
    current: bool = False


class SessionListResponse(CamelModel):
    sessions: list[SessionOut]
    count: int


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(CamelModel):
    message: str
