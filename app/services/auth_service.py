"""
Authentication service.

Handles:
- Signup (input policy, account creation, first session)
- Login with identifier rate limiting and durable account lockout
- Refresh: session-token rotation behind a signed refresh token
- Logout (one session) and logout-all (every session of the user)
- Password change (other sessions are revoked)

Every flow is a short-circuiting pipeline: the first failing check
decides the response.  All business logic lives here — controllers
call service functions and return the result.

Login never reveals whether an email is registered: an unknown email
runs the same rate-limit, lockout and bcrypt steps as a wrong password
and gets the same "Invalid credentials" answer.
"""

import logging
import re
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import ping
from app.core.errors import (
    AccountLocked,
    InvalidCredentials,
    InvalidToken,
    TooManyAttempts,
    ValidationError,
)
from app.core.security import (
    DUMMY_PASSWORD_HASH,
    PASSWORD_MAX_BYTES,
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from app.models.base import utcnow
from app.models.user import User
from app.rbac.identity import Authenticated
from app.schemas import AuthResponse, RefreshResponse, UserOut
from app.services import lockout_service, session_service, user_service
from app.services.rate_limiter import LoginRateLimiter
from app.services.session_service import IssuedSession, SessionView

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
_USERNAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9._-]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ── Helpers ──────────────────────────────────────────────────────────

def user_out(user: User) -> UserOut:
    """Public user fields — never the password hash."""
    return UserOut(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role.value,
        is_active=user.is_active,
        last_login=user.last_login,
        created_at=user.created_at,
    )


def require_fields(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def validate_email(email: str) -> None:
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise ValidationError("email: invalid email format")


def validate_password(password: str, field: str = "password") -> None:
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"{field}: must be at least {settings.PASSWORD_MIN_LENGTH} characters long"
        )
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"{field}: must be at most {PASSWORD_MAX_BYTES} bytes")


def validate_username(username: str) -> None:
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"username: must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters long"
        )
    # Reject rather than silently strip
    if _USERNAME_DISALLOWED.search(username):
        raise ValidationError(
            "username: may only contain letters, digits, '.', '_' and '-'"
        )


def _access_token_for(user_id, email: str, username: str, role: str, session_token: str) -> str:
    return create_access_token(
        user_id=str(user_id),
        email=email,
        username=username,
        role=role,
        session_token=session_token,
    )


def _issue(user: User, issued: IssuedSession) -> AuthResponse:
    return AuthResponse(
        access_token=_access_token_for(
            user.id, user.email, user.username, user.role.value, issued.session_token,
        ),
        refresh_token=create_refresh_token(issued.refresh_token),
        expires_at=issued.expires_at,
        user=user_out(user),
    )


# ── Signup ───────────────────────────────────────────────────────────

async def signup(
    username: str | None,
    email: str | None,
    password: str | None,
    db: AsyncSession,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_info: dict[str, Any] | None = None,
) -> AuthResponse:
    require_fields(username=username, email=email, password=password)
    validate_username(username)
    validate_email(email)
    validate_password(password)

    await ping(db)

    if await user_service.get_user_by_email(email, db) is not None:
        raise ValidationError("email: already in use")
    if await user_service.get_user_by_username(username, db) is not None:
        raise ValidationError("username: already in use")

    user = await user_service.create_user(username, email, password, db)
    issued = await session_service.create_session(
        user.id, db, ip_address=ip_address, user_agent=user_agent, device_info=device_info,
    )
    return _issue(user, issued)


# ── Login ────────────────────────────────────────────────────────────

async def authenticate_user(
    email: str | None,
    password: str | None,
    db: AsyncSession,
    rate_limiter: LoginRateLimiter,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_info: dict[str, Any] | None = None,
) -> AuthResponse:
    """
    Validate credentials under rate limiting and lockout, create a new
    session, and return access + refresh tokens.
    """
    require_fields(email=email, password=password)
    validate_email(email)
    identifier = user_service.normalize_email(email)

    decision = rate_limiter.check(identifier)
    if not decision.allowed:
        raise TooManyAttempts(decision.retry_after)

    await ping(db)

    user = await user_service.get_user_by_email(identifier, db)
    if user is None:
        # Same work as a wrong password for a real account
        verify_password(password, DUMMY_PASSWORD_HASH)
        await lockout_service.record_failure(None, db)
        logger.info("Login failed: unknown email")
        raise InvalidCredentials()

    if not user.is_active:
        logger.info("Login refused for deactivated user %s", user.id)
        raise InvalidCredentials("Account is deactivated. Please contact support.")

    lockout = lockout_service.check_lockout(user)
    if lockout.locked:
        raise AccountLocked(lockout.retry_after)

    if not verify_password(password, user.password_hash):
        failure = await lockout_service.record_failure(
            user.id,
            db,
            max_attempts=settings.LOCKOUT_MAX_ATTEMPTS,
        )
        if failure.locked:
            raise AccountLocked(failure.retry_after)
        raise InvalidCredentials()

    await lockout_service.reset_failures(user.id, db)
    rate_limiter.reset(identifier)
    user.last_login = utcnow()

    issued = await session_service.create_session(
        user.id, db, ip_address=ip_address, user_agent=user_agent, device_info=device_info,
    )
    logger.info("User %s logged in (session %s)", user.id, issued.session_id)
    return _issue(user, issued)


# ── Refresh ──────────────────────────────────────────────────────────

async def refresh_access_token(refresh_token_raw: str | None, db: AsyncSession) -> RefreshResponse:
    """
    Exchange a signed refresh token for a new access token bound to a
    freshly rotated session token.
    """
    require_fields(refreshToken=refresh_token_raw)

    try:
        payload = decode_refresh_token(refresh_token_raw)
    except TokenError as exc:
        logger.info("Refresh rejected: %s", exc)
        raise InvalidToken("Invalid refresh token")

    view: SessionView | None = await session_service.refresh_session(payload["token"], db)
    if view is None:
        raise InvalidToken("Invalid or expired refresh token")

    if settings.ROTATE_REFRESH_TOKENS:
        refresh_token_out = create_refresh_token(view.refresh_token)
    else:
        refresh_token_out = refresh_token_raw

    return RefreshResponse(
        access_token=_access_token_for(
            view.user_id, view.email, view.username, view.role.value, view.session_token,
        ),
        refresh_token=refresh_token_out,
        expires_at=view.expires_at,
    )


# ── Logout ───────────────────────────────────────────────────────────

async def logout(identity: Authenticated, db: AsyncSession) -> None:
    await session_service.invalidate_session(identity.session_token, db)
    logger.info("User %s logged out of session %s", identity.user_id, identity.session_id)


async def logout_all(identity: Authenticated, db: AsyncSession) -> int:
    return await session_service.invalidate_all_user_sessions(identity.user_id, db)


# ── Password change ─────────────────────────────────────────────────

async def change_password(
    identity: Authenticated,
    current_password: str | None,
    new_password: str | None,
    db: AsyncSession,
) -> int:
    """
    Replace the caller's password and revoke every other session.

    Returns the number of sessions revoked.
    """
    require_fields(currentPassword=current_password, newPassword=new_password)
    validate_password(new_password, field="newPassword")

    user = await user_service.get_user_by_id(identity.user_id, db)
    if not verify_password(current_password, user.password_hash):
        raise InvalidCredentials("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    user.last_password_change = utcnow()
    revoked = await session_service.invalidate_all_user_sessions(
        user.id, db, except_session_id=identity.session_id,
    )
    logger.info("User %s changed password; %d other session(s) revoked", user.id, revoked)
    return revoked
