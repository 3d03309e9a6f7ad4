"""
Auth controller — signup, login, refresh, logout & session listing.

Signup, login, refresh and status are PUBLIC.  Everything else requires
a valid access token bound to a live session.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.rbac.dependencies import get_current_identity, optional_identity
from app.rbac.identity import Authenticated, Identity
from app.schemas import (
    AuthResponse,
    AuthStatusResponse,
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshResponse,
    RefreshTokenRequest,
    SessionListResponse,
    SessionOut,
    SignupRequest,
    UserOut,
)
from app.services import auth_service, session_service, user_service
from app.services.rate_limiter import LoginRateLimiter

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def get_rate_limiter(request: Request) -> LoginRateLimiter:
    return request.app.state.login_rate_limiter


def session_list(sessions, current_session_id=None) -> SessionListResponse:
    items = [
        SessionOut(
            id=s.id,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            device_info=s.device_info,
            last_activity=s.last_activity,
            created_at=s.created_at,
            expires_at=s.expires_at,
            current=s.id == current_session_id,
        )
        for s in sessions
    ]
    return SessionListResponse(sessions=items, count=len(items))


def _client_meta(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    body: SignupRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Create an account and open its first session."""
    return await auth_service.signup(
        body.username,
        body.email,
        body.password,
        db,
        device_info=body.device_info,
        **_client_meta(request),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    rate_limiter: LoginRateLimiter = Depends(get_rate_limiter),
):
    """Authenticate with email + password → receive JWT pair."""
    return await auth_service.authenticate_user(
        body.email,
        body.password,
        db,
        rate_limiter,
        device_info=body.device_info,
        **_client_meta(request),
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    body: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange a valid refresh token for a new access token."""
    return await auth_service.refresh_access_token(body.refresh_token, db)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    identity: Authenticated = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate the current session (server-side logout)."""
    await auth_service.logout(identity, db)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    identity: Authenticated = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate every session of the current user."""
    count = await auth_service.logout_all(identity, db)
    return MessageResponse(message=f"Logged out from {count} session(s)")


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    identity: Authenticated = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Active sessions of the current user, most recently used first."""
    sessions = await session_service.list_active_sessions(identity.user_id, db)
    return session_list(sessions, current_session_id=identity.session_id)


@router.get("/me", response_model=UserOut)
async def me(
    identity: Authenticated = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.get_user_by_id(identity.user_id, db)
    return auth_service.user_out(user)


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status(
    identity: Identity = Depends(optional_identity),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller is signed in; never fails on a bad token."""
    if not identity.is_authenticated:
        return AuthStatusResponse(authenticated=False)
    user = await user_service.get_user_by_id(identity.user_id, db)
    return AuthStatusResponse(authenticated=True, user=auth_service.user_out(user))


@router.put("/password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    identity: Authenticated = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    revoked = await auth_service.change_password(
        identity, body.current_password, body.new_password, db,
    )
    return MessageResponse(message=f"Password updated; {revoked} other session(s) signed out")
