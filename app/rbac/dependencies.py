"""
Auth dependencies — the per-request gate for protected routes.

`get_current_identity` turns a bearer token into an `Authenticated`
identity:

1. No bearer token                          → 401 "No token provided"
2. JWT expired                              → 401 "Token expired"
   (401, not 403, so clients know to refresh rather than re-login)
3. Bad signature                            → 403 "Invalid token"
4. Not an access token / no session claim   → 403 "Invalid token format"
5. Session missing, inactive or expired     → 403 "Session expired or invalid"
6. Claims disagree with the session's owner → 403 "Token data mismatch"

The identity returned is the one stored server-side, never the raw
claims.  `optional_identity` runs the same checks but degrades to
`Anonymous`; `require_role` / `require_admin` layer a role check on top.

Usage in a route:
    @router.get("/me")
    async def me(identity: Authenticated = Depends(get_current_identity)): ...

    @router.post("/users/{user_id}/disable")
    async def disable(identity: Authenticated = Depends(require_admin)): ...
"""

import logging

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import AuthError, Forbidden, InvalidToken, Unauthenticated
from app.core.security import (
    InvalidSignature,
    MalformedClaims,
    TokenExpired,
    decode_access_token,
)
from app.models.user import UserRole
from app.rbac.identity import ANONYMOUS, Authenticated, Identity
from app.services import session_service

logger = logging.getLogger("rbac")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def resolve_identity(token: str | None, db: AsyncSession) -> Authenticated:
    if not token:
        raise Unauthenticated("No token provided")

    try:
        claims = decode_access_token(token)
    except TokenExpired:
        raise Unauthenticated("Token expired")
    except MalformedClaims:
        raise InvalidToken("Invalid token format")
    except InvalidSignature:
        raise InvalidToken("Invalid token")

    view = await session_service.validate_session(claims["session_token"], db)
    if view is None:
        raise InvalidToken("Session expired or invalid")

    if (
        str(view.user_id) != claims["sub"]
        or view.email != claims["email"]
        or view.username != claims["username"]
    ):
        logger.warning(
            "Token claims for user %s do not match session %s", claims["sub"], view.session_id,
        )
        raise InvalidToken("Token data mismatch")

    return Authenticated(
        user_id=view.user_id,
        username=view.username,
        email=view.email,
        role=view.role,
        session_id=view.session_id,
        session_token=view.session_token,
    )


async def get_current_identity(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Authenticated:
    identity = await resolve_identity(token, db)
    request.state.identity = identity
    return identity


async def optional_identity(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Same resolution as `get_current_identity`, but never fails the request."""
    identity: Identity = ANONYMOUS
    if token:
        try:
            identity = await resolve_identity(token, db)
        except AuthError as exc:
            logger.debug("Optional auth fell back to anonymous: %s", exc.detail)
        except SQLAlchemyError as exc:
            logger.warning("Optional auth skipped, session lookup failed: %s", exc)
    request.state.identity = identity
    return identity


class require_role:
    """
    Dependency factory.

    Can be used as:
        Depends(require_role(UserRole.ADMIN))
        Depends(require_role(UserRole.USER, UserRole.ADMIN))
    """

    def __init__(self, *roles: UserRole):
        self.roles = set(roles)

    async def __call__(
        self,
        identity: Authenticated = Depends(get_current_identity),
    ) -> Authenticated:
        if identity.role not in self.roles:
            logger.warning(
                "Role check failed for user %s — required one of %s, has %s",
                identity.user_id,
                sorted(r.value for r in self.roles),
                identity.role.value,
            )
            # Intentionally vague
            raise Forbidden("Insufficient permissions")
        return identity


require_admin = require_role(UserRole.ADMIN)
