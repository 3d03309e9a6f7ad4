"""
Password hashing, opaque tokens & the JWT codec.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).
- Session / refresh lookup keys are opaque 256-bit random hex strings.
- Access JWTs carry the user identity plus the opaque session token
  they are bound to; the server-side session registry decides whether
  that binding is still good (hybrid stateful JWT).
- Refresh JWTs carry only the opaque refresh token and are signed with
  a separate secret, so neither secret can forge the other kind.

Verification raises one of the `TokenError` subclasses; callers map
them to HTTP responses (expired → 401, everything else → 403).
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import settings

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_ACCESS_REQUIRED_CLAIMS = ("sub", "email", "username", "role", "session_token")

# bcrypt only accepts inputs up to this many bytes
PASSWORD_MAX_BYTES = 72


# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt / non-bcrypt hash in the row
        return False


# Compared against when the email is unknown, so a miss costs the same
# bcrypt work as a wrong password.
DUMMY_PASSWORD_HASH = hash_password(secrets.token_hex(16))


# ── Opaque tokens ───────────────────────────────────────────────────


def generate_opaque_token() -> str:
    """32 random bytes, hex-encoded (64 chars)."""
    return secrets.token_hex(32)


# ── JWT ──────────────────────────────────────────────────────────────


class TokenError(Exception):
    """Base class for token verification failures."""


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class MalformedClaims(TokenError):
    pass


def _encode(claims: dict[str, Any], secret: str, expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, secret: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired") from exc
    except JWTError as exc:
        raise InvalidSignature(str(exc)) from exc


def create_access_token(
    *,
    user_id: str,
    email: str,
    username: str,
    role: str,
    session_token: str,
    expires_delta: timedelta | None = None,
) -> str:
    claims = {
        "sub": user_id,
        "email": email,
        "username": username,
        "role": role,
        "session_token": session_token,
        "type": ACCESS_TOKEN_TYPE,
    }
    return _encode(
        claims,
        settings.ACCESS_TOKEN_SECRET,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(refresh_token: str, expires_delta: timedelta | None = None) -> str:
    """Wrap the opaque session refresh token in a long-lived signed JWT."""
    return _encode(
        {"token": refresh_token, "type": REFRESH_TOKEN_TYPE},
        settings.REFRESH_TOKEN_SECRET,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_access_token(token: str) -> dict[str, Any]:
    payload = _decode(token, settings.ACCESS_TOKEN_SECRET)
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise MalformedClaims("Not an access token")
    missing = [claim for claim in _ACCESS_REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        raise MalformedClaims(f"Missing claims: {', '.join(missing)}")
    return payload


def decode_refresh_token(token: str) -> dict[str, Any]:
    payload = _decode(token, settings.REFRESH_TOKEN_SECRET)
    if payload.get("type") != REFRESH_TOKEN_TYPE or not payload.get("token"):
        raise MalformedClaims("Not a refresh token")
    return payload
