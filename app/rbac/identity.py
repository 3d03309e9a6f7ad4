"""
Request identity — who is making this request.

A tagged variant instead of a nullable "current user":

    Identity = Anonymous | Authenticated

`Authenticated` is built from the server-side session (not from the
token claims), so role and username are always the stored values.
Dependencies put the resolved identity on `request.state.identity` as
well as returning it.
"""

import uuid
from dataclasses import dataclass
from typing import ClassVar, Union

from app.models.user import UserRole


@dataclass(frozen=True, slots=True)
class Anonymous:
    is_authenticated: ClassVar[bool] = False


@dataclass(frozen=True, slots=True)
class Authenticated:
    is_authenticated: ClassVar[bool] = True

    user_id: uuid.UUID
    username: str
    email: str
    role: UserRole
    session_id: uuid.UUID
    session_token: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


Identity = Union[Anonymous, Authenticated]

ANONYMOUS = Anonymous()
