"""
Admin controller — session oversight & account control.

Every route uses `Depends(require_admin)` for enforcement.
Controllers are THIN — they delegate to services and return schemas.
"""

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.controllers.auth_controller import session_list
from app.core.database import get_db
from app.rbac.dependencies import require_admin
from app.rbac.identity import Authenticated
from app.schemas import MessageResponse, SessionListResponse
from app.services import session_service, user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/users/{user_id}/sessions", response_model=SessionListResponse)
async def list_user_sessions(
    user_id: uuid.UUID,
    admin: Authenticated = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await user_service.get_user_by_id(user_id, db)
    sessions = await session_service.list_active_sessions(user_id, db)
    return session_list(sessions, current_session_id=admin.session_id)


@router.post("/users/{user_id}/logout-all", response_model=MessageResponse)
async def force_logout(
    user_id: uuid.UUID,
    admin: Authenticated = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Sign a user out of every device."""
    await user_service.get_user_by_id(user_id, db)
    count = await session_service.invalidate_all_user_sessions(user_id, db)
    logger.info("Admin %s force-logged-out user %s (%d sessions)", admin.user_id, user_id, count)
    return MessageResponse(message=f"Logged out from {count} session(s)")


@router.post("/users/{user_id}/disable", response_model=MessageResponse)
async def disable_user(
    user_id: uuid.UUID,
    admin: Authenticated = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await user_service.disable_user(user_id, db)
    logger.info("Admin %s disabled user %s", admin.user_id, user_id)
    return MessageResponse(message="User disabled successfully")
