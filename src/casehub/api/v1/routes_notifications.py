from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends

from src.casehub.domain.models.notification import Notification
from src.casehub.domain.models.profile import Identity
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.notifications.service import notification_service

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[Depends(get_api_key)],
)


@router.get("/", response_model=List[Notification])
async def list_notifications(
    unread_only: bool = False, identity: Identity = Depends(get_current_identity)
) -> List[Notification]:
    return notification_service.list_for_user(identity.user_id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(notification_id: UUID, identity: Identity = Depends(get_current_identity)) -> Notification:
    return notification_service.mark_read(identity.user_id, notification_id)


@router.post("/read-all")
async def mark_all_read(identity: Identity = Depends(get_current_identity)) -> dict:
    return {"updated": notification_service.mark_all_read(identity.user_id)}
