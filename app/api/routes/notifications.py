"""
Notification inbox endpoints.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.notification import MarkAllReadResponse, NotificationResponse
from app.schemas.payment import OkResponse
from app.services import notification_service
from app.core.security import get_current_user_id

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/", response_model=list[NotificationResponse])
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's notifications, newest first."""
    return await notification_service.list_notifications(db, user_id, limit=limit, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=OkResponse, status_code=status.HTTP_200_OK)
async def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await notification_service.mark_read(db, user_id, notification_id)
    return OkResponse()


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    updated = await notification_service.mark_all_read(db, user_id)
    return MarkAllReadResponse(updated=updated)
