"""Notification router - inbox endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import SessionContext, get_current_context
from ...database import get_db
from ...utils.concurrency import run_bounded
from .schemas import (
    MarkAllReadResponse,
    NotificationPreferences,
    NotificationResponse,
    UnreadCountResponse,
    to_notification_response,
)
from .service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    """Dependency injection for NotificationService"""
    return NotificationService(db)


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    ctx: SessionContext = Depends(get_current_context),
    service: NotificationService = Depends(get_notification_service),
):
    """Caller's notifications, newest first"""
    notifications = await run_bounded(
        service.list_notifications, ctx, unread_only=unread_only, session=service.db
    )
    return [to_notification_response(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    ctx: SessionContext = Depends(get_current_context),
    service: NotificationService = Depends(get_notification_service),
):
    """Badge count; the dashboard polls this"""
    count = await run_bounded(service.unread_count, ctx, session=service.db)
    return UnreadCountResponse(unreadCount=count)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    ctx: SessionContext = Depends(get_current_context),
    service: NotificationService = Depends(get_notification_service),
):
    updated = await run_bounded(service.mark_all_read, ctx, session=service.db)
    return MarkAllReadResponse(message="All notifications marked as read", updatedCount=updated)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    ctx: SessionContext = Depends(get_current_context),
    service: NotificationService = Depends(get_notification_service),
):
    notification = await run_bounded(service.mark_read, ctx, notification_id, session=service.db)
    return to_notification_response(notification)


@router.get("/preferences", response_model=NotificationPreferences)
async def get_notification_preferences(
    ctx: SessionContext = Depends(get_current_context),
    service: NotificationService = Depends(get_notification_service),
):
    return await run_bounded(service.get_preferences, ctx, session=service.db)


@router.put("/preferences", response_model=NotificationPreferences)
async def update_notification_preferences(
    preferences: NotificationPreferences,
    ctx: SessionContext = Depends(get_current_context),
    service: NotificationService = Depends(get_notification_service),
):
    return await run_bounded(service.update_preferences, ctx, preferences, session=service.db)
