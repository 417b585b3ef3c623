"""Notification domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ...models import Notification


class NotificationResponse(BaseModel):
    id: str
    receiverRole: str
    receiverId: Optional[str] = None
    senderRole: Optional[str] = None
    triggeredBy: Optional[str] = None
    type: str
    title: str
    message: str
    read: bool
    createdAt: datetime


class UnreadCountResponse(BaseModel):
    unreadCount: int


class MarkAllReadResponse(BaseModel):
    message: str
    updatedCount: int


class NotificationPreferences(BaseModel):
    app_tasks: bool = True
    app_clients: bool = True
    app_payments: bool = True


def to_notification_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        receiverRole=notification.receiver_role,
        receiverId=notification.receiver_id,
        senderRole=notification.sender_role,
        triggeredBy=notification.triggered_by,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        read=bool(notification.read),
        createdAt=notification.created_at,
    )
