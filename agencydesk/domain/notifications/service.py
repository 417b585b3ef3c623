"""Notification service - inbox reads, read flags and preferences"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import SessionContext
from ...errors import NotFoundError
from ...models import Notification, default_notification_preferences
from .repository import NotificationRepository
from .schemas import NotificationPreferences

logger = logging.getLogger(__name__)

# Preference flag -> notification type it controls
PREFERENCE_TYPES = {
    "app_tasks": "task",
    "app_clients": "client",
    "app_payments": "payment",
}


def allowed_types(preferences: Optional[dict]) -> list[str]:
    """Notification types the user has not switched off"""
    merged = {**default_notification_preferences(), **(preferences or {})}
    return [kind for flag, kind in PREFERENCE_TYPES.items() if merged.get(flag)]


class NotificationService:
    """Service layer for a caller's notification inbox"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = NotificationRepository()

    @staticmethod
    def _receiver(ctx: SessionContext) -> tuple[str, Optional[str]]:
        if ctx.is_admin:
            return "admin", None
        return "client", ctx.client_id

    def _types(self, ctx: SessionContext) -> list[str]:
        user = self.repo.get_user(self.db, ctx.user_id)
        return allowed_types(user.notification_preferences if user else None)

    def list_notifications(self, ctx: SessionContext, unread_only: bool = False) -> list[Notification]:
        role, receiver_id = self._receiver(ctx)
        return self.repo.get_inbox(
            self.db, role, receiver_id, types=self._types(ctx), unread_only=unread_only
        )

    def unread_count(self, ctx: SessionContext) -> int:
        role, receiver_id = self._receiver(ctx)
        return self.repo.count_unread(self.db, role, receiver_id, types=self._types(ctx))

    def mark_read(self, ctx: SessionContext, notification_id: str) -> Notification:
        role, receiver_id = self._receiver(ctx)
        notification = self.repo.get_notification(self.db, notification_id)
        if (
            not notification
            or notification.receiver_role != role
            or (role == "client" and notification.receiver_id != receiver_id)
        ):
            raise NotFoundError("Notification not found")
        if notification.read:
            return notification
        return self.repo.mark_read(self.db, notification)

    def mark_all_read(self, ctx: SessionContext) -> int:
        role, receiver_id = self._receiver(ctx)
        updated = self.repo.mark_all_read(self.db, role, receiver_id)
        logger.info(f"✅ Marked {updated} notification(s) read for {role} {receiver_id or ctx.user_id}")
        return updated

    def get_preferences(self, ctx: SessionContext) -> NotificationPreferences:
        user = self.repo.get_user(self.db, ctx.user_id)
        if not user:
            raise NotFoundError("User not found")
        merged = {**default_notification_preferences(), **(user.notification_preferences or {})}
        return NotificationPreferences(**merged)

    def update_preferences(
        self, ctx: SessionContext, preferences: NotificationPreferences
    ) -> NotificationPreferences:
        user = self.repo.get_user(self.db, ctx.user_id)
        if not user:
            raise NotFoundError("User not found")
        user = self.repo.save_preferences(self.db, user, preferences.model_dump())
        return NotificationPreferences(**user.notification_preferences)
