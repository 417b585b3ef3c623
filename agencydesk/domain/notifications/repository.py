"""Notification repository - Database operations for notifications"""

from typing import Optional

from sqlalchemy.orm import Query, Session

from ...models import Notification, User


class NotificationRepository:
    """Repository for notification database operations"""

    @staticmethod
    def create_notifications(db: Session, entries: list[dict]) -> list[Notification]:
        notifications = [Notification(**entry) for entry in entries]
        db.add_all(notifications)
        db.commit()
        for notification in notifications:
            db.refresh(notification)
        return notifications

    @staticmethod
    def inbox_query(
        db: Session,
        receiver_role: str,
        receiver_id: Optional[str] = None,
        types: Optional[list[str]] = None,
    ) -> Query:
        """Notifications addressed to a role (and client, for client receivers)"""
        query = db.query(Notification).filter(Notification.receiver_role == receiver_role)
        if receiver_role == "client":
            query = query.filter(Notification.receiver_id == receiver_id)
        if types is not None:
            query = query.filter(Notification.type.in_(types))
        return query

    @staticmethod
    def get_inbox(
        db: Session,
        receiver_role: str,
        receiver_id: Optional[str] = None,
        types: Optional[list[str]] = None,
        unread_only: bool = False,
        limit: int = 100,
    ) -> list[Notification]:
        query = NotificationRepository.inbox_query(db, receiver_role, receiver_id, types)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return (
            query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
        )

    @staticmethod
    def count_unread(
        db: Session, receiver_role: str, receiver_id: Optional[str] = None, types: Optional[list[str]] = None
    ) -> int:
        return (
            NotificationRepository.inbox_query(db, receiver_role, receiver_id, types)
            .filter(Notification.read.is_(False))
            .count()
        )

    @staticmethod
    def get_notification(db: Session, notification_id: str) -> Optional[Notification]:
        return db.query(Notification).filter(Notification.id == notification_id).first()

    @staticmethod
    def mark_read(db: Session, notification: Notification) -> Notification:
        notification.read = True
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def mark_all_read(db: Session, receiver_role: str, receiver_id: Optional[str] = None) -> int:
        """Bulk update of every unread notification in one inbox"""
        updated = (
            NotificationRepository.inbox_query(db, receiver_role, receiver_id)
            .filter(Notification.read.is_(False))
            .update({Notification.read: True}, synchronize_session=False)
        )
        db.commit()
        return updated

    @staticmethod
    def get_user(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def save_preferences(db: Session, user: User, preferences: dict) -> User:
        user.notification_preferences = preferences
        db.commit()
        db.refresh(user)
        return user
