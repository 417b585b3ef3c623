"""
Notification fanout for payment events.

Each payment event produces notifications for the counter-party:
admin actions notify the client, client actions notify the admins.
The payment is already committed when fanout runs, so a failure here is
reported as NotificationDeliveryError and never undoes the payment.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import SessionContext
from ...errors import NotificationDeliveryError
from ...models import Notification, Payment
from .repository import NotificationRepository

logger = logging.getLogger(__name__)

PAYMENT_CREATED = "created"
PAYMENT_UPDATED = "updated"
PAYMENT_MARKED_PAID = "marked_paid"

TITLES = {
    PAYMENT_CREATED: "New Payment Recorded",
    PAYMENT_UPDATED: "Payment Updated",
    PAYMENT_MARKED_PAID: "Payment Received",
}


def format_amount(amount) -> str:
    return f"{Decimal(str(amount)):,.2f}"


def _message(event: str, payment: Payment, client_name: str, task_title: str) -> str:
    if event == PAYMENT_CREATED:
        return f'A new payment of {format_amount(payment.amount)} has been recorded for task "{task_title}".'
    if event == PAYMENT_UPDATED:
        return f'A payment for task "{task_title}" has been updated.'
    return f'Payment received from {client_name} for task "{task_title}".'


def build_payment_notifications(
    event: str,
    ctx: SessionContext,
    payment: Payment,
    client_name: Optional[str] = None,
    task_title: Optional[str] = None,
) -> list[dict]:
    """Notification rows for a payment event (no I/O)"""
    if event not in TITLES:
        raise ValueError(f"Unknown payment event: {event}")

    client_name = client_name or "Unknown Client"
    task_title = task_title or "Unknown Task"
    base = {
        "sender_role": ctx.role,
        "triggered_by": ctx.user_id,
        "type": "payment",
        "title": TITLES[event],
        "message": _message(event, payment, client_name, task_title),
        "read": False,
    }

    if event in (PAYMENT_CREATED, PAYMENT_UPDATED):
        # Only admins record and edit payments; the client hears about it
        if not ctx.is_admin:
            return []
        return [{**base, "receiver_role": "client", "receiver_id": payment.client_id}]

    if ctx.is_client:
        return [{**base, "receiver_role": "admin", "receiver_id": None}]
    return [{**base, "receiver_role": "client", "receiver_id": payment.client_id}]


def fanout_payment_event(
    db: Session,
    event: str,
    ctx: SessionContext,
    payment: Payment,
    client_name: Optional[str] = None,
    task_title: Optional[str] = None,
) -> list[Notification]:
    """Write the notifications for a payment event"""
    if payment.is_deleted:
        logger.debug(f"ℹ️ Skipping {event} notifications for deleted payment {payment.id}")
        return []

    entries = build_payment_notifications(event, ctx, payment, client_name, task_title)
    if not entries:
        return []

    try:
        notifications = NotificationRepository.create_notifications(db, entries)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Failed to write {event} notification for payment {payment.id}: {e}")
        raise NotificationDeliveryError("Notification could not be delivered") from e

    for notification in notifications:
        logger.info(
            f"🔔 {notification.title} → {notification.receiver_role}"
            f"{':' + notification.receiver_id if notification.receiver_id else ''} (payment {payment.id})"
        )
    return notifications
