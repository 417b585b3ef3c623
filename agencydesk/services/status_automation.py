"""
Automated status transitions for payments
Moves unpaid payments (due, invoiced, pending) to overdue once their due date has passed
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.payments.repository import PaymentRepository
from ..domain.payments.transitions import ensure_transition, is_past_due
from ..models import utc_now

logger = logging.getLogger(__name__)


def mark_overdue_payments(db: Session, today: Optional[date] = None) -> dict:
    """
    Update payment statuses based on due dates
    Should be run as a scheduled job (e.g., daily cron)

    Returns:
        dict: Summary of status changes made
    """
    now = utc_now()
    today = today or now.date()
    summary = {"due_to_overdue": 0, "invoiced_to_overdue": 0, "pending_to_overdue": 0, "total_updated": 0}

    try:
        for payment in PaymentRepository.get_past_due(db, today):
            if not is_past_due(payment, today):
                continue
            ensure_transition(payment.status, "overdue", payment.due_date, today)
            summary[f"{payment.status}_to_overdue"] += 1
            logger.info(f"✅ Payment {payment.id} transitioned: {payment.status} → overdue")
            payment.status = "overdue"
            payment.updated_at = now

        total = summary["due_to_overdue"] + summary["invoiced_to_overdue"] + summary["pending_to_overdue"]
        if total > 0:
            db.commit()
            summary["total_updated"] = total
            logger.info(f"📊 Status automation summary: {summary}")
        else:
            logger.debug("ℹ️ No payment status updates needed")

        return summary

    except Exception as e:
        logger.error(f"❌ Error updating payment statuses: {str(e)}")
        db.rollback()
        raise
