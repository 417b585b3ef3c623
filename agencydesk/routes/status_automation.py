"""
API endpoint for payment status automation and analytics
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import SessionContext, require_admin
from ..database import get_db
from ..models import Payment
from ..services.status_automation import mark_overdue_payments
from ..utils.concurrency import run_bounded

router = APIRouter(prefix="/status", tags=["status"])


class StatusSummary(BaseModel):
    due: int
    invoiced: int
    pending: int
    received: int
    overdue: int
    canceled: int


class AutomationResult(BaseModel):
    due_to_overdue: int
    invoiced_to_overdue: int
    pending_to_overdue: int
    total_updated: int


def _count_statuses(db: Session) -> dict:
    status_counts = (
        db.query(Payment.status, func.count(Payment.id).label("count"))
        .filter(Payment.is_deleted.is_(False))
        .group_by(Payment.status)
        .all()
    )

    # Initialize with zeros
    summary = {"due": 0, "invoiced": 0, "pending": 0, "received": 0, "overdue": 0, "canceled": 0}

    # Fill in actual counts
    for status, count in status_counts:
        if status in summary:
            summary[status] = count
    return summary


@router.get("/analytics", response_model=StatusSummary)
async def get_status_analytics(
    ctx: SessionContext = Depends(require_admin), db: Session = Depends(get_db)
):
    """Get count of payments by status across all clients"""
    return StatusSummary(**await run_bounded(_count_statuses, db, session=db))


@router.post("/automation/run", response_model=AutomationResult)
async def run_status_automation(
    ctx: SessionContext = Depends(require_admin), db: Session = Depends(get_db)
):
    """
    Manually trigger the overdue sweep
    (In production, this should be run via scheduled job/cron)
    """
    result = await run_bounded(mark_overdue_payments, db, session=db)
    return AutomationResult(**result)
