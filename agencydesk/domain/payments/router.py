"""Payment router - FastAPI endpoints for the payment lifecycle"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import SessionContext, get_current_context
from ...config import DEFAULT_PAGE_SIZE
from ...database import get_db
from ...utils.concurrency import payment_mutations, run_bounded
from .schemas import (
    MarkPaidRequest,
    PaymentChanges,
    PaymentCreate,
    PaymentFilter,
    PaymentMutationResponse,
    PaymentPage,
    PaymentResponse,
    PaymentStats,
    PaymentUpdate,
    ReminderResponse,
    converted,
    to_mutation_response,
    to_payment_response,
)
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db)


def parse_statuses(values: Optional[list[str]]) -> set[str]:
    """Accept ?status=a&status=b as well as ?status=a,b"""
    statuses = set()
    for value in values or []:
        statuses.update(part.strip().lower() for part in value.split(",") if part.strip())
    statuses.discard("all")
    return statuses


# ============================================================================
# READ MODEL
# ============================================================================


@router.get("", response_model=PaymentPage)
async def list_payments(
    status: Optional[list[str]] = Query(None),
    clientId: Optional[str] = Query(None),
    dueDateStart: Optional[date] = Query(None),
    dueDateEnd: Optional[date] = Query(None),
    page: int = Query(1),
    pageSize: int = Query(DEFAULT_PAGE_SIZE),
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Role-scoped, filtered page of payments, newest first"""
    filters = PaymentFilter(
        statuses=parse_statuses(status),
        client_id=clientId,
        due_date_start=dueDateStart,
        due_date_end=dueDateEnd,
    )
    items, total, page_size = await run_bounded(
        service.list_payments, ctx, filters, page, pageSize, session=service.db
    )
    return PaymentPage(
        items=[to_payment_response(p) for p in items],
        total=total,
        page=page,
        pageSize=page_size,
        totalPages=service.total_pages(total, page_size),
    )


@router.get("/reminders", response_model=ReminderResponse)
async def get_payment_reminders(
    clientId: Optional[str] = Query(None),
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Upcoming and overdue payment alerts"""
    reminders = await run_bounded(service.get_reminders, ctx, client_id=clientId, session=service.db)
    return ReminderResponse(
        upcoming=[to_payment_response(p) for p in reminders["upcoming"]],
        overdue=[to_payment_response(p) for p in reminders["overdue"]],
    )


@router.get("/stats", response_model=PaymentStats)
async def get_payment_stats(
    clientId: Optional[str] = Query(None),
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Dashboard counts per status"""
    return await run_bounded(service.get_stats, ctx, client_id=clientId, session=service.db)


@router.get("/changes", response_model=PaymentChanges)
async def get_payment_changes(
    since: Optional[datetime] = Query(None),
    sinceId: Optional[str] = Query(None),
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Change feed: payments updated after the (since, sinceId) cursor, deleted
    ones as tombstones. Pass back the returned cursor and cursorId to resume.
    """
    if since is not None and since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    payments = await run_bounded(service.get_changes, ctx, since, sinceId, session=service.db)
    if not payments:
        return PaymentChanges(items=[], cursor=since, cursorId=sinceId)
    return PaymentChanges(
        items=[to_payment_response(p) for p in payments],
        cursor=payments[-1].updated_at,
        cursorId=payments[-1].id,
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    return await run_bounded(
        converted(service.get_payment, to_payment_response), ctx, payment_id, session=service.db
    )


# ============================================================================
# MUTATIONS
# ============================================================================


@router.post("", response_model=PaymentMutationResponse, status_code=201)
async def create_payment(
    data: PaymentCreate,
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Record a new payment (admin)"""
    return await run_bounded(
        converted(service.create_payment, to_mutation_response), ctx, data, session=service.db
    )


@router.put("/{payment_id}", response_model=PaymentMutationResponse)
async def update_payment(
    payment_id: str,
    data: PaymentUpdate,
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Update a payment (admin); client and task cannot change"""
    with payment_mutations.hold(payment_id) as lease:
        return await run_bounded(
            converted(service.update_payment, to_mutation_response),
            ctx,
            payment_id,
            data,
            session=service.db,
            after=(lease.handoff(),),
        )


@router.post("/{payment_id}/mark-paid", response_model=PaymentMutationResponse)
async def mark_payment_paid(
    payment_id: str,
    data: MarkPaidRequest,
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Mark a payment as received with its transaction reference"""
    with payment_mutations.hold(payment_id) as lease:
        return await run_bounded(
            converted(service.mark_paid, to_mutation_response),
            ctx,
            payment_id,
            data.transactionId,
            document_type=data.documentType,
            document_url=data.documentUrl,
            session=service.db,
            after=(lease.handoff(),),
        )


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: str,
    ctx: SessionContext = Depends(get_current_context),
    service: PaymentService = Depends(get_payment_service),
):
    """Soft delete a payment (admin); repeating the call is harmless"""
    with payment_mutations.hold(payment_id) as lease:
        await run_bounded(
            service.delete_payment, ctx, payment_id, session=service.db, after=(lease.handoff(),)
        )
    return {"message": "Payment deleted", "id": payment_id}
