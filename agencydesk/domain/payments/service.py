"""Payment service - Business logic for the payment lifecycle"""

import logging
import math
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...auth import SessionContext
from ...config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, REMINDER_WINDOW_DAYS
from ...errors import NotFoundError, NotificationDeliveryError, PermissionDeniedError, ValidationError
from ...models import Payment, utc_now
from ...utils.sanitization import clean_optional_text
from ..notifications.fanout import (
    PAYMENT_CREATED,
    PAYMENT_MARKED_PAID,
    PAYMENT_UPDATED,
    fanout_payment_event,
)
from .repository import PaymentRepository
from .schemas import MutationResult, PaymentCreate, PaymentFilter, PaymentStats, PaymentUpdate
from .transitions import (
    PAYMENT_STATUSES,
    UNPAID_STATUSES,
    build_new_payment,
    classify_payment,
    compute_mark_paid,
    compute_update,
    validate_mark_paid,
)

logger = logging.getLogger(__name__)

NOTIFICATION_WARNING = "Payment saved, but the notification could not be delivered."


class PaymentService:
    """Service layer for payment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PaymentRepository()

    @staticmethod
    def _require_admin(ctx: SessionContext, action: str) -> None:
        if not ctx.is_admin:
            logger.warning(f"⚠️ {ctx.role} {ctx.user_id} attempted to {action}")
            raise PermissionDeniedError(f"Only admins can {action}")

    @staticmethod
    def _scope(ctx: SessionContext, requested_client_id: Optional[str] = None) -> Optional[str]:
        """Client users only ever see their own payments, whatever they ask for"""
        if ctx.is_client:
            return ctx.client_id
        return requested_client_id or None

    def get_payment(self, ctx: SessionContext, payment_id: str) -> Payment:
        payment = self.repo.get_payment(self.db, payment_id)
        if not payment or (ctx.is_client and payment.client_id != ctx.client_id):
            raise NotFoundError("Payment not found")
        return payment

    def _persist(self, action: str, func, *args, **kwargs) -> Payment:
        try:
            return func(self.db, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to {action}: {e}")
            raise

    def _fanout(self, event: str, ctx: SessionContext, payment: Payment) -> MutationResult:
        client_name = payment.client.name if payment.client else None
        task_title = payment.task.title if payment.task else None
        try:
            fanout_payment_event(self.db, event, ctx, payment, client_name, task_title)
        except NotificationDeliveryError:
            logger.warning(f"⚠️ Payment {payment.id} {event} committed without notification")
            return MutationResult(payment=payment, notification_delivered=False, warning=NOTIFICATION_WARNING)
        return MutationResult(payment=payment)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_payment(self, ctx: SessionContext, data: PaymentCreate) -> MutationResult:
        """Record a new payment and notify the client"""
        self._require_admin(ctx, "record payments")

        fields = build_new_payment(
            client_id=data.clientId,
            task_id=data.taskId,
            amount=data.amount,
            status=data.status,
            due_date=data.dueDate,
            invoice_number=clean_optional_text(data.invoiceNumber, max_length=50),
            notes=clean_optional_text(data.notes),
        )

        client = self.repo.get_client(self.db, fields["client_id"])
        if not client:
            raise ValidationError("Client not found", field="clientId")
        task = self.repo.get_task(self.db, fields["task_id"])
        if not task or task.client_id != client.id:
            raise ValidationError("Task not found for this client", field="taskId")

        payment = self._persist("create payment", self.repo.create_payment, **fields)
        logger.info(f"✅ Payment {payment.id} recorded for client {payment.client_id} by {ctx.user_id}")
        return self._fanout(PAYMENT_CREATED, ctx, payment)

    def update_payment(self, ctx: SessionContext, payment_id: str, data: PaymentUpdate) -> MutationResult:
        """Merge supplied fields into a payment and notify the client"""
        self._require_admin(ctx, "edit payments")

        changes = data.to_changes()
        if "notes" in changes:
            changes["notes"] = clean_optional_text(changes["notes"])
        if "invoice_number" in changes:
            changes["invoice_number"] = clean_optional_text(changes["invoice_number"], max_length=50)

        payment = self.get_payment(ctx, payment_id)
        previous_status = payment.status
        updates = compute_update(payment, changes)

        payment = self._persist("update payment", self.repo.update_payment, payment, **updates)
        if payment.status != previous_status:
            logger.info(f"✅ Payment {payment.id} transitioned: {previous_status} → {payment.status}")
        else:
            logger.info(f"✅ Payment {payment.id} updated by {ctx.user_id}")
        return self._fanout(PAYMENT_UPDATED, ctx, payment)

    def mark_paid(
        self,
        ctx: SessionContext,
        payment_id: str,
        transaction_id: Optional[str],
        document_type: Optional[str] = None,
        document_url: Optional[str] = None,
    ) -> MutationResult:
        """Mark a payment as received and notify the counter-party"""
        # Reject bad input before touching the store
        validate_mark_paid(transaction_id, document_type, document_url)

        payment = self.get_payment(ctx, payment_id)
        previous_status = payment.status
        updates = compute_mark_paid(payment, transaction_id, document_type, document_url)

        payment = self._persist("mark payment as paid", self.repo.update_payment, payment, **updates)
        logger.info(
            f"💰 Payment {payment.id} transitioned: {previous_status} → received "
            f"(transaction {payment.transaction_id})"
        )
        return self._fanout(PAYMENT_MARKED_PAID, ctx, payment)

    def delete_payment(self, ctx: SessionContext, payment_id: str) -> Payment:
        """Soft delete; deleting an already-deleted payment changes nothing"""
        self._require_admin(ctx, "delete payments")

        payment = self.repo.get_payment(self.db, payment_id, include_deleted=True)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.is_deleted:
            logger.debug(f"ℹ️ Payment {payment_id} already deleted")
            return payment

        payment = self._persist("delete payment", self.repo.soft_delete_payment, payment, utc_now())
        logger.info(f"🗑️ Payment {payment.id} soft-deleted by {ctx.user_id}")
        return payment

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def list_payments(
        self,
        ctx: SessionContext,
        filters: PaymentFilter,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[Payment], int, int]:
        """Role-scoped page of payments: (items, total, effective page size)"""
        if page < 1:
            raise ValidationError("Page must be 1 or greater", field="page")
        if page_size < 1:
            raise ValidationError("Page size must be 1 or greater", field="pageSize")
        page_size = min(page_size, MAX_PAGE_SIZE)

        unknown = set(filters.statuses) - set(PAYMENT_STATUSES)
        if unknown:
            raise ValidationError(f"Unknown status filter: {', '.join(sorted(unknown))}", field="status")
        if (
            filters.due_date_start
            and filters.due_date_end
            and filters.due_date_start > filters.due_date_end
        ):
            raise ValidationError("Due date range start must not be after its end", field="dueDateStart")

        items, total = self.repo.query_payments(
            self.db, filters, page, page_size, client_id=self._scope(ctx, filters.client_id)
        )
        return items, total, page_size

    @staticmethod
    def total_pages(total: int, page_size: int) -> int:
        return math.ceil(total / page_size) if total else 0

    def get_reminders(
        self, ctx: SessionContext, today: Optional[date] = None, client_id: Optional[str] = None
    ) -> dict:
        """Upcoming and overdue payments, recomputed on every call"""
        today = today or utc_now().date()
        reminders = {"upcoming": [], "overdue": []}
        for payment in self.repo.get_reminder_candidates(self.db, self._scope(ctx, client_id)):
            kind = classify_payment(payment, today, REMINDER_WINDOW_DAYS)
            if kind:
                reminders[kind].append(payment)
        return reminders

    def get_stats(self, ctx: SessionContext, client_id: Optional[str] = None) -> PaymentStats:
        scope = self._scope(ctx, client_id)
        counts = {status: 0 for status in PAYMENT_STATUSES}
        counts.update(self.repo.count_by_status(self.db, scope))
        return PaymentStats(
            **counts,
            outstandingCount=sum(counts[s] for s in UNPAID_STATUSES),
            outstandingAmount=self.repo.outstanding_amount(self.db, scope),
        )

    def get_changes(
        self, ctx: SessionContext, since: Optional[datetime], since_id: Optional[str] = None
    ) -> list[Payment]:
        """Payments after the feed cursor (tombstones included) for feed consumers"""
        return self.repo.get_changes_since(self.db, since, since_id, client_id=self._scope(ctx))
