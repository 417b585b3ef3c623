"""Payment repository - Database operations for payments"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Query, Session, joinedload

from ...models import Client, Payment, Task
from .schemas import PaymentFilter
from .transitions import PAYMENT_STATUSES, UNPAID_STATUSES


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_payment(db: Session, payment_id: str, include_deleted: bool = False) -> Optional[Payment]:
        """Get a payment by ID with its client and task (soft-deleted rows only when asked for)"""
        query = (
            db.query(Payment)
            .options(joinedload(Payment.client), joinedload(Payment.task))
            .filter(Payment.id == payment_id)
        )
        if not include_deleted:
            query = query.filter(Payment.is_deleted.is_(False))
        return query.first()

    @staticmethod
    def create_payment(db: Session, **fields) -> Payment:
        payment = Payment(**fields)
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def update_payment(db: Session, payment: Payment, **updates) -> Payment:
        """Apply computed column values; None clears a column"""
        for key, value in updates.items():
            if hasattr(payment, key):
                setattr(payment, key, value)

        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def soft_delete_payment(db: Session, payment: Payment, deleted_at: datetime) -> Payment:
        payment.is_deleted = True
        payment.updated_at = deleted_at
        db.commit()
        db.refresh(payment)
        return payment

    @staticmethod
    def get_client(db: Session, client_id: str) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id, Client.is_deleted.is_(False)).first()

    @staticmethod
    def get_task(db: Session, task_id: str) -> Optional[Task]:
        return db.query(Task).filter(Task.id == task_id, Task.is_deleted.is_(False)).first()

    # Read model
    @staticmethod
    def scoped_query(db: Session, client_id: Optional[str] = None) -> Query:
        """Non-deleted payments, optionally limited to one client"""
        query = (
            db.query(Payment)
            .options(joinedload(Payment.client), joinedload(Payment.task))
            .filter(Payment.is_deleted.is_(False))
        )
        if client_id:
            query = query.filter(Payment.client_id == client_id)
        return query

    @staticmethod
    def query_payments(
        db: Session,
        filters: PaymentFilter,
        page: int,
        page_size: int,
        client_id: Optional[str] = None,
    ) -> tuple[list[Payment], int]:
        """
        Filtered, ordered page of payments plus the total match count.
        `client_id` is the effective client scope decided by the caller.
        """
        query = PaymentRepository.scoped_query(db, client_id)

        statuses = filters.statuses or set(PAYMENT_STATUSES)
        query = query.filter(Payment.status.in_(sorted(statuses)))

        if filters.due_date_start:
            query = query.filter(Payment.due_date >= filters.due_date_start)
        if filters.due_date_end:
            query = query.filter(Payment.due_date <= filters.due_date_end)

        total = query.order_by(None).count()
        items = (
            query.order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total

    @staticmethod
    def get_reminder_candidates(db: Session, client_id: Optional[str] = None) -> list[Payment]:
        """Payments that can be classified as upcoming or overdue"""
        return (
            PaymentRepository.scoped_query(db, client_id)
            .filter(
                Payment.status.in_(["pending", "invoiced", "overdue"]),
                Payment.due_date.isnot(None),
            )
            .order_by(Payment.due_date.asc(), Payment.id.asc())
            .all()
        )

    @staticmethod
    def count_by_status(db: Session, client_id: Optional[str] = None) -> dict:
        query = db.query(Payment.status, func.count(Payment.id)).filter(Payment.is_deleted.is_(False))
        if client_id:
            query = query.filter(Payment.client_id == client_id)
        return {status: count for status, count in query.group_by(Payment.status).all()}

    @staticmethod
    def outstanding_amount(db: Session, client_id: Optional[str] = None) -> float:
        query = db.query(func.sum(Payment.amount)).filter(
            Payment.is_deleted.is_(False),
            Payment.status.in_(UNPAID_STATUSES),
        )
        if client_id:
            query = query.filter(Payment.client_id == client_id)
        return float(query.scalar() or 0)

    @staticmethod
    def get_changes_since(
        db: Session,
        since: Optional[datetime],
        since_id: Optional[str] = None,
        client_id: Optional[str] = None,
        limit: int = 500,
    ) -> list[Payment]:
        """
        Payments touched after the (since, since_id) cursor, soft-deleted rows
        included as tombstones. Rows sharing `since` are split on id, so a page
        boundary inside one timestamp loses nothing.
        """
        query = db.query(Payment).options(joinedload(Payment.client), joinedload(Payment.task))
        if client_id:
            query = query.filter(Payment.client_id == client_id)
        if since and since_id:
            query = query.filter(
                or_(
                    Payment.updated_at > since,
                    and_(Payment.updated_at == since, Payment.id > since_id),
                )
            )
        elif since:
            query = query.filter(Payment.updated_at > since)
        return query.order_by(Payment.updated_at.asc(), Payment.id.asc()).limit(limit).all()

    @staticmethod
    def get_past_due(db: Session, today: date) -> list[Payment]:
        return (
            db.query(Payment)
            .filter(
                Payment.is_deleted.is_(False),
                Payment.status.in_(UNPAID_STATUSES),
                Payment.due_date.isnot(None),
                Payment.due_date < today,
            )
            .all()
        )
