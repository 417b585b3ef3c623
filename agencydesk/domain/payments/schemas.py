"""Payment domain schemas - Pydantic models for validation"""

from dataclasses import dataclass, field
from functools import wraps
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from ...models import Payment

# Wire name -> column name for fields a client may send
FIELD_MAP = {
    "clientId": "client_id",
    "taskId": "task_id",
    "amount": "amount",
    "status": "status",
    "dueDate": "due_date",
    "invoiceNumber": "invoice_number",
    "notes": "notes",
}


class PaymentCreate(BaseModel):
    """Schema for recording a new payment"""

    clientId: str
    taskId: str
    amount: Decimal
    status: str = "due"
    dueDate: Optional[date] = None
    invoiceNumber: Optional[str] = None
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    """Schema for updating a payment; only the supplied fields are merged"""

    clientId: Optional[str] = None
    taskId: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[str] = None
    dueDate: Optional[date] = None
    invoiceNumber: Optional[str] = None
    notes: Optional[str] = None

    def to_changes(self) -> dict:
        supplied = self.model_dump(exclude_unset=True)
        return {FIELD_MAP[key]: value for key, value in supplied.items()}


class MarkPaidRequest(BaseModel):
    transactionId: Optional[str] = None
    documentType: Optional[str] = None  # pdf, image
    documentUrl: Optional[str] = None


class PaymentResponse(BaseModel):
    """Schema for payment response"""

    id: str
    clientId: str
    taskId: str
    clientName: Optional[str] = None
    taskTitle: Optional[str] = None
    amount: float
    status: str
    dueDate: Optional[date] = None
    invoiceNumber: Optional[str] = None
    invoicedAt: Optional[datetime] = None
    receivedAt: Optional[datetime] = None
    transactionId: Optional[str] = None
    documentUrl: Optional[str] = None
    documentType: Optional[str] = None
    notes: Optional[str] = None
    isDeleted: bool = False
    createdAt: datetime
    updatedAt: datetime


class PaymentMutationResponse(BaseModel):
    payment: PaymentResponse
    notificationDelivered: bool = True
    warning: Optional[str] = None


class PaymentPage(BaseModel):
    items: list[PaymentResponse]
    total: int
    page: int
    pageSize: int
    totalPages: int


class ReminderResponse(BaseModel):
    upcoming: list[PaymentResponse]
    overdue: list[PaymentResponse]


class PaymentStats(BaseModel):
    due: int = 0
    invoiced: int = 0
    pending: int = 0
    received: int = 0
    overdue: int = 0
    canceled: int = 0
    outstandingCount: int = 0
    outstandingAmount: float = 0


class PaymentChanges(BaseModel):
    items: list[PaymentResponse]
    cursor: Optional[datetime] = None
    cursorId: Optional[str] = None


@dataclass
class PaymentFilter:
    """Ephemeral list filter; rebuilt from query parameters on every request"""

    statuses: set[str] = field(default_factory=set)
    client_id: Optional[str] = None
    due_date_start: Optional[date] = None
    due_date_end: Optional[date] = None


@dataclass
class MutationResult:
    """A committed payment mutation plus the outcome of its notification"""

    payment: Payment
    notification_delivered: bool = True
    warning: Optional[str] = None


def to_payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        clientId=payment.client_id,
        taskId=payment.task_id,
        clientName=payment.client.name if payment.client else None,
        taskTitle=payment.task.title if payment.task else None,
        amount=float(payment.amount),
        status=payment.status,
        dueDate=payment.due_date,
        invoiceNumber=payment.invoice_number,
        invoicedAt=payment.invoiced_at,
        receivedAt=payment.received_at,
        transactionId=payment.transaction_id,
        documentUrl=payment.document_url,
        documentType=payment.document_type,
        notes=payment.notes,
        isDeleted=bool(payment.is_deleted),
        createdAt=payment.created_at,
        updatedAt=payment.updated_at,
    )


def to_mutation_response(result: MutationResult) -> PaymentMutationResponse:
    return PaymentMutationResponse(
        payment=to_payment_response(result.payment),
        notificationDelivered=result.notification_delivered,
        warning=result.warning,
    )


def converted(func, convert):
    """
    Wrap a service call so its ORM result is turned into a response model in
    the same worker thread. Attributes expired by the call's commits then
    reload inside the bounded call, not on the event loop.
    """

    @wraps(func)
    def call(*args, **kwargs):
        return convert(func(*args, **kwargs))

    return call
