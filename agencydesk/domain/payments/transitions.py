"""
Payment status transitions.

Pure logic: validates a requested payment mutation and computes the column
values to persist. Nothing in here touches the database, so every rejection
happens before any I/O.

Statuses: due → invoiced → pending → received
          overdue is reachable from any unpaid status once the due date passes
          canceled is reachable from any status except received
          received and canceled are terminal
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from ...config import REMINDER_WINDOW_DAYS
from ...errors import DocumentTypeMismatchError, ValidationError
from ...models import utc_now

PAYMENT_STATUSES = ("due", "invoiced", "pending", "received", "overdue", "canceled")
UNPAID_STATUSES = ("due", "invoiced", "pending")
TERMINAL_STATUSES = ("received", "canceled")
PAYABLE_STATUSES = ("due", "invoiced", "pending", "overdue")

VALID_TRANSITIONS = {
    "due": ["invoiced", "pending", "overdue", "canceled", "received"],
    "invoiced": ["pending", "overdue", "canceled", "received"],
    "pending": ["overdue", "canceled", "received"],
    "overdue": ["invoiced", "pending", "canceled", "received"],
    "received": [],  # Terminal state
    "canceled": [],  # Terminal state
}

DOCUMENT_TYPES = ("pdf", "image")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif")

CENTS = Decimal("0.01")

IMMUTABLE_FIELDS = ("client_id", "task_id")
UPDATABLE_FIELDS = ("amount", "status", "due_date", "invoice_number", "notes")


def validate_status(status: Optional[str]) -> str:
    if status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(PAYMENT_STATUSES)}", field="status"
        )
    return status


def validate_amount(amount: Any) -> Decimal:
    """Amounts are positive and stored to the cent; sub-cent input is rounded first"""
    if amount is None or isinstance(amount, bool):
        raise ValidationError("Amount is required", field="amount")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("Amount must be a number", field="amount") from e
    if not value.is_finite():
        raise ValidationError("Amount must be a number", field="amount")
    value = value.quantize(CENTS, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValidationError("Amount must be positive", field="amount")
    return value


def _require_id(value: Optional[str], field: str, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required", field=field)
    return str(value).strip()


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """True if the payment may move from current_status to new_status"""
    # Allow same status (no-op)
    if current_status == new_status:
        return True
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def ensure_transition(
    current_status: str,
    new_status: str,
    due_date=None,
    today: Optional[date] = None,
) -> None:
    """
    Reject a status change the lifecycle does not allow. Moving into overdue
    also needs a due date before `today`.
    """
    validate_status(new_status)
    if validate_status_transition(current_status, new_status):
        if new_status == "overdue" and current_status != "overdue":
            ensure_past_due(due_date, today or utc_now().date())
        return
    if current_status in TERMINAL_STATUSES:
        raise ValidationError(
            f"A {current_status} payment cannot be reopened", field="status"
        )
    raise ValidationError(
        f"Cannot change payment status from {current_status} to {new_status}", field="status"
    )


def ensure_past_due(due_date, today: date) -> None:
    due = _as_date(due_date)
    if due is None:
        raise ValidationError("A payment without a due date cannot be overdue", field="status")
    if due >= today:
        raise ValidationError(
            f"Payment is not overdue until after its due date ({due.isoformat()})", field="status"
        )


def _status_timestamps(previous: Optional[str], new_status: str, now: datetime, payment=None) -> dict:
    """invoiced_at / received_at stamps for entering a status"""
    stamps = {}
    if new_status == previous:
        return stamps
    if new_status == "invoiced" and not getattr(payment, "invoiced_at", None):
        stamps["invoiced_at"] = now
    if new_status == "received":
        stamps["received_at"] = now
    return stamps


def build_new_payment(
    client_id: Optional[str],
    task_id: Optional[str],
    amount: Any,
    status: str = "due",
    due_date: Optional[date] = None,
    invoice_number: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Column values for a new payment"""
    now = now or utc_now()
    fields = {
        "client_id": _require_id(client_id, "clientId", "Client"),
        "task_id": _require_id(task_id, "taskId", "Task"),
        "amount": validate_amount(amount),
        "status": validate_status(status or "due"),
        "due_date": due_date,
        "invoice_number": invoice_number,
        "notes": notes,
        "is_deleted": False,
        "created_at": now,
        "updated_at": now,
    }
    if fields["status"] == "overdue":
        ensure_past_due(due_date, now.date())
    fields.update(_status_timestamps(None, fields["status"], now))
    return fields


def compute_update(payment, changes: dict, now: Optional[datetime] = None) -> dict:
    """
    Merge requested changes into an existing payment.

    `changes` holds only the fields the caller supplied (snake_case). Returns
    the column values to set, always including updated_at.
    """
    now = now or utc_now()
    updates = {}

    for field in IMMUTABLE_FIELDS:
        if field in changes and changes[field] is not None and changes[field] != getattr(payment, field):
            raise ValidationError(
                f"{'Client' if field == 'client_id' else 'Task'} cannot be changed after creation",
                field="clientId" if field == "client_id" else "taskId",
            )

    unknown = set(changes) - set(UPDATABLE_FIELDS) - set(IMMUTABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown payment fields: {', '.join(sorted(unknown))}")

    if "amount" in changes:
        updates["amount"] = validate_amount(changes["amount"])

    if "status" in changes:
        new_status = changes["status"]
        due_date = changes["due_date"] if "due_date" in changes else payment.due_date
        ensure_transition(payment.status, new_status, due_date, now.date())
        updates["status"] = new_status
        updates.update(_status_timestamps(payment.status, new_status, now, payment))

    for field in ("due_date", "invoice_number", "notes"):
        if field in changes:
            updates[field] = changes[field]

    updates["updated_at"] = now
    return updates


def validate_document(document_type: Optional[str], document_ref: Optional[str]) -> None:
    """A supporting document's extension must match its declared type"""
    if not document_type and not document_ref:
        return
    if not document_type:
        raise ValidationError("Select a document type for the uploaded file", field="documentType")
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(
            f"Document type must be one of: {', '.join(DOCUMENT_TYPES)}", field="documentType"
        )
    if not document_ref:
        raise ValidationError("A document is required when a document type is given", field="documentRef")

    # Ignore query strings / fragments on storage URLs
    path = document_ref.split("?", 1)[0].split("#", 1)[0]
    extension = path.rsplit(".", 1)[-1].lower() if "." in path.rsplit("/", 1)[-1] else ""

    if document_type == "pdf" and extension != "pdf":
        raise DocumentTypeMismatchError("Please upload a valid pdf file.", field="documentRef")
    if document_type == "image" and extension not in IMAGE_EXTENSIONS:
        raise DocumentTypeMismatchError("Please upload a valid image file.", field="documentRef")


def validate_mark_paid(
    transaction_id: Optional[str],
    document_type: Optional[str] = None,
    document_ref: Optional[str] = None,
) -> str:
    """Input checks for MarkPaid; returns the normalized transaction id"""
    if transaction_id is None or not transaction_id.strip():
        raise ValidationError("Transaction ID is required", field="transactionId")
    validate_document(document_type, document_ref)
    return transaction_id.strip()


def compute_mark_paid(
    payment,
    transaction_id: Optional[str],
    document_type: Optional[str] = None,
    document_ref: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Column values for marking a payment as received"""
    transaction_id = validate_mark_paid(transaction_id, document_type, document_ref)
    if payment.status == "received":
        raise ValidationError("This payment has already been received", field="status")
    ensure_transition(payment.status, "received")

    now = now or utc_now()
    return {
        "status": "received",
        "received_at": now,
        "transaction_id": transaction_id,
        "document_url": document_ref or None,
        "document_type": document_type or None,
        "updated_at": now,
    }


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def classify_reminder(
    status: str,
    due_date,
    today: date,
    window_days: int = REMINDER_WINDOW_DAYS,
) -> Optional[str]:
    """
    'upcoming' for pending/invoiced payments due within the window (past-due
    included), 'overdue' for overdue payments whose due date has passed.
    Comparison is on calendar dates only.
    """
    due = _as_date(due_date)
    if due is None:
        return None
    days = (due - today).days
    if status in ("pending", "invoiced") and days <= window_days:
        return "upcoming"
    if status == "overdue" and due < today:
        return "overdue"
    return None


def classify_payment(payment, today: date, window_days: int = REMINDER_WINDOW_DAYS) -> Optional[str]:
    if payment.is_deleted:
        return None
    return classify_reminder(payment.status, payment.due_date, today, window_days)


def is_past_due(payment, today: date) -> bool:
    """Unpaid payment whose due date is before today"""
    due = _as_date(payment.due_date)
    return (
        not payment.is_deleted
        and payment.status in UNPAID_STATUSES
        and due is not None
        and due < today
    )
