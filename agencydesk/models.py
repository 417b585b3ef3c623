import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


def generate_public_id():
    """Generate a unique opaque ID"""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Naive UTC timestamp, the format every timestamp column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_notification_preferences() -> dict:
    return {"app_tasks": True, "app_clients": True, "app_payments": True}


class User(Base):
    """Dashboard account; id is the identity provider's subject"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="client")  # admin, client
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)  # Set for client users
    notification_preferences = Column(JSON, default=default_notification_preferences)
    last_login = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    client = relationship("Client", back_populates="users")


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    status = Column(String(20), default="active")  # active, idle, gone
    has_account = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    users = relationship("User", back_populates="client")
    tasks = relationship("Task", back_populates="client")
    payments = relationship("Payment", back_populates="client")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    title = Column(String(255), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    # requirements, quote, approved, progress, submitted, feedback, complete
    status = Column(String(20), default="requirements")
    estimated_hours = Column(Float, default=0)
    estimated_cost = Column(Float, default=0)
    actual_hours = Column(Float, nullable=True)
    actual_cost = Column(Float, nullable=True)
    project = Column(String(255), nullable=True)
    due_date = Column(Date, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    client = relationship("Client", back_populates="tasks")
    payments = relationship("Payment", back_populates="task")


class Payment(Base):
    """Money owed by a client for a task"""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    task_id = Column(String(36), ForeignKey("tasks.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    # due, invoiced, pending, received, overdue, canceled
    status = Column(String(20), nullable=False, default="due")
    due_date = Column(Date, nullable=True)

    # Invoice
    invoice_number = Column(String(50), nullable=True)
    invoiced_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, nullable=True)

    # Captured when the payment is marked as paid
    transaction_id = Column(String(255), nullable=True)
    document_url = Column(String(500), nullable=True)
    document_type = Column(String(20), nullable=True)  # pdf, image

    notes = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Audit (set explicitly by the transition engine on every mutation)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    client = relationship("Client", back_populates="payments")
    task = relationship("Task", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_client_deleted", "client_id", "is_deleted"),
        Index("ix_payments_created_at", "created_at"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    receiver_role = Column(String(20), nullable=False)  # admin, client
    receiver_id = Column(String(36), nullable=True, index=True)  # Client id when receiver is a client
    sender_role = Column(String(20), nullable=True)
    triggered_by = Column(String(36), nullable=True)  # Acting user id
    type = Column(String(20), nullable=False, default="payment")  # payment, task, client
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (Index("ix_notifications_receiver", "receiver_role", "receiver_id"),)
