import threading
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from agencydesk.domain.notifications.repository import NotificationRepository
from agencydesk.domain.payments.repository import PaymentRepository
from agencydesk.domain.payments.schemas import (
    PaymentCreate,
    PaymentFilter,
    PaymentUpdate,
    converted,
    to_mutation_response,
)
from agencydesk.domain.payments.service import NOTIFICATION_WARNING, PaymentService
from agencydesk.errors import (
    DocumentTypeMismatchError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from agencydesk.models import Notification, Payment
from agencydesk.utils.concurrency import run_bounded


@pytest.fixture
def service(db, seed):
    return PaymentService(db)


def _create(service, ctx, seed, **overrides):
    data = {"clientId": seed["acme"], "taskId": seed["acme_task"], "amount": Decimal("500")}
    data.update(overrides)
    return service.create_payment(ctx, PaymentCreate(**data))


def _notifications(db, title=None):
    query = db.query(Notification)
    if title:
        query = query.filter(Notification.title == title)
    return query.all()


class TestPaymentLifecycle:
    def test_create_update_mark_paid_delete(self, db, service, seed, admin_ctx, acme_ctx):
        # Create
        result = _create(service, admin_ctx, seed, status="due")
        payment = result.payment
        assert payment.status == "due"
        assert payment.invoiced_at is None
        assert payment.received_at is None
        assert result.notification_delivered

        # Update
        earlier = datetime(2025, 1, 1)
        payment.updated_at = earlier
        db.commit()
        result = service.update_payment(
            admin_ctx, payment.id, PaymentUpdate(status="invoiced", invoiceNumber="INV-0001")
        )
        assert result.payment.status == "invoiced"
        assert result.payment.invoice_number == "INV-0001"
        assert result.payment.invoiced_at is not None
        assert result.payment.updated_at > earlier
        updated = _notifications(db, "Payment Updated")
        assert len(updated) == 1
        assert updated[0].receiver_role == "client"
        assert updated[0].receiver_id == seed["acme"]
        assert updated[0].triggered_by == admin_ctx.user_id

        # Mark paid by the client
        result = service.mark_paid(acme_ctx, payment.id, "TXN-1")
        assert result.payment.status == "received"
        assert result.payment.received_at is not None
        assert result.payment.transaction_id == "TXN-1"
        received = _notifications(db, "Payment Received")
        assert len(received) == 1
        assert received[0].receiver_role == "admin"
        assert received[0].message == 'Payment received from Acme Corp for task "Website Redesign".'

        # Soft delete hides it from every client list
        service.delete_payment(admin_ctx, payment.id)
        items, total, _ = service.list_payments(acme_ctx, PaymentFilter())
        assert total == 0 and items == []
        items, total, _ = service.list_payments(acme_ctx, PaymentFilter(statuses={"received"}))
        assert total == 0 and items == []

    def test_create_notifies_the_client(self, db, service, seed, admin_ctx):
        _create(service, admin_ctx, seed, amount=Decimal("1500"))
        [notification] = _notifications(db)
        assert notification.title == "New Payment Recorded"
        assert notification.receiver_id == seed["acme"]
        assert notification.sender_role == "admin"
        assert notification.type == "payment"
        assert notification.message == (
            'A new payment of 1,500.00 has been recorded for task "Website Redesign".'
        )

    def test_admin_mark_paid_notifies_client(self, db, service, make_payment, admin_ctx, seed):
        payment = make_payment(status="pending")
        service.mark_paid(admin_ctx, payment.id, "TXN-9")
        [notification] = _notifications(db)
        assert notification.receiver_role == "client"
        assert notification.receiver_id == seed["acme"]


class TestValidation:
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10")])
    def test_non_positive_amount_writes_nothing(self, db, service, seed, admin_ctx, amount):
        with pytest.raises(ValidationError):
            _create(service, admin_ctx, seed, amount=amount)
        assert db.query(Payment).count() == 0
        assert db.query(Notification).count() == 0

    @pytest.mark.parametrize("amount", [Decimal("0.001"), Decimal("0.004")])
    def test_sub_cent_amount_writes_nothing(self, db, service, seed, admin_ctx, amount):
        with pytest.raises(ValidationError):
            _create(service, admin_ctx, seed, amount=amount)
        assert db.query(Payment).count() == 0

    def test_stored_amount_is_rounded_to_cents(self, db, service, seed, admin_ctx):
        result = _create(service, admin_ctx, seed, amount=Decimal("0.005"))
        db.expire_all()
        assert db.query(Payment).one().amount == Decimal("0.01")
        assert result.payment.amount > 0

    def test_cannot_mark_overdue_before_due_date(self, db, service, make_payment, admin_ctx):
        future = make_payment(status="due", due_date=date(2999, 1, 1))
        undated = make_payment(status="pending")
        for payment in (future, undated):
            with pytest.raises(ValidationError):
                service.update_payment(admin_ctx, payment.id, PaymentUpdate(status="overdue"))
            db.refresh(payment)
            assert payment.status != "overdue"
        assert _notifications(db) == []

    def test_update_with_non_positive_amount(self, db, service, make_payment, admin_ctx):
        payment = make_payment(amount="80")
        with pytest.raises(ValidationError):
            service.update_payment(admin_ctx, payment.id, PaymentUpdate(amount=Decimal("0")))
        db.refresh(payment)
        assert payment.amount == Decimal("80")

    def test_task_must_belong_to_client(self, service, seed, admin_ctx):
        with pytest.raises(ValidationError) as exc:
            _create(service, admin_ctx, seed, taskId=seed["globex_task"])
        assert exc.value.field == "taskId"

    def test_unknown_client(self, service, seed, admin_ctx):
        with pytest.raises(ValidationError) as exc:
            _create(service, admin_ctx, seed, clientId="client-missing")
        assert exc.value.field == "clientId"

    def test_client_and_task_are_immutable(self, service, make_payment, admin_ctx, seed):
        payment = make_payment()
        with pytest.raises(ValidationError):
            service.update_payment(admin_ctx, payment.id, PaymentUpdate(clientId=seed["globex"]))

    def test_notes_are_escaped(self, service, seed, admin_ctx):
        result = _create(service, admin_ctx, seed, notes="  <b>net 30</b> ")
        assert result.payment.notes == "&lt;b&gt;net 30&lt;/b&gt;"

    @pytest.mark.parametrize("transaction_id", ["", "   ", None])
    def test_blank_transaction_id_leaves_status(self, db, service, make_payment, acme_ctx, transaction_id):
        payment = make_payment(status="invoiced")
        with pytest.raises(ValidationError):
            service.mark_paid(acme_ctx, payment.id, transaction_id)
        db.refresh(payment)
        assert payment.status == "invoiced"

    def test_pdf_mismatch_rejected_before_lookup(self, service, acme_ctx):
        # The payment does not exist: validation must fail first
        with pytest.raises(DocumentTypeMismatchError):
            service.mark_paid(acme_ctx, "no-such-payment", "TXN-1", "pdf", "receipt.docx")

    def test_received_payment_cannot_be_paid_again(self, service, make_payment, acme_ctx):
        payment = make_payment(status="received", transaction_id="TXN-1")
        with pytest.raises(ValidationError, match="already been received"):
            service.mark_paid(acme_ctx, payment.id, "TXN-2")


class TestPermissions:
    def test_clients_cannot_create(self, service, seed, acme_ctx):
        with pytest.raises(PermissionDeniedError):
            _create(service, acme_ctx, seed)

    def test_clients_cannot_update_or_delete(self, service, make_payment, acme_ctx):
        payment = make_payment()
        with pytest.raises(PermissionDeniedError):
            service.update_payment(acme_ctx, payment.id, PaymentUpdate(notes="x"))
        with pytest.raises(PermissionDeniedError):
            service.delete_payment(acme_ctx, payment.id)

    def test_client_cannot_pay_another_clients_payment(self, db, service, make_payment, globex_ctx):
        payment = make_payment(client="acme", status="invoiced")
        with pytest.raises(NotFoundError):
            service.mark_paid(globex_ctx, payment.id, "TXN-1")
        db.refresh(payment)
        assert payment.status == "invoiced"


class TestSoftDelete:
    def test_is_idempotent(self, db, service, make_payment, admin_ctx):
        payment = make_payment(status="pending")
        service.delete_payment(admin_ctx, payment.id)
        db.refresh(payment)
        first = (payment.is_deleted, payment.status, payment.updated_at)

        service.delete_payment(admin_ctx, payment.id)
        db.refresh(payment)
        assert (payment.is_deleted, payment.status, payment.updated_at) == first
        assert payment.is_deleted is True
        assert payment.status == "pending"

    def test_missing_id(self, service, admin_ctx):
        with pytest.raises(NotFoundError):
            service.delete_payment(admin_ctx, "missing")

    def test_deleted_payment_cannot_be_updated(self, service, make_payment, admin_ctx):
        payment = make_payment(is_deleted=True)
        with pytest.raises(NotFoundError):
            service.update_payment(admin_ctx, payment.id, PaymentUpdate(notes="late"))

    def test_deleted_payments_excluded_from_reads(self, service, make_payment, admin_ctx):
        make_payment(status="overdue", due_date=date(2025, 6, 1), is_deleted=True)
        make_payment(status="pending", due_date=date(2025, 6, 20), is_deleted=True)
        reminders = service.get_reminders(admin_ctx, today=date(2025, 6, 15))
        assert reminders == {"upcoming": [], "overdue": []}
        assert service.get_stats(admin_ctx).outstandingCount == 0


class TestNotificationFailure:
    def test_payment_still_committed(self, db, service, seed, admin_ctx, monkeypatch):
        def _fail(db, entries):
            raise SQLAlchemyError("notifications table unavailable")

        monkeypatch.setattr(NotificationRepository, "create_notifications", staticmethod(_fail))

        result = _create(service, admin_ctx, seed)
        assert result.notification_delivered is False
        assert result.warning == NOTIFICATION_WARNING
        assert db.query(Payment).filter(Payment.id == result.payment.id).count() == 1
        assert db.query(Notification).count() == 0


class TestListPayments:
    def test_client_scope_ignores_other_client_filter(self, service, make_payment, acme_ctx, seed):
        make_payment(client="acme")
        make_payment(client="globex")
        make_payment(client="globex")

        items, total, _ = service.list_payments(acme_ctx, PaymentFilter(client_id=seed["globex"]))
        assert total == 1
        assert all(p.client_id == seed["acme"] for p in items)

    def test_client_default_covers_every_status(self, service, make_payment, acme_ctx):
        for status in ("due", "invoiced", "pending", "received", "overdue", "canceled"):
            make_payment(status=status)
        _, total, _ = service.list_payments(acme_ctx, PaymentFilter())
        assert total == 6

    def test_admin_can_scope_by_client(self, service, make_payment, admin_ctx, seed):
        make_payment(client="acme")
        make_payment(client="globex")
        items, total, _ = service.list_payments(admin_ctx, PaymentFilter(client_id=seed["globex"]))
        assert total == 1
        assert items[0].client_id == seed["globex"]

    def test_status_and_due_date_range(self, service, make_payment, admin_ctx):
        make_payment(status="pending", due_date=date(2025, 6, 1))
        make_payment(status="pending", due_date=date(2025, 6, 30))
        make_payment(status="pending", due_date=date(2025, 7, 1))
        make_payment(status="due", due_date=date(2025, 6, 10))

        filters = PaymentFilter(
            statuses={"pending"}, due_date_start=date(2025, 6, 1), due_date_end=date(2025, 6, 30)
        )
        items, total, _ = service.list_payments(admin_ctx, filters)
        assert total == 2
        assert {p.due_date for p in items} == {date(2025, 6, 1), date(2025, 6, 30)}

    def test_pages_cover_the_result_exactly_once(self, service, make_payment, admin_ctx):
        for i in range(23):
            make_payment(client="acme" if i % 2 else "globex", status="pending" if i % 3 else "due")

        everything, total, _ = service.list_payments(admin_ctx, PaymentFilter(), page=1, page_size=100)
        assert total == 23

        collected = []
        for page in range(1, service.total_pages(total, 5) + 1):
            items, page_total, _ = service.list_payments(admin_ctx, PaymentFilter(), page=page, page_size=5)
            assert page_total == total
            collected.extend(items)

        assert [p.id for p in collected] == [p.id for p in everything]
        assert len({p.id for p in collected}) == 23
        created = [p.created_at for p in collected]
        assert created == sorted(created, reverse=True)

    def test_page_past_the_end_is_empty(self, service, make_payment, admin_ctx):
        make_payment()
        items, total, _ = service.list_payments(admin_ctx, PaymentFilter(), page=3, page_size=10)
        assert items == [] and total == 1

    def test_page_size_is_capped(self, service, admin_ctx):
        _, _, page_size = service.list_payments(admin_ctx, PaymentFilter(), page_size=5000)
        assert page_size == 100

    @pytest.mark.parametrize(
        "filters, page, page_size",
        [
            (PaymentFilter(), 0, 10),
            (PaymentFilter(), 1, 0),
            (PaymentFilter(statuses={"paid"}), 1, 10),
            (PaymentFilter(due_date_start=date(2025, 7, 1), due_date_end=date(2025, 6, 1)), 1, 10),
        ],
    )
    def test_rejects_bad_input(self, service, admin_ctx, filters, page, page_size):
        with pytest.raises(ValidationError):
            service.list_payments(admin_ctx, filters, page=page, page_size=page_size)

    def test_total_pages(self):
        assert PaymentService.total_pages(0, 10) == 0
        assert PaymentService.total_pages(10, 10) == 1
        assert PaymentService.total_pages(11, 10) == 2


class TestReadModel:
    def test_reminders(self, service, make_payment, admin_ctx):
        today = date(2025, 6, 15)
        upcoming = make_payment(status="pending", due_date=date(2025, 6, 25))
        make_payment(status="pending", due_date=date(2025, 6, 26))
        overdue = make_payment(status="overdue", due_date=date(2025, 6, 14))
        make_payment(status="invoiced")

        reminders = service.get_reminders(admin_ctx, today=today)
        assert [p.id for p in reminders["upcoming"]] == [upcoming.id]
        assert [p.id for p in reminders["overdue"]] == [overdue.id]

    def test_client_reminders_are_scoped(self, service, make_payment, globex_ctx):
        make_payment(client="acme", status="overdue", due_date=date(2025, 6, 1))
        reminders = service.get_reminders(globex_ctx, today=date(2025, 6, 15))
        assert reminders["overdue"] == []

    def test_stats(self, service, make_payment, admin_ctx, acme_ctx):
        make_payment(status="due", amount="100")
        make_payment(status="overdue", amount="50.50")
        make_payment(status="received", amount="999")
        make_payment(status="pending", amount="20", client="globex")

        stats = service.get_stats(admin_ctx)
        assert (stats.due, stats.overdue, stats.received, stats.pending) == (1, 1, 1, 1)
        assert stats.outstandingCount == 2
        assert stats.outstandingAmount == pytest.approx(120)

        client_stats = service.get_stats(acme_ctx)
        assert client_stats.pending == 0
        assert client_stats.outstandingAmount == pytest.approx(100)

    def test_overdue_is_counted_apart_from_outstanding(self, service, make_payment, admin_ctx):
        make_payment(status="due", amount="10")
        make_payment(status="overdue", amount="75", due_date=date(2025, 1, 1))

        stats = service.get_stats(admin_ctx)
        assert stats.outstandingCount == 1
        assert stats.overdue == 1
        assert stats.outstandingAmount == pytest.approx(10)

    def test_change_feed_pages_through_shared_timestamps(self, db, service, make_payment, admin_ctx):
        # The overdue sweep stamps one `now` on every row it moves
        stamp = datetime(2025, 3, 1, 8, 0, 0)
        make_payment(updated_at=datetime(2025, 1, 1))
        ids = sorted(make_payment(updated_at=stamp).id for _ in range(3))

        first = PaymentRepository.get_changes_since(db, datetime(2025, 2, 1), limit=2)
        assert [p.id for p in first] == ids[:2]

        cursor = first[-1]
        rest = PaymentRepository.get_changes_since(db, cursor.updated_at, cursor.id, limit=2)
        assert [p.id for p in rest] == ids[2:]

        resumed = service.get_changes(admin_ctx, since=stamp, since_id=ids[2])
        assert resumed == []

    def test_changes_include_tombstones(self, service, make_payment, admin_ctx):
        old = make_payment(updated_at=datetime(2025, 1, 1))
        live = make_payment(updated_at=datetime(2025, 3, 1))
        gone = make_payment(updated_at=datetime(2025, 3, 2), is_deleted=True)

        changes = service.get_changes(admin_ctx, since=datetime(2025, 2, 1))
        assert [p.id for p in changes] == [live.id, gone.id]
        assert changes[1].is_deleted is True
        assert old.id not in {p.id for p in changes}


class TestLoading:
    def test_get_payment_loads_client_and_task(self, db, service, make_payment, admin_ctx):
        payment_id = make_payment().id
        db.expire_all()

        payment = service.get_payment(admin_ctx, payment_id)

        unloaded = inspect(payment).unloaded
        assert "client" not in unloaded
        assert "task" not in unloaded
        assert payment.client.name == "Acme Corp"

    @pytest.mark.anyio
    async def test_mutation_response_is_built_in_the_worker_thread(
        self, service, make_payment, admin_ctx
    ):
        payment = make_payment(status="invoiced")
        threads = []

        def convert(result):
            threads.append(threading.get_ident())
            return to_mutation_response(result)

        response = await run_bounded(
            converted(service.update_payment, convert),
            admin_ctx,
            payment.id,
            PaymentUpdate(notes="Net 30"),
            session=service.db,
        )

        assert threads and threads[0] != threading.get_ident()
        assert response.payment.clientName == "Acme Corp"
        assert response.payment.taskTitle == "Website Redesign"
        assert response.payment.notes == "Net 30"
