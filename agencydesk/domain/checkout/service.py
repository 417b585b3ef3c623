"""Checkout service - hand-off to the payment processor via the auxiliary backend"""

import logging
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ...auth import SessionContext
from ...config import BACKEND_URL, CHECKOUT_PAYEE_NAME, REQUEST_TIMEOUT_SECONDS
from ...errors import CheckoutInitiationError, ValidationError, VerificationFailure
from ...utils.concurrency import MutationLease, run_bounded
from ..payments.schemas import (
    MutationResult,
    PaymentMutationResponse,
    converted,
    to_mutation_response,
)
from ..payments.service import PaymentService
from ..payments.transitions import PAYABLE_STATUSES

logger = logging.getLogger(__name__)

CREATE_SESSION_PATH = "/api/payments/create-checkout-session"
VERIFY_PATH = "/api/payments/verify"


def build_checkout_request(payment_id: str, amount, payee_name: str) -> dict:
    """Session request body: one line item, the payment id as correlation metadata"""
    return {
        "items": [{"name": payee_name, "price": float(amount), "quantity": 1}],
        "paymentId": payment_id,
    }


class CheckoutService:
    """Creates checkout sessions and reconciles their verification callbacks"""

    def __init__(
        self,
        db: Session,
        base_url: str = BACKEND_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.payments = PaymentService(db)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self.transport,
        )

    async def initiate_checkout(self, ctx: SessionContext, payment_id: str) -> str:
        """Create a checkout session and return the processor's redirect URL"""
        payment = await run_bounded(self.payments.get_payment, ctx, payment_id, session=self.db)
        if payment.status not in PAYABLE_STATUSES:
            raise ValidationError(f"A {payment.status} payment cannot be paid", field="paymentId")

        payload = build_checkout_request(payment.id, payment.amount, CHECKOUT_PAYEE_NAME)
        try:
            async with self._client() as client:
                response = await client.post(CREATE_SESSION_PATH, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"❌ Checkout service unreachable for payment {payment_id}: {e}")
            raise CheckoutInitiationError("Checkout failed. Please try again.") from e

        if not response.is_success:
            logger.error(
                f"❌ Checkout session request failed for payment {payment_id}: "
                f"HTTP {response.status_code} {response.text[:200]}"
            )
            raise CheckoutInitiationError("Checkout failed. Please try again.")

        try:
            url = response.json().get("url")
        except ValueError:
            url = None
        if not url:
            logger.error(f"❌ Checkout service returned no redirect URL for payment {payment_id}")
            raise CheckoutInitiationError("Checkout failed. Please try again.")

        logger.info(f"💳 Checkout session created for payment {payment_id}")
        return url

    async def verify_checkout(
        self,
        ctx: SessionContext,
        session_id: Optional[str],
        payment_id: str,
        lease: Optional[MutationLease] = None,
    ) -> PaymentMutationResponse:
        """
        Confirm a completed checkout. The payment is only marked received when
        the processor explicitly reports success. A held `lease` on the payment
        stays held until the mark-paid write is over.
        """
        if not session_id or not session_id.strip():
            logger.warning(f"⚠️ Verification for payment {payment_id} without a session id")
            raise VerificationFailure("Payment could not be verified.")
        session_id = session_id.strip()

        payment = await run_bounded(self.payments.get_payment, ctx, payment_id, session=self.db)
        if payment.status == "received" and payment.transaction_id == session_id:
            logger.info(f"ℹ️ Payment {payment_id} already confirmed for session {session_id}")
            return to_mutation_response(MutationResult(payment=payment))

        payload = {
            "sessionId": session_id,
            "paymentId": payment.id,
            "clientName": payment.client.name if payment.client else None,
            "taskTitle": payment.task.title if payment.task else None,
        }
        try:
            async with self._client() as client:
                response = await client.post(VERIFY_PATH, json=payload)
            body = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Verification request failed for payment {payment_id}: {e}")
            raise VerificationFailure("Payment could not be verified.") from e

        if not response.is_success or not isinstance(body, dict) or body.get("success") is not True:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                f"⚠️ Processor rejected session {session_id} for payment {payment_id}: "
                f"HTTP {response.status_code} {message or ''}"
            )
            raise VerificationFailure("Payment could not be verified.")

        result = await run_bounded(
            converted(self.payments.mark_paid, to_mutation_response),
            ctx,
            payment_id,
            session_id,
            session=self.db,
            after=(lease.handoff(),) if lease else (),
        )
        logger.info(f"✅ Checkout verified for payment {payment_id} (session {session_id})")
        return result
