"""Checkout router - start and verify processor checkouts"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import SessionContext, get_current_context
from ...database import get_db
from ...utils.concurrency import payment_mutations
from ..payments.schemas import PaymentMutationResponse
from .schemas import CheckoutSessionRequest, CheckoutSessionResponse, VerifyCheckoutRequest
from .service import CheckoutService

router = APIRouter(prefix="/checkout", tags=["Checkout"])


def get_checkout_service(db: Session = Depends(get_db)) -> CheckoutService:
    """Dependency injection for CheckoutService"""
    return CheckoutService(db)


@router.post("/sessions", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    data: CheckoutSessionRequest,
    ctx: SessionContext = Depends(get_current_context),
    service: CheckoutService = Depends(get_checkout_service),
):
    """Start a processor checkout; the frontend redirects to the returned URL"""
    url = await service.initiate_checkout(ctx, data.paymentId)
    return CheckoutSessionResponse(url=url)


@router.post("/verify", response_model=PaymentMutationResponse)
async def verify_checkout(
    data: VerifyCheckoutRequest,
    ctx: SessionContext = Depends(get_current_context),
    service: CheckoutService = Depends(get_checkout_service),
):
    """Called when the user returns from the processor's success page"""
    with payment_mutations.hold(data.paymentId) as lease:
        return await service.verify_checkout(ctx, data.sessionId, data.paymentId, lease=lease)
