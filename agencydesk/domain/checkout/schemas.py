"""Checkout domain schemas"""

from typing import Optional

from pydantic import BaseModel


class CheckoutSessionRequest(BaseModel):
    paymentId: str


class CheckoutSessionResponse(BaseModel):
    url: str


class VerifyCheckoutRequest(BaseModel):
    sessionId: Optional[str] = None
    paymentId: str
