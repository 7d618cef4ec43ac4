# trainhub/schemas/payments.py

from typing import Optional

from pydantic import BaseModel, Field

from .bookings import PaymentStatus


class CheckoutSession(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: str

    model_config = {"populate_by_name": True}


class CheckoutRequest(BaseModel):
    trainer_id: str
    student_name: str
    student_email: str
    message: Optional[str] = None


class CheckoutResponse(BaseModel):
    booking_id: str
    checkout_session_id: str
    redirect_url: str


class PaymentWebhook(BaseModel):
    status: PaymentStatus
    booking_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    trainer_id: Optional[str] = None
