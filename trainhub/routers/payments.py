# trainhub/routers/payments.py
# Webhook signature verification happens in the payment function, not here.

from typing import Optional

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_auth_token, get_services, get_user_id
from ..exceptions import ValidationError
from ..schemas.bookings import Booking, PaymentStatus
from ..schemas.payments import CheckoutRequest, CheckoutResponse, PaymentWebhook

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/checkout", response_model=CheckoutResponse)
async def begin_checkout(
    data: CheckoutRequest,
    user_id: Optional[str] = Depends(get_user_id),
    auth_token: Optional[str] = Depends(get_auth_token),
    services: Services = Depends(get_services),
):
    return await services.checkout.begin(
        data.trainer_id,
        user_id,
        data.student_name,
        data.student_email,
        data.message,
        auth_token=auth_token,
    )


@router.get("/success", response_model=Booking)
async def checkout_success(
    trainer: str,
    booking: bool = False,
    booking_id: Optional[str] = None,
    session_id: Optional[str] = None,
    services: Services = Depends(get_services),
):
    if not booking:
        raise ValidationError("Not a booking checkout", details={"booking": booking})
    return await services.bookings.complete_checkout(
        trainer,
        booking_id=booking_id,
        checkout_session_id=session_id,
    )


@router.post("/webhook", response_model=Booking)
async def payment_webhook(data: PaymentWebhook, services: Services = Depends(get_services)):
    if data.status == PaymentStatus.PENDING:
        raise ValidationError("Webhook status must be completed or failed")
    if data.booking_id:
        target = data.booking_id
    elif data.checkout_session_id:
        target = (await services.bookings.find_by_checkout_session(data.checkout_session_id)).id
    else:
        raise ValidationError("booking_id or checkout_session_id is required")
    return await services.bookings.mark_payment_status(target, data.status)
