# trainhub/routers/bookings.py

from typing import Optional

from fastapi import APIRouter, Depends, status

from ..dependencies import Services, get_services, get_user_id
from ..schemas.bookings import Booking, BookingCreate, PaymentStatus, PaymentStatusUpdate

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreate,
    user_id: Optional[str] = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    return await services.bookings.create_booking(
        data.trainer_id,
        user_id,
        data.student_name,
        data.student_email,
        data.message,
    )


@router.get("/", response_model=list[Booking])
async def list_bookings(
    trainer_id: Optional[str] = None,
    student_id: Optional[str] = None,
    student_email: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    unassigned: Optional[bool] = None,
    refresh: bool = False,
    services: Services = Depends(get_services),
):
    return await services.bookings.list_bookings_for(
        trainer_id=trainer_id,
        student_id=student_id,
        student_email=student_email,
        payment_status=payment_status,
        unassigned=unassigned,
        refresh=refresh,
    )


@router.get("/{booking_id}", response_model=Booking)
async def get_booking(booking_id: str, services: Services = Depends(get_services)):
    return await services.bookings.get_booking(booking_id)


@router.post("/{booking_id}/payment-status", response_model=Booking)
async def set_payment_status(
    booking_id: str,
    data: PaymentStatusUpdate,
    services: Services = Depends(get_services),
):
    return await services.bookings.mark_payment_status(booking_id, data.status)
