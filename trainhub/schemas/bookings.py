# trainhub/schemas/bookings.py

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .common import UtcDatetime


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Booking(BaseModel):
    id: str
    trainer_id: str
    student_id: Optional[str] = None

    # Snapshot taken at booking time, never re-synced from the profile.
    student_name: str
    student_email: str
    message: Optional[str] = None

    created_at: UtcDatetime
    payment_status: PaymentStatus = PaymentStatus.PENDING
    session_id: Optional[str] = None
    checkout_session_id: Optional[str] = None

    model_config = {"from_attributes": True}

    def is_eligible_for(self, trainer_id: str) -> bool:
        return (
            self.trainer_id == trainer_id
            and self.payment_status == PaymentStatus.COMPLETED
            and self.session_id is None
        )


class BookingCreate(BaseModel):
    trainer_id: str
    student_name: str
    student_email: str
    message: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
