# trainhub/schemas/sessions.py

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .common import UtcDatetime


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Session(BaseModel):
    id: str
    trainer_id: str
    trainer_name: str
    title: str
    description: str
    scheduled_at: UtcDatetime
    duration: int
    meeting_link: str
    # Confirmed booking ids, in enrollment order.
    student_ids: list[str] = []
    # Booking ids the session was created for; resuming re-drives the gap.
    requested_ids: list[str] = []
    status: SessionStatus = SessionStatus.SCHEDULED
    created_at: UtcDatetime
    min_students: int = 1
    max_students: Optional[int] = None

    model_config = {"from_attributes": True}


class SessionSpec(BaseModel):
    title: str
    description: str
    scheduled_at: datetime
    duration: int


class SessionCreate(SessionSpec):
    selection: Optional[list[str]] = None
    session_id: Optional[str] = None


class SessionStatusUpdate(BaseModel):
    status: SessionStatus


class AssignmentRetry(BaseModel):
    booking_ids: list[str]


class Enrollment(BaseModel):
    id: str
    session_id: str
    booking_id: str
    user_id: Optional[str] = None
    joined_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime

    model_config = {"from_attributes": True}
