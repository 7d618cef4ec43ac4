# trainhub/services/students.py
"""Denormalized student identity cache, built opportunistically from bookings."""

from typing import Optional

from ..schemas.students import Student
from ..utils.clock import new_id
from .cache import STUDENTS, LocalCache


def remember_student(cache: LocalCache, booking: dict) -> Student:
    """Record the booking's student once per email. Existing entries are never overwritten."""
    candidate = Student(
        id=booking.get("student_id") or new_id(),
        name=booking["student_name"],
        email=booking["student_email"],
    )
    stored = cache.insert_unique(STUDENTS, candidate.model_dump(), key="email")
    return Student.model_validate(stored)


def find_student_by_email(cache: LocalCache, email: str) -> Optional[Student]:
    found = cache.scan(STUDENTS, lambda r: r.get("email") == email)
    return Student.model_validate(found[0]) if found else None
