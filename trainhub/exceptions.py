# trainhub/exceptions.py
"""
Domain exceptions for the booking engine.

Every error carries a message, a stable code and a details dict so the
HTTP layer (and any other caller) can report enough context to fix the
input: offending booking id, current vs required counts, and so on.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationError(DomainException):
    """Bad input shape. Fix and resubmit."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(DomainException):
    """No authenticated identity where one is required."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(DomainException):
    """Referenced booking/session is absent locally and remotely."""

    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(DomainException):
    """Illegal state-machine move."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, entity_id: str, current: str, requested: str):
        super().__init__(
            f"{entity} {entity_id}: cannot move from {current} to {requested}",
            details={
                "entity": entity,
                "id": entity_id,
                "current": current,
                "requested": requested,
            },
        )


# ── Aggregation policy violations ────────────────────────────────────────


class InsufficientBookingsError(DomainException):
    status_code = 422

    def __init__(self, current: int, required: int):
        super().__init__(
            f"Not enough eligible bookings: have {current}, need {required}",
            details={"current": current, "required": required},
        )


class CapacityExceededError(DomainException):
    status_code = 422

    def __init__(self, current: int, maximum: int):
        super().__init__(
            f"Too many bookings selected: {current} > {maximum}",
            details={"current": current, "maximum": maximum},
        )


class IneligibleBookingError(DomainException):
    status_code = 422

    def __init__(self, booking_id: str, reason: str):
        self.booking_id = booking_id
        super().__init__(
            f"Booking {booking_id} is not eligible: {reason}",
            details={"booking_id": booking_id, "reason": reason},
        )


class PartialAssignmentError(DomainException):
    """
    The session exists and is usable, but some bookings were not assigned.

    `unassigned` lists booking ids the caller still has to reconcile
    (retry via `SessionAggregator.retry_assignment`).
    """

    status_code = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, session, unassigned: list[str], conflicted: list[str]):
        self.session = session
        self.unassigned = unassigned
        self.conflicted = conflicted
        super().__init__(
            f"Session {session.id} has {len(session.student_ids)} booking(s); "
            f"{len(unassigned)} unassigned, {len(conflicted)} taken by another session",
            details={
                "session_id": session.id,
                "assigned": list(session.student_ids),
                "unassigned": unassigned,
                "conflicted": conflicted,
            },
        )


# ── Remote I/O ───────────────────────────────────────────────────────────


class RemoteStoreError(DomainException):
    status_code = status.HTTP_502_BAD_GATEWAY


class RemoteUnavailableError(RemoteStoreError):
    """I/O failure or timeout. The outcome of a write is unknown."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class RemoteRejectedError(RemoteStoreError):
    """The remote store refused the request (4xx)."""


class PaymentProviderError(DomainException):
    status_code = status.HTTP_502_BAD_GATEWAY
