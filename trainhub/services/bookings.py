# trainhub/services/bookings.py
"""
Booking lifecycle.

A booking is created once (when payment is initiated or confirmed),
mutated at most twice (payment status, then session assignment) and never
deleted here. Payment status only moves pending → completed or
pending → failed.

Writes are offline-first: the local cache always takes the write; when
the remote is unreachable the write is queued in the reconciler's outbox.
Reads come from the cache, refreshed from the remote lazily (TTL) or on
request; a failed refresh never fails the read.
"""

import logging
import re
from typing import Optional

from ..exceptions import (
    AuthError,
    InvalidTransitionError,
    NotFoundError,
    RemoteUnavailableError,
    ValidationError,
)
from ..schemas.bookings import Booking, PaymentStatus
from ..utils.clock import new_id, utc_now
from .cache import BOOKINGS, LocalCache
from .remote import BOOKINGS_TABLE, RemoteStore, eq
from .students import remember_student
from .sync import PendingWrite, Reconciler, SyncScope

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_student(student_name: str, student_email: str) -> tuple[str, str]:
    name = (student_name or "").strip()
    email = (student_email or "").strip()
    if not name:
        raise ValidationError("Student name is required", details={"field": "student_name"})
    if not email:
        raise ValidationError("Student email is required", details={"field": "student_email"})
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email: {email}", details={"field": "student_email"})
    return name, email


class BookingManager:
    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteStore,
        reconciler: Reconciler,
        require_identity: bool = True,
        cache_ttl: float = 60.0,
    ):
        self.cache = cache
        self.remote = remote
        self.reconciler = reconciler
        self.require_identity = require_identity
        self.cache_ttl = cache_ttl

    # ── Create ──────────────────────────────────────────────────────────

    async def create_booking(
        self,
        trainer_id: str,
        student_id: Optional[str],
        student_name: str,
        student_email: str,
        message: Optional[str] = None,
        *,
        payment_confirmed: bool = False,
        booking_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
    ) -> Booking:
        """
        Create a booking, pending unless payment is already confirmed.

        The cache write always happens; a remote outage queues the booking
        for the sync loop instead of failing the call.
        """
        if not student_id and self.require_identity:
            raise AuthError("Sign in required to book a session")
        if not trainer_id:
            raise ValidationError("Trainer is required", details={"field": "trainer_id"})
        name, email = validate_student(student_name, student_email)

        booking = Booking(
            id=booking_id or new_id(),
            trainer_id=trainer_id,
            student_id=student_id or None,
            student_name=name,
            student_email=email,
            message=(message or "").strip() or None,
            created_at=utc_now(),
            payment_status=PaymentStatus.COMPLETED if payment_confirmed else PaymentStatus.PENDING,
            checkout_session_id=checkout_session_id,
        )
        record = booking.model_dump(mode="json")

        self.cache.put(BOOKINGS, record)
        remember_student(self.cache, record)

        try:
            await self.remote.insert(BOOKINGS_TABLE, record)
        except RemoteUnavailableError as e:
            logger.warning(f"Booking {booking.id} saved locally, remote write queued: {e.message}")
            self.reconciler.outbox.add(
                PendingWrite(BOOKINGS_TABLE, booking.id, "insert", record)
            )

        logger.info(
            f"Booking created: {booking.id} trainer={trainer_id} "
            f"status={booking.payment_status.value}"
        )
        return booking

    # ── Payment status ──────────────────────────────────────────────────

    async def get_booking(self, booking_id: str) -> Booking:
        """Local first, then remote. NotFoundError only when both tiers miss."""
        record = self.cache.get(BOOKINGS, booking_id)
        if record is not None:
            return Booking.model_validate(record)

        row = await self.remote.get(BOOKINGS_TABLE, booking_id)
        if row is None:
            raise NotFoundError(f"Booking {booking_id} not found", details={"booking_id": booking_id})
        booking = Booking.model_validate(row)
        self.cache.put(BOOKINGS, booking.model_dump(mode="json"))
        return booking

    async def mark_payment_status(self, booking_id: str, status: PaymentStatus) -> Booking:
        """
        Apply a payment outcome. Re-applying the current status is a no-op;
        any other move away from completed/failed is rejected.
        """
        status = PaymentStatus(status)
        booking = await self.get_booking(booking_id)
        current = booking.payment_status

        if status == current:
            return booking
        if current != PaymentStatus.PENDING or status == PaymentStatus.PENDING:
            raise InvalidTransitionError("Booking", booking_id, current.value, status.value)

        changes = {"payment_status": status.value}
        expect = (eq("payment_status", PaymentStatus.PENDING),)

        try:
            row = await self.remote.update(BOOKINGS_TABLE, booking_id, changes, expect=expect)
            remote_row = None
            if row is None:
                remote_row = await self.remote.get(BOOKINGS_TABLE, booking_id)
        except RemoteUnavailableError as e:
            logger.warning(f"Payment status for {booking_id} applied locally, remote queued: {e.message}")
            self.reconciler.outbox.add(
                PendingWrite(BOOKINGS_TABLE, booking_id, "update", changes, expect)
            )
            row = None
        else:
            if row is None and remote_row is None:
                # Not on the remote yet: its insert is still queued.
                self.reconciler.outbox.add(
                    PendingWrite(BOOKINGS_TABLE, booking_id, "update", changes, expect)
                )
            elif row is None:
                # Lost the compare-and-set: the remote's answer wins.
                remote_booking = Booking.model_validate(remote_row)
                self.cache.put(BOOKINGS, remote_booking.model_dump(mode="json"))
                if remote_booking.payment_status != status:
                    raise InvalidTransitionError(
                        "Booking",
                        booking_id,
                        remote_booking.payment_status.value,
                        status.value,
                    )
                return remote_booking

        if row is not None:
            updated = Booking.model_validate(row)
            self.cache.put(BOOKINGS, updated.model_dump(mode="json"))
        else:
            updated = booking.model_copy(update={"payment_status": status})
            self.cache.update(BOOKINGS, booking_id, changes)

        logger.info(f"Payment status applied: {booking_id} {current.value} → {status.value}")
        return updated

    async def complete_checkout(
        self,
        trainer_id: str,
        booking_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
    ) -> Booking:
        """
        Post-payment landing: locate the pending booking named by the
        success URL and mark it completed.
        """
        if booking_id:
            booking = await self.get_booking(booking_id)
        elif checkout_session_id:
            booking = await self.find_by_checkout_session(checkout_session_id)
        else:
            raise ValidationError("booking_id or checkout session id is required")

        if booking.trainer_id != trainer_id:
            raise ValidationError(
                f"Booking {booking.id} belongs to another trainer",
                details={"booking_id": booking.id, "trainer_id": trainer_id},
            )
        return await self.mark_payment_status(booking.id, PaymentStatus.COMPLETED)

    async def find_by_checkout_session(self, checkout_session_id: str) -> Booking:
        local = self.cache.scan(
            BOOKINGS, lambda r: r.get("checkout_session_id") == checkout_session_id
        )
        if local:
            return Booking.model_validate(local[0])

        rows = await self.remote.select(
            BOOKINGS_TABLE, [eq("checkout_session_id", checkout_session_id)]
        )
        if not rows:
            raise NotFoundError(
                f"No booking for checkout session {checkout_session_id}",
                details={"checkout_session_id": checkout_session_id},
            )
        booking = Booking.model_validate(rows[0])
        self.cache.put(BOOKINGS, booking.model_dump(mode="json"))
        return booking

    # ── Read ────────────────────────────────────────────────────────────

    async def list_bookings_for(
        self,
        trainer_id: Optional[str] = None,
        student_id: Optional[str] = None,
        student_email: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
        unassigned: Optional[bool] = None,
        refresh: bool = False,
    ) -> list[Booking]:
        """Cached bookings for one trainer or student, newest first."""
        try:
            scope = SyncScope(trainer_id=trainer_id, student_id=student_id, student_email=student_email)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        await self.reconciler.pull_if_stale(scope, self.cache_ttl, force=refresh)

        def _match(r: dict) -> bool:
            if trainer_id and r.get("trainer_id") != trainer_id:
                return False
            if student_id and r.get("student_id") != student_id:
                return False
            if student_email and r.get("student_email") != student_email:
                return False
            if payment_status is not None and r.get("payment_status") != PaymentStatus(payment_status).value:
                return False
            if unassigned is not None and (r.get("session_id") is None) != unassigned:
                return False
            return True

        bookings = [Booking.model_validate(r) for r in self.cache.scan(BOOKINGS, _match)]
        bookings.sort(key=lambda b: b.created_at, reverse=True)
        return bookings

    async def eligible_pool(self, trainer_id: str, refresh: bool = False) -> list[Booking]:
        """Completed, unassigned bookings for a trainer, oldest first (local view)."""
        bookings = await self.list_bookings_for(
            trainer_id=trainer_id,
            payment_status=PaymentStatus.COMPLETED,
            unassigned=True,
            refresh=refresh,
        )
        return sorted(bookings, key=lambda b: b.created_at)
