# trainhub/services/aggregation.py
"""
Session aggregation: turning a trainer's paid bookings into a session.

Eligible pool: bookings of the trainer with payment_status=completed and
no session_id, read from the remote store (the serialization point) and
ordered oldest first.

create_session algorithm:
1. Resolve the selection: explicit ids verbatim (deduplicated), else the
   policy's FIFO default batch
2. Validate in order: too few → InsufficientBookingsError, too many →
   CapacityExceededError, any explicit id outside the pool →
   IneligibleBookingError
3. Insert the session (status=scheduled, no confirmed students yet,
   requested_ids = the selection, meeting link derived from the id). If
   the insert fails the error carries the session id to retry with.
4. Claim the whole selection in one all-or-nothing compare-and-set
   (session_id IS NULL AND payment_status=completed AND trainer matches).
   A rejected claim changes nothing: bookings other sessions took are
   dropped and the rest are claimed in a new round, as long as the
   policy minimum still holds; otherwise the session is cancelled and
   InsufficientBookingsError raised. An I/O failure is retried once.
5. Report: full success returns the session; any gap raises
   PartialAssignmentError with the session left standing.

Passing the same session_id again resumes a previous attempt: the
requested bookings not yet confirmed are claimed again instead of
creating a second session.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..exceptions import (
    CapacityExceededError,
    IneligibleBookingError,
    InsufficientBookingsError,
    InvalidTransitionError,
    NotFoundError,
    PartialAssignmentError,
    RemoteStoreError,
    RemoteUnavailableError,
    ValidationError,
)
from ..schemas.bookings import Booking, PaymentStatus
from ..schemas.common import as_utc, format_timestamp
from ..schemas.sessions import Session, SessionSpec, SessionStatus
from ..utils.clock import new_id, utc_now
from ..utils.meeting_link import DEFAULT_MEETING_BASE_URL, generate_link
from .cache import BOOKINGS, SESSIONS, LocalCache
from .remote import (
    BOOKINGS_TABLE,
    ENROLLMENTS_TABLE,
    SESSIONS_TABLE,
    RemoteStore,
    eq,
    in_,
    is_null,
)
from .trainers import TrainerCatalog

logger = logging.getLogger(__name__)

MAX_CLAIM_ROUNDS = 4


# ──────────────────────────────────────────────────────────────────────────────
# Capacity policies
# ──────────────────────────────────────────────────────────────────────────────

class CapacityPolicy(ABC):
    name: str = ""

    def __init__(self, min_students: int, max_students: Optional[int]):
        if min_students < 1:
            raise ValueError("min_students must be at least 1")
        if max_students is not None and max_students < min_students:
            raise ValueError("max_students must be >= min_students")
        self.min_students = min_students
        self.max_students = max_students

    @abstractmethod
    def default_batch(self, pool: Sequence[Booking]) -> list[Booking]:
        """FIFO selection when the caller does not pick bookings."""

    @abstractmethod
    def check_explicit(self, pool_size: int, selected: int) -> None:
        """Minimum rules for an explicit selection."""

    def check_default(self, pool_size: int, selected: int) -> None:
        if selected < self.min_students:
            raise InsufficientBookingsError(current=pool_size, required=self.min_students)

    def required(self, explicit: bool) -> int:
        """Smallest enrollment a new session may open with."""
        return self.min_students

    def check_capacity(self, selected: int) -> None:
        if self.max_students is not None and selected > self.max_students:
            raise CapacityExceededError(current=selected, maximum=self.max_students)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(min={self.min_students}, max={self.max_students})"


class StrictThresholdPolicy(CapacityPolicy):
    """
    A session opens only once the pool reaches min_students.

    Default batch: the min_students oldest bookings; when the pool already
    overflows one full session, the max_students oldest.
    """

    name = "strict"

    def __init__(self, min_students: int = 5, max_students: Optional[int] = 10):
        super().__init__(min_students, max_students)

    def default_batch(self, pool):
        if self.max_students is not None and len(pool) > self.max_students:
            return list(pool[: self.max_students])
        return list(pool[: self.min_students])

    def check_explicit(self, pool_size, selected):
        if pool_size < self.min_students:
            raise InsufficientBookingsError(current=pool_size, required=self.min_students)
        if selected < 1:
            raise InsufficientBookingsError(current=selected, required=1)

    def required(self, explicit):
        return 1 if explicit else self.min_students


class FlexiblePolicy(CapacityPolicy):
    """Any 1..max_students bookings; default is the oldest that fit."""

    name = "flexible"

    def __init__(self, min_students: int = 1, max_students: Optional[int] = 10):
        super().__init__(min_students, max_students)

    def default_batch(self, pool):
        if self.max_students is None:
            return list(pool)
        return list(pool[: self.max_students])

    def check_explicit(self, pool_size, selected):
        if selected < self.min_students:
            raise InsufficientBookingsError(current=selected, required=self.min_students)


def build_policy(settings) -> CapacityPolicy:
    if settings.session_policy == "strict":
        return StrictThresholdPolicy(
            min_students=settings.min_students or 5,
            max_students=settings.max_students,
        )
    return FlexiblePolicy(
        min_students=settings.min_students or 1,
        max_students=settings.max_students,
    )


def validate_spec(spec: SessionSpec) -> SessionSpec:
    title = (spec.title or "").strip()
    description = (spec.description or "").strip()
    if not title:
        raise ValidationError("Session title is required", details={"field": "title"})
    if not description:
        raise ValidationError("Session description is required", details={"field": "description"})
    if isinstance(spec.duration, bool) or not isinstance(spec.duration, int) or spec.duration <= 0:
        raise ValidationError("Duration must be a positive number of minutes", details={"field": "duration"})
    if as_utc(spec.scheduled_at) <= utc_now():
        raise ValidationError("Session must be scheduled in the future", details={"field": "scheduled_at"})
    return spec.model_copy(update={"title": title, "description": description})


def _dedupe(ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    return [i for i in ids if not (i in seen or seen.add(i))]


# ──────────────────────────────────────────────────────────────────────────────
# Aggregator
# ──────────────────────────────────────────────────────────────────────────────

class SessionAggregator:
    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteStore,
        catalog: TrainerCatalog,
        policy: CapacityPolicy,
        meeting_base_url: str = DEFAULT_MEETING_BASE_URL,
    ):
        self.cache = cache
        self.remote = remote
        self.catalog = catalog
        self.policy = policy
        self.meeting_base_url = meeting_base_url

    # ── Pool ────────────────────────────────────────────────────────────

    async def eligible_pool(self, trainer_id: str) -> list[Booking]:
        """Authoritative eligible pool, oldest first."""
        rows = await self.remote.select(
            BOOKINGS_TABLE,
            [
                eq("trainer_id", trainer_id),
                eq("payment_status", PaymentStatus.COMPLETED),
                is_null("session_id"),
            ],
            order_by="created_at",
        )
        pool = sorted((Booking.model_validate(r) for r in rows), key=lambda b: b.created_at)
        if pool:
            self.cache.put_many(BOOKINGS, [b.model_dump(mode="json") for b in pool])
        return pool

    async def _ineligibility_reason(self, booking_id: str, trainer_id: str) -> str:
        row = await self.remote.get(BOOKINGS_TABLE, booking_id)
        if row is None:
            return "booking not found"
        booking = Booking.model_validate(row)
        if booking.trainer_id != trainer_id:
            return "booked with another trainer"
        if booking.payment_status != PaymentStatus.COMPLETED:
            return f"payment is {booking.payment_status.value}"
        if booking.session_id is not None:
            return f"already assigned to session {booking.session_id}"
        return "not in the eligible pool"

    # ── Create ──────────────────────────────────────────────────────────

    async def _resolve(
        self,
        trainer_id: str,
        pool: list[Booking],
        selection: Optional[Sequence[str]],
    ) -> list[str]:
        if selection is None:
            chosen = self.policy.default_batch(pool)
            self.policy.check_default(len(pool), len(chosen))
            self.policy.check_capacity(len(chosen))
            return [b.id for b in chosen]

        ids = _dedupe(selection)
        self.policy.check_explicit(len(pool), len(ids))
        self.policy.check_capacity(len(ids))
        eligible = {b.id for b in pool}
        for booking_id in ids:
            if booking_id not in eligible:
                reason = await self._ineligibility_reason(booking_id, trainer_id)
                raise IneligibleBookingError(booking_id, reason)
        return ids

    async def create_session(
        self,
        trainer_id: str,
        spec: SessionSpec,
        selection: Optional[Sequence[str]] = None,
        *,
        session_id: Optional[str] = None,
    ) -> Session:
        if session_id:
            existing = await self.remote.get(SESSIONS_TABLE, session_id)
            if existing is not None:
                return await self._resume(Session.model_validate(existing), trainer_id, selection)

        spec = validate_spec(spec)
        trainer = self.catalog.get(trainer_id)
        pool = await self.eligible_pool(trainer_id)
        chosen = await self._resolve(trainer_id, pool, selection)

        session_id = session_id or new_id()
        session = Session(
            id=session_id,
            trainer_id=trainer_id,
            trainer_name=trainer.name,
            title=spec.title,
            description=spec.description,
            scheduled_at=spec.scheduled_at,
            duration=spec.duration,
            meeting_link=generate_link(session_id, self.meeting_base_url),
            student_ids=[],
            requested_ids=chosen,
            status=SessionStatus.SCHEDULED,
            created_at=utc_now(),
            min_students=self.policy.min_students,
            max_students=self.policy.max_students,
        )

        try:
            stored = await self.remote.insert(SESSIONS_TABLE, session.model_dump(mode="json"))
        except RemoteStoreError as e:
            # The row may have landed; a retry must reuse this id.
            e.details.setdefault("session_id", session_id)
            logger.warning(f"Inserting session {session_id} failed: {e.message}")
            raise
        session = Session.model_validate(stored)
        self.cache.put(SESSIONS, session.model_dump(mode="json"))
        logger.info(
            f"Session {session.id} created for trainer={trainer_id} "
            f"({self.policy.name}), assigning {len(chosen)} booking(s)"
        )

        return await self._assign(session, chosen, minimum=self.policy.required(selection is not None))

    async def _resume(
        self,
        session: Session,
        trainer_id: str,
        selection: Optional[Sequence[str]],
    ) -> Session:
        if session.trainer_id != trainer_id:
            raise ValidationError(
                f"Session {session.id} belongs to another trainer",
                details={"session_id": session.id},
            )
        if session.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED):
            raise InvalidTransitionError("Session", session.id, session.status.value, "assign")

        requested = _dedupe(selection) if selection is not None else list(session.requested_ids)
        leftovers = [i for i in requested if i not in session.student_ids]
        self.cache.put(SESSIONS, session.model_dump(mode="json"))
        if not leftovers:
            logger.info(f"Session {session.id} already holds every requested booking")
            return session

        logger.info(f"Resuming session {session.id}: {len(leftovers)} booking(s) still to assign")
        self.policy.check_capacity(len(session.student_ids) + len(leftovers))
        minimum = 0 if session.student_ids else self.policy.required(selection is not None)
        return await self._assign(session, leftovers, minimum=minimum)

    # ── Retry leftovers ─────────────────────────────────────────────────

    async def retry_assignment(self, session_id: str, booking_ids: Sequence[str]) -> Session:
        """Assign leftover bookings (from PartialAssignmentError) to an existing session."""
        row = await self.remote.get(SESSIONS_TABLE, session_id)
        if row is None:
            raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
        session = Session.model_validate(row)
        if session.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED):
            raise InvalidTransitionError("Session", session_id, session.status.value, "assign")

        candidates = [i for i in _dedupe(booking_ids) if i not in session.student_ids]
        self.policy.check_capacity(len(session.student_ids) + len(candidates))

        for booking_id in candidates:
            current = await self.remote.get(BOOKINGS_TABLE, booking_id)
            if current is not None and current.get("session_id") == session_id:
                continue
            booking = Booking.model_validate(current) if current is not None else None
            if booking is None or not booking.is_eligible_for(session.trainer_id):
                reason = await self._ineligibility_reason(booking_id, session.trainer_id)
                raise IneligibleBookingError(booking_id, reason)

        return await self._assign(session, candidates)

    # ── Assignment ──────────────────────────────────────────────────────

    async def _sort_out(self, session: Session, pending: list[str]):
        """Split a rejected claim into rows already ours, still free, and lost."""
        rows = await self.remote.select(BOOKINGS_TABLE, [in_("id", pending)])
        by_id = {}
        for row in rows:
            booking = Booking.model_validate(row)
            by_id[booking.id] = booking
            self.cache.put(BOOKINGS, booking.model_dump(mode="json"))

        ours, free, lost = [], [], []
        for booking_id in pending:
            booking = by_id.get(booking_id)
            if booking is not None and booking.session_id == session.id:
                ours.append(booking_id)
            elif booking is not None and booking.is_eligible_for(session.trainer_id):
                free.append(booking_id)
            else:
                lost.append(booking_id)
        return ours, free, lost

    async def _claim_all(self, session: Session, candidates: list[str], minimum: int):
        """
        Claim bookings for the session, all or nothing per round.

        A rejected claim drops the bookings other sessions took and claims
        the rest in a new round; an I/O failure is retried once. Returns
        (assigned, conflicted, unknown).
        """
        expect = [
            is_null("session_id"),
            eq("payment_status", PaymentStatus.COMPLETED),
            eq("trainer_id", session.trainer_id),
        ]
        assigned: list[str] = []
        conflicted: list[str] = []
        pending = [i for i in candidates if i not in session.student_ids]
        io_retries = 1

        for _ in range(MAX_CLAIM_ROUNDS):
            if not pending:
                break
            try:
                rows = await self.remote.claim(
                    BOOKINGS_TABLE, pending, {"session_id": session.id}, expect=expect
                )
                if rows is not None:
                    self.cache.put_many(
                        BOOKINGS, [Booking.model_validate(r).model_dump(mode="json") for r in rows]
                    )
                    assigned.extend(pending)
                    pending = []
                    break
                ours, free, lost = await self._sort_out(session, pending)
            except RemoteUnavailableError as e:
                logger.warning(f"Claiming {len(pending)} booking(s) for {session.id} failed: {e.message}")
                if not io_retries:
                    break
                io_retries -= 1
                continue

            if lost:
                logger.warning(f"Bookings {lost} were taken before session {session.id} could claim them")
            assigned.extend(ours)
            conflicted.extend(lost)
            pending = free

            total = len(session.student_ids) + len(assigned) + len(pending)
            if total < minimum and not session.student_ids and not assigned:
                await self._cancel_empty(session)
                raise InsufficientBookingsError(current=len(pending), required=minimum)

        return assigned, conflicted, pending

    async def _assign(self, session: Session, candidates: list[str], minimum: int = 0) -> Session:
        assigned, conflicted, unknown = await self._claim_all(session, candidates, minimum)

        final_ids = list(session.student_ids) + assigned
        if final_ids != list(session.student_ids):
            try:
                row = await self.remote.update(SESSIONS_TABLE, session.id, {"student_ids": final_ids})
                if row is not None:
                    session = Session.model_validate(row)
            except RemoteStoreError as e:
                logger.warning(f"Could not record enrollment list for {session.id}: {e.message}")
            session = session.model_copy(update={"student_ids": final_ids})
        self.cache.put(SESSIONS, session.model_dump(mode="json"))

        await self._write_enrollments(session, assigned)

        if conflicted or unknown:
            raise PartialAssignmentError(session, unassigned=unknown, conflicted=conflicted)

        wanted = set(assigned)
        emails = [
            r.get("student_email")
            for r in self.cache.scan(BOOKINGS, lambda r: r.get("id") in wanted)
        ]
        logger.info(f"Session {session.id} ready with {len(final_ids)} student(s). Notifying: {emails}")
        return session

    async def _cancel_empty(self, session: Session) -> None:
        logger.warning(f"Session {session.id} lost every booking to concurrent sessions, cancelling")
        changes = {"status": SessionStatus.CANCELLED.value, "student_ids": []}
        try:
            await self.remote.update(
                SESSIONS_TABLE, session.id, changes, expect=[eq("status", session.status)]
            )
        except RemoteStoreError as e:
            logger.error(f"Could not cancel empty session {session.id}: {e.message}")
        self.cache.put(
            SESSIONS,
            session.model_copy(
                update={"status": SessionStatus.CANCELLED, "student_ids": []}
            ).model_dump(mode="json"),
        )

    async def _write_enrollments(self, session: Session, booking_ids: list[str]) -> None:
        """Enrollment rows index assignments for student views and join tracking."""
        now = utc_now()
        for booking_id in booking_ids:
            record = self.cache.get(BOOKINGS, booking_id) or {}
            enrollment = {
                "id": f"{session.id}-{booking_id}",
                "session_id": session.id,
                "booking_id": booking_id,
                "user_id": record.get("student_id"),
                "joined_at": None,
                "created_at": format_timestamp(now),
            }
            try:
                await self.remote.insert(ENROLLMENTS_TABLE, enrollment)
            except RemoteStoreError as e:
                logger.warning(f"Enrollment {enrollment['id']} not written: {e.message}")
