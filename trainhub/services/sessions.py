# trainhub/services/sessions.py
"""
Session lifecycle after aggregation.

Status graph:
    scheduled → active → completed
    scheduled → cancelled
    active    → cancelled

Transitions are caller-driven and written as a compare-and-set on the
current status, so two operators racing on the same session cannot both
win with different targets.
"""

import logging
from typing import Optional

from ..exceptions import InvalidTransitionError, NotFoundError, ValidationError
from ..schemas.common import format_timestamp
from ..schemas.sessions import Enrollment, Session, SessionStatus
from ..utils.clock import utc_now
from .cache import BOOKINGS, SESSIONS, LocalCache
from .remote import ENROLLMENTS_TABLE, SESSIONS_TABLE, RemoteStore, eq, is_null
from .sync import Reconciler, SyncScope

logger = logging.getLogger(__name__)

TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({SessionStatus.ACTIVE, SessionStatus.CANCELLED}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}

UPCOMING = (SessionStatus.SCHEDULED, SessionStatus.ACTIVE)


def can_transition(current: SessionStatus, requested: SessionStatus) -> bool:
    return requested in TRANSITIONS[current]


class SessionService:
    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteStore,
        reconciler: Reconciler,
        cache_ttl: float = 60.0,
    ):
        self.cache = cache
        self.remote = remote
        self.reconciler = reconciler
        self.cache_ttl = cache_ttl

    async def get_session(self, session_id: str) -> Session:
        record = self.cache.get(SESSIONS, session_id)
        if record is not None:
            return Session.model_validate(record)
        return await self._fetch(session_id)

    async def _fetch(self, session_id: str) -> Session:
        row = await self.remote.get(SESSIONS_TABLE, session_id)
        if row is None:
            raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
        session = Session.model_validate(row)
        self.cache.put(SESSIONS, session.model_dump(mode="json"))
        return session

    async def transition(self, session_id: str, status: SessionStatus) -> Session:
        """
        Move a session along the status graph.

        Re-applying the current status is a no-op so a caller can retry
        after an unknown outcome.
        """
        status = SessionStatus(status)
        # The remote row is authoritative for the compare-and-set.
        session = await self._fetch(session_id)
        current = session.status

        if status == current:
            return session
        if not can_transition(current, status):
            raise InvalidTransitionError("Session", session_id, current.value, status.value)

        row = await self.remote.update(
            SESSIONS_TABLE,
            session_id,
            {"status": status.value},
            expect=[eq("status", current)],
        )
        if row is None:
            latest = await self._fetch(session_id)
            if latest.status != status:
                raise InvalidTransitionError("Session", session_id, latest.status.value, status.value)
            return latest

        updated = Session.model_validate(row)
        self.cache.put(SESSIONS, updated.model_dump(mode="json"))
        logger.info(f"Session {session_id}: {current.value} → {status.value}")
        return updated

    async def mark_joined(self, session_id: str, user_id: str) -> Enrollment:
        """Stamp joined_at on the caller's enrollment. The first join wins."""
        session = await self.get_session(session_id)
        if session.status not in UPCOMING:
            raise InvalidTransitionError("Session", session_id, session.status.value, "join")

        rows = await self.remote.select(
            ENROLLMENTS_TABLE, [eq("session_id", session_id), eq("user_id", user_id)]
        )
        if not rows:
            raise NotFoundError(
                f"User {user_id} is not enrolled in session {session_id}",
                details={"session_id": session_id, "user_id": user_id},
            )

        enrollment = Enrollment.model_validate(rows[0])
        if enrollment.joined_at is not None:
            return enrollment

        row = await self.remote.update(
            ENROLLMENTS_TABLE,
            enrollment.id,
            {"joined_at": format_timestamp(utc_now())},
            expect=[is_null("joined_at")],
        )
        if row is None:
            row = await self.remote.get(ENROLLMENTS_TABLE, enrollment.id)
        logger.info(f"User {user_id} joined session {session_id}")
        return Enrollment.model_validate(row)

    async def list_sessions_for(
        self,
        trainer_id: Optional[str] = None,
        student_id: Optional[str] = None,
        upcoming: bool = False,
        refresh: bool = False,
    ) -> list[Session]:
        """Cached sessions for one trainer or student, soonest first."""
        try:
            scope = SyncScope(trainer_id=trainer_id, student_id=student_id)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        await self.reconciler.pull_if_stale(scope, self.cache_ttl, force=refresh)

        if trainer_id:
            records = self.cache.scan(SESSIONS, lambda r: r.get("trainer_id") == trainer_id)
        else:
            session_ids = {
                r["session_id"]
                for r in self.cache.scan(BOOKINGS, lambda r: r.get("student_id") == student_id)
                if r.get("session_id")
            }
            records = self.cache.scan(SESSIONS, lambda r: r.get("id") in session_ids)

        sessions = [Session.model_validate(r) for r in records]
        if upcoming:
            sessions = [s for s in sessions if s.status in UPCOMING]
        sessions.sort(key=lambda s: s.scheduled_at)
        return sessions
