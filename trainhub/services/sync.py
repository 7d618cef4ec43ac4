# trainhub/services/sync.py
"""
Reconciliation between the remote store and the local cache.

Merge rules:
- upsert on record identity; the remote row replaces the cached one
  (remote wins once a write has round-tripped)
- records present locally but absent remotely are left untouched
  (assumed not yet synced)
- records with an unconfirmed outbox write keep the local value
- applying the same snapshot twice leaves the cache unchanged

Writes that could not reach the remote (offline-first booking creation,
payment status) wait in the Outbox and are retried on every tick.

SyncLoop flow (one cancellable asyncio task):
1. flush the outbox
2. pull every watched scope and merge
3. sleep until the interval elapses or a change notification arrives
   (notifications only wake the loop; bursts coalesce into one re-pull)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..exceptions import RemoteRejectedError, RemoteStoreError, RemoteUnavailableError
from ..schemas.bookings import Booking
from ..schemas.sessions import Session
from .cache import BOOKINGS, SESSIONS, LocalCache
from .remote import BOOKINGS_TABLE, SESSIONS_TABLE, Filter, RemoteStore, eq, in_
from .remote.base import matches_all
from .students import remember_student

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Scope
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SyncScope:
    """The viewer whose data is kept warm: one trainer, or one student."""

    trainer_id: Optional[str] = None
    student_id: Optional[str] = None
    student_email: Optional[str] = None

    def __post_init__(self):
        given = [v for v in (self.trainer_id, self.student_id, self.student_email) if v]
        if len(given) != 1:
            raise ValueError("SyncScope needs exactly one of trainer_id, student_id, student_email")

    @property
    def key(self) -> str:
        if self.trainer_id:
            return f"trainer:{self.trainer_id}"
        if self.student_id:
            return f"student:{self.student_id}"
        return f"email:{self.student_email}"

    def booking_filters(self) -> list[Filter]:
        if self.trainer_id:
            return [eq("trainer_id", self.trainer_id)]
        if self.student_id:
            return [eq("student_id", self.student_id)]
        return [eq("student_email", self.student_email)]

    def session_filters(self, session_ids: Iterable[str] = ()) -> list[Filter]:
        # Student sessions are found through booking.session_id.
        if self.trainer_id:
            return [eq("trainer_id", self.trainer_id)]
        return [in_("id", sorted(session_ids))]


# ──────────────────────────────────────────────────────────────────────────────
# Outbox
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class PendingWrite:
    table: str
    record_id: str
    kind: str  # insert | update
    payload: dict
    expect: tuple[Filter, ...] = field(default_factory=tuple)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.table, self.record_id, self.kind)


class Outbox:
    """Remote writes that have not been confirmed yet, in queue order."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str, str], PendingWrite] = {}

    def add(self, write: PendingWrite) -> None:
        # A newer write of the same kind for the same record supersedes the old one.
        self._items.pop(write.key, None)
        self._items[write.key] = write

    def pending(self) -> list[PendingWrite]:
        return list(self._items.values())

    def discard(self, write: PendingWrite) -> None:
        self._items.pop(write.key, None)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, record_id: str) -> bool:
        return any(w.record_id == record_id for w in self._items.values())


# ──────────────────────────────────────────────────────────────────────────────
# Reconciler
# ──────────────────────────────────────────────────────────────────────────────

class Reconciler:
    def __init__(self, cache: LocalCache, remote: RemoteStore, outbox: Optional[Outbox] = None):
        self.cache = cache
        self.remote = remote
        self.outbox = outbox or Outbox()
        self._pulled_at: dict[str, float] = {}

    def apply_snapshot(self, bookings: Iterable[dict], sessions: Iterable[dict]) -> None:
        """
        Merge remote rows into the cache (idempotent).

        Records with a write still waiting in the outbox keep their cached
        value until the write is confirmed.
        """
        booking_records = [
            Booking.model_validate(row).model_dump(mode="json")
            for row in bookings
            if row["id"] not in self.outbox
        ]
        session_records = [
            Session.model_validate(row).model_dump(mode="json")
            for row in sessions
            if row["id"] not in self.outbox
        ]
        if session_records:
            self.cache.put_many(SESSIONS, session_records)
        if booking_records:
            self.cache.put_many(BOOKINGS, booking_records)
        for record in booking_records:
            remember_student(self.cache, record)

    def session_ids_for(self, scope: SyncScope) -> set[str]:
        """Cached session ids reachable from the scope's bookings."""
        filters = scope.booking_filters()
        return {
            r["session_id"]
            for r in self.cache.scan(BOOKINGS, lambda r: matches_all(r, filters))
            if r.get("session_id")
        }

    async def _fetch(self, scope: SyncScope) -> tuple[list[dict], list[dict]]:
        bookings = await self.remote.select(
            BOOKINGS_TABLE, scope.booking_filters(), order_by="created_at"
        )
        if scope.trainer_id:
            sessions = await self.remote.select(
                SESSIONS_TABLE, scope.session_filters(), order_by="scheduled_at"
            )
        else:
            session_ids = sorted({b["session_id"] for b in bookings if b.get("session_id")})
            sessions = (
                await self.remote.select(SESSIONS_TABLE, [in_("id", session_ids)])
                if session_ids
                else []
            )
        return bookings, sessions

    async def pull_if_stale(self, scope: SyncScope, ttl: float, force: bool = False) -> bool:
        """Pull unless the scope was refreshed less than `ttl` seconds ago."""
        last = self._pulled_at.get(scope.key)
        if not force and last is not None and time.monotonic() - last < ttl:
            return False
        return await self.pull(scope)

    async def pull(self, scope: SyncScope) -> bool:
        """
        Fetch the scope from the remote and merge it.

        Returns False (and keeps cached data) when the remote fails; the
        next tick retries.
        """
        try:
            bookings, sessions = await self._fetch(scope)
        except RemoteStoreError as e:
            logger.warning(f"Pull for {scope.key} failed, serving cached data: {e.message}")
            return False

        self.apply_snapshot(bookings, sessions)
        self._pulled_at[scope.key] = time.monotonic()
        logger.debug(f"Pulled {scope.key}: {len(bookings)} bookings, {len(sessions)} sessions")
        return True

    async def flush(self) -> int:
        """Retry queued remote writes. Returns how many were confirmed."""
        confirmed = 0
        for write in self.outbox.pending():
            try:
                if write.kind == "insert":
                    await self.remote.insert(write.table, write.payload)
                else:
                    row = await self.remote.update(
                        write.table, write.record_id, write.payload, expect=write.expect
                    )
                    if row is None:
                        logger.warning(
                            f"Queued update for {write.table}/{write.record_id} "
                            f"no longer applies, dropping"
                        )
            except RemoteUnavailableError as e:
                logger.warning(f"Outbox flush stopped, remote unavailable: {e.message}")
                break
            except RemoteRejectedError as e:
                logger.error(f"Outbox write {write.table}/{write.record_id} rejected: {e.message}")
                self.outbox.discard(write)
                continue

            self.outbox.discard(write)
            confirmed += 1

        if confirmed:
            logger.info(f"Outbox flushed {confirmed} write(s), {len(self.outbox)} left")
        return confirmed


# ──────────────────────────────────────────────────────────────────────────────
# Loop
# ──────────────────────────────────────────────────────────────────────────────

class SyncLoop:
    """
    Background resynchronization bound to the lifetime of its consumer.

    Use as `async with SyncLoop(...)` or call start()/stop(); stop()
    always releases change subscriptions.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        scopes: Iterable[SyncScope] = (),
        interval: float = 30.0,
        push: bool = True,
    ):
        self.reconciler = reconciler
        self.scopes = list(scopes)
        self.interval = interval
        self.push = push
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._subscriptions: list = []
        # Student scopes watch only the sessions their bookings point at.
        self._session_watch: dict[str, tuple[frozenset, object]] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscriptions(self) -> int:
        return len(self._subscriptions)

    async def start(self) -> None:
        if self.running:
            return
        self._wake = asyncio.Event()
        if self.push and self.reconciler.remote.feed is not None:
            await self._subscribe()
        self._task = asyncio.create_task(self._run())
        logger.info(f"sync_loop started for {[s.key for s in self.scopes]}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            subscriptions, self._subscriptions = self._subscriptions, []
            self._session_watch = {}
            for sub in subscriptions:
                await sub.close()

    def refresh(self) -> None:
        """Ask for an immediate tick."""
        if self._wake is not None:
            self._wake.set()

    async def __aenter__(self) -> "SyncLoop":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def tick(self) -> None:
        await self.reconciler.flush()
        for scope in self.scopes:
            await self.reconciler.pull(scope)
            if self._subscriptions and not scope.trainer_id:
                try:
                    await self._watch_student_sessions(scope)
                except Exception:
                    logger.exception(f"Session subscription for {scope.key} failed")
        self.ticks += 1

    async def _on_change(self, event) -> None:
        logger.debug(f"Change on {event.table} ({event.type}), scheduling re-pull")
        self.refresh()

    async def _subscribe(self) -> None:
        remote = self.reconciler.remote
        for scope in self.scopes:
            try:
                self._subscriptions.append(
                    await remote.subscribe(BOOKINGS_TABLE, scope.booking_filters(), self._on_change)
                )
                if scope.trainer_id:
                    self._subscriptions.append(
                        await remote.subscribe(SESSIONS_TABLE, scope.session_filters(), self._on_change)
                    )
                else:
                    await self._watch_student_sessions(scope)
            except Exception:
                logger.exception(f"Push subscription for {scope.key} failed, polling only")

    async def _watch_student_sessions(self, scope: SyncScope) -> None:
        """Re-subscribe to the scope's sessions when the set of ids changed."""
        ids = frozenset(self.reconciler.session_ids_for(scope))
        current = self._session_watch.get(scope.key)
        if current is not None and current[0] == ids:
            return
        if current is not None:
            del self._session_watch[scope.key]
            self._subscriptions.remove(current[1])
            await current[1].close()
        if not ids:
            return
        sub = await self.reconciler.remote.subscribe(
            SESSIONS_TABLE, scope.session_filters(ids), self._on_change
        )
        self._session_watch[scope.key] = (ids, sub)
        self._subscriptions.append(sub)

    async def _run(self) -> None:
        try:
            while True:
                try:
                    await self.tick()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("sync_loop tick failed, retrying next interval")

                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
                self._wake.clear()
        except asyncio.CancelledError:
            logger.info("sync_loop cancelled")
            raise
