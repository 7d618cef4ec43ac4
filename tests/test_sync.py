# tests/test_sync.py

import asyncio

import pytest

from trainhub.services.cache import BOOKINGS, SESSIONS, STUDENTS
from trainhub.services.remote import BOOKINGS_TABLE, SESSIONS_TABLE
from trainhub.services.sync import Outbox, PendingWrite, SyncLoop, SyncScope

from .fakes import booking_row, session_row


def test_scope_needs_exactly_one_identity():
    with pytest.raises(ValueError):
        SyncScope()
    with pytest.raises(ValueError):
        SyncScope(trainer_id="1", student_id="u1")
    assert SyncScope(student_email="a@example.com").key == "email:a@example.com"


def test_applying_a_snapshot_twice_is_idempotent(reconciler, cache):
    bookings = [booking_row("B1", order=1), booking_row("B2", order=2, session_id="S1")]
    sessions = [session_row("S1", student_ids=["B2"])]

    reconciler.apply_snapshot(bookings, sessions)
    first = {c: cache.scan(c) for c in (BOOKINGS, SESSIONS, STUDENTS)}
    reconciler.apply_snapshot(bookings, sessions)
    second = {c: cache.scan(c) for c in (BOOKINGS, SESSIONS, STUDENTS)}

    assert first == second
    assert len(second[BOOKINGS]) == 2


def test_remote_wins_and_local_only_records_survive(reconciler, cache):
    cache.put(BOOKINGS, booking_row("B1", payment_status="pending"))
    cache.put(BOOKINGS, booking_row("LOCAL", payment_status="pending"))

    reconciler.apply_snapshot([booking_row("B1", payment_status="completed", session_id="S1")], [])

    assert cache.get(BOOKINGS, "B1")["payment_status"] == "completed"
    assert cache.get(BOOKINGS, "B1")["session_id"] == "S1"
    assert cache.get(BOOKINGS, "LOCAL") is not None


@pytest.mark.asyncio
async def test_student_scope_pulls_sessions_through_bookings(reconciler, remote, cache):
    remote.seed(BOOKINGS_TABLE, booking_row("B1", student_id="u1", session_id="S1"))
    remote.seed(BOOKINGS_TABLE, booking_row("B2", student_id="u2", session_id="S2"))
    remote.seed(SESSIONS_TABLE, session_row("S1"), session_row("S2"))

    assert await reconciler.pull(SyncScope(student_id="u1"))

    assert [r["id"] for r in cache.scan(BOOKINGS)] == ["B1"]
    assert [r["id"] for r in cache.scan(SESSIONS)] == ["S1"]


@pytest.mark.asyncio
async def test_pull_failure_keeps_cache(reconciler, remote, cache):
    cache.put(BOOKINGS, booking_row("B1"))
    remote.offline = True

    assert await reconciler.pull(SyncScope(trainer_id="1")) is False
    assert cache.get(BOOKINGS, "B1") is not None


def test_outbox_newer_write_supersedes():
    outbox = Outbox()
    outbox.add(PendingWrite(BOOKINGS_TABLE, "B1", "insert", {"id": "B1"}))
    outbox.add(PendingWrite(BOOKINGS_TABLE, "B1", "update", {"payment_status": "failed"}))
    outbox.add(PendingWrite(BOOKINGS_TABLE, "B1", "update", {"payment_status": "completed"}))

    assert len(outbox) == 2
    assert "B1" in outbox
    assert [w.kind for w in outbox.pending()] == ["insert", "update"]
    assert outbox.pending()[-1].payload == {"payment_status": "completed"}


@pytest.mark.asyncio
async def test_flush_stops_while_remote_is_down(reconciler, remote):
    reconciler.outbox.add(PendingWrite(BOOKINGS_TABLE, "B1", "insert", booking_row("B1")))
    remote.offline = True

    assert await reconciler.flush() == 0
    assert len(reconciler.outbox) == 1


@pytest.mark.asyncio
async def test_loop_ticks_and_releases_subscriptions(reconciler, remote, feed, cache):
    remote.seed(BOOKINGS_TABLE, booking_row("B1"))
    loop = SyncLoop(reconciler, [SyncScope(trainer_id="1")], interval=60)

    async with loop:
        assert loop.running
        assert loop.subscriptions == 2
        assert feed.active == 2
        for _ in range(50):
            if loop.ticks:
                break
            await asyncio.sleep(0.01)
        assert cache.get(BOOKINGS, "B1") is not None

    assert not loop.running
    assert loop.subscriptions == 0
    assert feed.active == 0


@pytest.mark.asyncio
async def test_change_notification_triggers_repull(reconciler, remote, cache):
    loop = SyncLoop(reconciler, [SyncScope(trainer_id="1")], interval=60)

    async with loop:
        for _ in range(50):
            if loop.ticks:
                break
            await asyncio.sleep(0.01)
        ticks = loop.ticks

        # A write by another client lands on the remote and publishes an event.
        await remote.insert(BOOKINGS_TABLE, booking_row("B9"))

        for _ in range(100):
            if cache.get(BOOKINGS, "B9") is not None:
                break
            await asyncio.sleep(0.01)

        assert loop.ticks > ticks
        assert cache.get(BOOKINGS, "B9") is not None


@pytest.mark.asyncio
async def test_loop_without_push_only_polls(reconciler, feed):
    loop = SyncLoop(reconciler, [SyncScope(trainer_id="1")], interval=60, push=False)

    await loop.start()
    try:
        assert loop.subscriptions == 0
        assert feed.active == 0
    finally:
        await loop.stop()


@pytest.mark.asyncio
async def test_tick_flushes_outbox_before_pulling(reconciler, remote, cache):
    reconciler.outbox.add(PendingWrite(BOOKINGS_TABLE, "B1", "insert", booking_row("B1")))
    loop = SyncLoop(reconciler, [SyncScope(trainer_id="1")])

    await loop.tick()

    assert remote.row(BOOKINGS_TABLE, "B1") is not None
    assert cache.get(BOOKINGS, "B1") is not None
    assert len(reconciler.outbox) == 0


@pytest.mark.asyncio
async def test_student_scope_watches_only_its_own_sessions(reconciler, remote, feed):
    remote.seed(SESSIONS_TABLE, session_row("S1"), session_row("S2"))
    remote.seed(BOOKINGS_TABLE, booking_row("B1", student_id="user-1", session_id="S1"))
    loop = SyncLoop(reconciler, [SyncScope(student_id="user-1")], interval=60)

    async with loop:
        for _ in range(50):
            if loop.subscriptions == 2:
                break
            await asyncio.sleep(0.01)
        assert loop.subscriptions == 2
        ticks = loop.ticks

        # Another student's session changing must not wake this viewer.
        await remote.update(SESSIONS_TABLE, "S2", {"status": "active"})
        await asyncio.sleep(0.05)
        assert loop.ticks == ticks

        await remote.update(SESSIONS_TABLE, "S1", {"status": "active"})
        for _ in range(100):
            if loop.ticks > ticks:
                break
            await asyncio.sleep(0.01)
        assert loop.ticks > ticks

    assert feed.active == 0


def test_student_session_filters_follow_booking_links(reconciler, cache):
    reconciler.apply_snapshot(
        [
            booking_row("B1", student_id="user-1", session_id="S1"),
            booking_row("B2", student_id="user-1"),
            booking_row("B3", student_id="user-2", session_id="S9"),
        ],
        [],
    )
    scope = SyncScope(student_id="user-1")

    assert reconciler.session_ids_for(scope) == {"S1"}
    assert scope.session_filters({"S1"})[0].matches({"id": "S1"})
    assert not scope.session_filters({"S1"})[0].matches({"id": "S9"})
