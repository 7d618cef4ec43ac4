# tests/test_sql_store.py

import asyncio
import time

import pytest

from trainhub.database import create_db_engine, init_db
from trainhub.exceptions import RemoteRejectedError, RemoteUnavailableError
from trainhub.services.remote import (
    BOOKINGS_TABLE,
    SESSIONS_TABLE,
    LocalChangeFeed,
    SqlRemoteStore,
    eq,
    in_,
    is_null,
)

from .fakes import booking_row, session_row


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'remote.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlRemoteStore(engine, feed=LocalChangeFeed())


@pytest.mark.asyncio
async def test_insert_is_idempotent_on_id(store):
    first = await store.insert(BOOKINGS_TABLE, booking_row("B1"))
    again = await store.insert(BOOKINGS_TABLE, booking_row("B1", student_name="Someone else"))

    assert again == first
    assert again["student_name"] == "Student B1"
    assert len(await store.select(BOOKINGS_TABLE)) == 1


@pytest.mark.asyncio
async def test_conditional_update_applies_once(store):
    await store.insert(SESSIONS_TABLE, session_row("S1"))
    await store.insert(SESSIONS_TABLE, session_row("S2"))
    await store.insert(BOOKINGS_TABLE, booking_row("B1"))
    expect = [is_null("session_id"), eq("payment_status", "completed")]

    won = await store.update(BOOKINGS_TABLE, "B1", {"session_id": "S1"}, expect=expect)
    lost = await store.update(BOOKINGS_TABLE, "B1", {"session_id": "S2"}, expect=expect)

    assert won["session_id"] == "S1"
    assert lost is None
    assert (await store.get(BOOKINGS_TABLE, "B1"))["session_id"] == "S1"


@pytest.mark.asyncio
async def test_update_missing_row_returns_none(store):
    assert await store.update(BOOKINGS_TABLE, "missing", {"payment_status": "failed"}) is None


@pytest.mark.asyncio
async def test_select_filters_and_order(store):
    await store.insert(SESSIONS_TABLE, session_row("S1"))
    for i, row in enumerate(
        [
            booking_row("B3", order=3),
            booking_row("B1", order=1),
            booking_row("B2", order=2, payment_status="pending"),
            booking_row("B4", order=4, session_id="S1"),
        ]
    ):
        await store.insert(BOOKINGS_TABLE, row)

    pool = await store.select(
        BOOKINGS_TABLE,
        [eq("trainer_id", "1"), eq("payment_status", "completed"), is_null("session_id")],
        order_by="created_at",
    )
    newest = await store.select(BOOKINGS_TABLE, [in_("id", ["B1", "B4"])], order_by="created_at", descending=True)

    assert [r["id"] for r in pool] == ["B1", "B3"]
    assert [r["id"] for r in newest] == ["B4", "B1"]


@pytest.mark.asyncio
async def test_session_student_ids_round_trip(store):
    await store.insert(SESSIONS_TABLE, session_row("S1", student_ids=["B1", "B2"]))

    row = await store.get(SESSIONS_TABLE, "S1")

    assert row["student_ids"] == ["B1", "B2"]


@pytest.mark.asyncio
async def test_foreign_key_violation_is_rejected(store):
    with pytest.raises(RemoteRejectedError):
        await store.insert(BOOKINGS_TABLE, booking_row("B1", session_id="no-such-session"))


@pytest.mark.asyncio
async def test_unknown_table_is_rejected(store):
    with pytest.raises(RemoteRejectedError):
        await store.select("payments")


@pytest.mark.asyncio
async def test_slow_call_times_out(engine, monkeypatch):
    store = SqlRemoteStore(engine, timeout=0.01)

    def _slow(*args):
        time.sleep(0.2)
        return []

    monkeypatch.setattr(store, "_select_sync", _slow)

    with pytest.raises(RemoteUnavailableError):
        await store.select(BOOKINGS_TABLE)


@pytest.mark.asyncio
async def test_writes_publish_change_events(store):
    seen = []

    async def handler(event):
        seen.append((event.table, event.type, event.record["id"]))

    sub = await store.subscribe(BOOKINGS_TABLE, [eq("trainer_id", "1")], handler)
    try:
        await store.insert(BOOKINGS_TABLE, booking_row("B1"))
        await store.insert(BOOKINGS_TABLE, booking_row("X1", trainer_id="2"))
        await store.update(BOOKINGS_TABLE, "B1", {"payment_status": "failed"})
        for _ in range(50):
            if len(seen) >= 2:
                break
            await asyncio.sleep(0.01)
    finally:
        await sub.close()

    assert seen == [("bookings", "insert", "B1"), ("bookings", "update", "B1")]


@pytest.mark.asyncio
async def test_claim_is_all_or_nothing(store):
    await store.insert(SESSIONS_TABLE, session_row("S1"))
    await store.insert(SESSIONS_TABLE, session_row("S2"))
    for booking_id in ("B1", "B2", "B3"):
        await store.insert(BOOKINGS_TABLE, booking_row(booking_id))
    await store.update(BOOKINGS_TABLE, "B2", {"session_id": "S2"})
    expect = [is_null("session_id"), eq("payment_status", "completed")]

    rejected = await store.claim(BOOKINGS_TABLE, ["B1", "B2", "B3"], {"session_id": "S1"}, expect=expect)

    assert rejected is None
    assert (await store.get(BOOKINGS_TABLE, "B1"))["session_id"] is None
    assert (await store.get(BOOKINGS_TABLE, "B3"))["session_id"] is None

    rows = await store.claim(BOOKINGS_TABLE, ["B3", "B1"], {"session_id": "S1"}, expect=expect)

    assert [r["id"] for r in rows] == ["B3", "B1"]
    assert {r["session_id"] for r in rows} == {"S1"}
