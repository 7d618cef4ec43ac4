# tests/fakes.py
"""In-memory remote store with failure injection for engine tests."""

import asyncio
import copy
from collections import defaultdict
from datetime import timedelta
from typing import Optional

from trainhub.exceptions import RemoteUnavailableError
from trainhub.schemas.common import format_timestamp
from trainhub.services.remote import ChangeEvent, RemoteStore
from trainhub.services.remote.base import matches_all
from trainhub.utils.clock import utc_now


class FakeRemoteStore(RemoteStore):
    """
    Every call yields to the event loop once before touching state, then
    checks and writes without another await, so a conditional update or a
    claim is atomic the way a single SQL statement is.
    """

    def __init__(self, feed=None):
        self.feed = feed
        self.tables: dict[str, dict[str, dict]] = defaultdict(dict)
        self.offline = False
        self.fail_next: dict[str, int] = {}
        self.fail_ids: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, table: str, record_id: Optional[str] = None) -> None:
        self.calls.append((op, table))
        if self.offline:
            raise RemoteUnavailableError(f"{op} {table}: offline")
        if self.fail_next.get(op):
            self.fail_next[op] -= 1
            raise RemoteUnavailableError(f"{op} {table}: injected failure")
        if record_id is not None and record_id in self.fail_ids:
            raise RemoteUnavailableError(f"{op} {table}/{record_id}: injected failure")

    async def _publish(self, table: str, kind: str, row: dict) -> None:
        if self.feed is not None:
            await self.feed.publish(ChangeEvent(table=table, type=kind, record=row))

    def seed(self, table: str, *rows: dict) -> None:
        for row in rows:
            self.tables[table][row["id"]] = copy.deepcopy(row)

    def row(self, table: str, record_id: str) -> Optional[dict]:
        row = self.tables[table].get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def insert(self, table, record):
        await asyncio.sleep(0)
        self._check("insert", table, record["id"])
        rows = self.tables[table]
        if record["id"] in rows:
            return copy.deepcopy(rows[record["id"]])
        rows[record["id"]] = copy.deepcopy(record)
        await self._publish(table, "insert", record)
        return copy.deepcopy(record)

    async def update(self, table, record_id, changes, expect=None):
        await asyncio.sleep(0)
        self._check("update", table, record_id)
        row = self.tables[table].get(record_id)
        if row is None or not matches_all(row, expect or ()):
            return None
        row.update(copy.deepcopy(changes))
        await self._publish(table, "update", row)
        return copy.deepcopy(row)

    async def claim(self, table, record_ids, changes, expect=()):
        await asyncio.sleep(0)
        ids = list(dict.fromkeys(record_ids))
        self._check("claim", table)
        for record_id in ids:
            if record_id in self.fail_ids:
                raise RemoteUnavailableError(f"claim {table}/{record_id}: injected failure")
        rows = self.tables[table]
        if any(i not in rows or not matches_all(rows[i], expect) for i in ids):
            return None
        for record_id in ids:
            rows[record_id].update(copy.deepcopy(changes))
        for record_id in ids:
            await self._publish(table, "update", rows[record_id])
        return [copy.deepcopy(rows[i]) for i in ids]

    async def select(self, table, filters=(), order_by=None, descending=False):
        await asyncio.sleep(0)
        self._check("select", table)
        rows = [copy.deepcopy(r) for r in self.tables[table].values() if matches_all(r, filters)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        return rows


BASE_TIME = utc_now() - timedelta(days=1)


def booking_row(
    booking_id: str,
    trainer_id: str = "1",
    payment_status: str = "completed",
    order: int = 0,
    session_id: Optional[str] = None,
    student_id: Optional[str] = None,
    **extra,
) -> dict:
    """A remote bookings row; `order` spaces created_at one second apart."""
    row = {
        "id": booking_id,
        "trainer_id": trainer_id,
        "student_id": student_id or f"user-{booking_id}",
        "student_name": f"Student {booking_id}",
        "student_email": f"{booking_id.lower()}@example.com",
        "message": None,
        "created_at": format_timestamp(BASE_TIME + timedelta(seconds=order)),
        "payment_status": payment_status,
        "session_id": session_id,
        "checkout_session_id": None,
    }
    row.update(extra)
    return row


def session_row(session_id: str, trainer_id: str = "1", status: str = "scheduled", **extra) -> dict:
    row = {
        "id": session_id,
        "trainer_id": trainer_id,
        "trainer_name": "Sarah Johnson",
        "title": "Group session",
        "description": "Practice",
        "scheduled_at": format_timestamp(utc_now() + timedelta(days=2)),
        "duration": 60,
        "meeting_link": f"https://meet.jit.si/training-session-{session_id}",
        "student_ids": [],
        "status": status,
        "min_students": 1,
        "max_students": 10,
        "created_at": format_timestamp(BASE_TIME),
    }
    row.update(extra)
    return row
