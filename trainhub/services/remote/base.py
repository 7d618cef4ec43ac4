# trainhub/services/remote/base.py
"""
Remote store gateway contract.

Typed request/response operations against the remote relational store
(the source of truth once a write has round-tripped):

- insert(table, record)          idempotent on record["id"]
- update(table, id, changes, expect=[...])
                                 compare-and-set: applied only when every
                                 `expect` filter still holds on the row
- claim(table, ids, changes, expect=[...])
                                 all-or-nothing compare-and-set over several
                                 rows: every row is updated or none is
- select(table, filters, order)  query by filter
- subscribe(table, filters, cb)  change notifications (needs a feed)

Every call is an I/O boundary with a bounded timeout. Timeouts and
transport failures raise RemoteUnavailableError: the outcome is unknown
and the write must be retried with the same identity.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

BOOKINGS_TABLE = "bookings"
SESSIONS_TABLE = "sessions"
ENROLLMENTS_TABLE = "session_enrollments"


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class Filter:
    field: str
    op: str  # eq | is_null | in
    value: Any = None

    def matches(self, record: dict) -> bool:
        current = record.get(self.field)
        if self.op == "eq":
            return current == self.value
        if self.op == "is_null":
            return current is None
        if self.op == "in":
            return current in self.value
        raise ValueError(f"Unknown filter op: {self.op}")


def eq(field: str, value: Any) -> Filter:
    return Filter(field, "eq", _plain(value))


def is_null(field: str) -> Filter:
    return Filter(field, "is_null")


def in_(field: str, values: Iterable[Any]) -> Filter:
    return Filter(field, "in", tuple(_plain(v) for v in values))


def matches_all(record: dict, filters: Iterable[Filter]) -> bool:
    return all(f.matches(record) for f in filters)


class RemoteStore(ABC):
    feed = None  # Optional[ChangeFeed]

    @abstractmethod
    async def insert(self, table: str, record: dict) -> dict:
        """Insert a row. A duplicate id returns the already stored row."""

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        changes: dict,
        expect: Optional[Sequence[Filter]] = None,
    ) -> Optional[dict]:
        """
        Update one row by id.

        Returns the updated row, or None when the row does not exist or
        one of the `expect` predicates no longer holds.
        """

    @abstractmethod
    async def claim(
        self,
        table: str,
        record_ids: Sequence[str],
        changes: dict,
        expect: Sequence[Filter] = (),
    ) -> Optional[list[dict]]:
        """
        Apply `changes` to every row in `record_ids` as one unit.

        Returns the updated rows in `record_ids` order, or None when any
        row is missing or fails an `expect` predicate; in that case no row
        is changed.
        """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        """Rows matching every filter."""

    async def get(self, table: str, record_id: str) -> Optional[dict]:
        rows = await self.select(table, [eq("id", record_id)])
        return rows[0] if rows else None

    async def subscribe(self, table: str, filters: Sequence[Filter], handler):
        """Subscribe to change events for rows matching `filters`."""
        if self.feed is None:
            raise RuntimeError("Remote store has no change feed configured")
        return await self.feed.subscribe(table, filters, handler)

    async def aclose(self) -> None:
        return None
