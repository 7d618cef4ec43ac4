# trainhub/services/cache/base.py
"""
Cache abstraction.

Each collection is an ordered sequence of flat records (dicts with an
"id" key). Growth is append-only; existing records are only changed by
targeted updates by identity. Implementations only provide whole-collection
load/save; every read-modify-write sequence here runs under one lock so
concurrent list → mutate → save never loses updates.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

BOOKINGS = "bookings"
SESSIONS = "sessions"
STUDENTS = "students"
COLLECTIONS = (BOOKINGS, SESSIONS, STUDENTS)

Record = dict
Predicate = Callable[[Record], bool]


class LocalCache(ABC):
    def __init__(self) -> None:
        self._lock = threading.RLock()

    # ── Storage primitives ──────────────────────────────────────────────

    @abstractmethod
    def _load(self, collection: str) -> list[Record]:
        """Return the whole collection (empty list when missing)."""

    @abstractmethod
    def _save(self, collection: str, records: list[Record]) -> None:
        """Replace the whole collection."""

    def _check(self, collection: str) -> None:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown cache collection: {collection}")

    # ── Read ────────────────────────────────────────────────────────────

    def get(self, collection: str, record_id: str) -> Optional[Record]:
        self._check(collection)
        with self._lock:
            for record in self._load(collection):
                if record.get("id") == record_id:
                    return dict(record)
        return None

    def scan(self, collection: str, predicate: Optional[Predicate] = None) -> list[Record]:
        """All records matching `predicate`, in stored order."""
        self._check(collection)
        with self._lock:
            records = self._load(collection)
        return [dict(r) for r in records if predicate is None or predicate(r)]

    # ── Write ───────────────────────────────────────────────────────────

    def put(self, collection: str, record: Record) -> None:
        """Upsert by id: replace in place, or append when new."""
        self.put_many(collection, [record])

    def put_many(self, collection: str, records: Iterable[Record]) -> None:
        self._check(collection)
        with self._lock:
            stored = self._load(collection)
            index = {r.get("id"): i for i, r in enumerate(stored)}
            for record in records:
                pos = index.get(record["id"])
                if pos is None:
                    index[record["id"]] = len(stored)
                    stored.append(dict(record))
                else:
                    stored[pos] = dict(record)
            self._save(collection, stored)

    def insert_unique(self, collection: str, record: Record, key: str) -> Record:
        """Append `record` unless one with the same `key` value exists; return the stored one."""
        self._check(collection)
        with self._lock:
            stored = self._load(collection)
            for existing in stored:
                if existing.get(key) == record.get(key):
                    return dict(existing)
            stored.append(dict(record))
            self._save(collection, stored)
        return dict(record)

    def update(self, collection: str, record_id: str, changes: Record) -> Optional[Record]:
        """Apply field changes to one record. Returns the new record or None."""
        self._check(collection)
        with self._lock:
            stored = self._load(collection)
            for i, record in enumerate(stored):
                if record.get("id") == record_id:
                    stored[i] = {**record, **changes}
                    self._save(collection, stored)
                    return dict(stored[i])
        return None

    def clear(self) -> None:
        with self._lock:
            for collection in COLLECTIONS:
                self._save(collection, [])
