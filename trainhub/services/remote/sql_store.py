# trainhub/services/remote/sql_store.py
"""
Remote store over a relational database (SQLAlchemy).

Synchronous DB work runs in worker threads (asyncio.to_thread) bounded by
asyncio.wait_for. On timeout the thread may still finish: the write is
"failed-unknown", and retries stay safe because inserts are idempotent on
id and assignments are conditional.

Conditional updates compile to one statement:
    UPDATE t SET ... WHERE id = :id AND <expect...>
so the check and the write cannot be separated by another writer.

A claim is one UPDATE over `id IN (...)` inside a transaction that is
rolled back unless every listed row matched.
"""

import asyncio
import logging
from typing import Optional, Sequence

from sqlalchemy import Table, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from ...database import create_session_factory
from ...exceptions import RemoteRejectedError, RemoteUnavailableError
from ...models.tables import metadata
from .base import Filter, RemoteStore
from .changes import ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)


class SqlRemoteStore(RemoteStore):
    def __init__(
        self,
        engine: Engine,
        feed: Optional[ChangeFeed] = None,
        timeout: float = 10.0,
    ):
        self.engine = engine
        self.SessionLocal = create_session_factory(engine)
        self.feed = feed
        self.timeout = timeout

    # ── Helpers ──────────────────────────────────────────────────────────

    def _table(self, name: str) -> Table:
        table = metadata.tables.get(name)
        if table is None:
            raise RemoteRejectedError(f"Unknown table: {name}")
        return table

    @staticmethod
    def _clause(table: Table, f: Filter):
        column = table.c[f.field]
        if f.op == "eq":
            return column == f.value
        if f.op == "is_null":
            return column.is_(None)
        if f.op == "in":
            return column.in_(f.value)
        raise ValueError(f"Unknown filter op: {f.op}")

    async def _run(self, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)
        except asyncio.TimeoutError as e:
            raise RemoteUnavailableError(f"Remote store call timed out after {self.timeout}s") from e
        except OperationalError as e:
            raise RemoteUnavailableError(f"Remote store unavailable: {e.orig}") from e
        except SQLAlchemyError as e:
            raise RemoteRejectedError(f"Remote store rejected request: {e}") from e

    async def _publish(self, table: str, event_type: str, row: dict) -> None:
        if self.feed is None:
            return
        try:
            await self.feed.publish(ChangeEvent(table=table, type=event_type, record=row))
        except Exception:
            logger.exception(f"Failed to publish {event_type} event for {table}")

    # ── Sync implementations (worker thread) ────────────────────────────

    def _insert_sync(self, table_name: str, record: dict) -> tuple[dict, bool]:
        table = self._table(table_name)
        values = {k: v for k, v in record.items() if k in table.c}
        db = self.SessionLocal()
        try:
            try:
                db.execute(insert(table).values(**values))
                db.commit()
                created = True
            except IntegrityError:
                db.rollback()
                created = False

            row = db.execute(
                select(table).where(table.c.id == record["id"])
            ).mappings().first()
        finally:
            db.close()

        if row is None:
            # Integrity failure that is not a duplicate id.
            raise RemoteRejectedError(
                f"Insert into {table_name} rejected",
                details={"id": record["id"]},
            )
        return dict(row), created

    def _update_sync(
        self,
        table_name: str,
        record_id: str,
        changes: dict,
        expect: Sequence[Filter],
    ) -> Optional[dict]:
        table = self._table(table_name)
        stmt = (
            update(table)
            .where(table.c.id == record_id, *[self._clause(table, f) for f in expect])
            .values(**changes)
        )
        db = self.SessionLocal()
        try:
            result = db.execute(stmt)
            db.commit()
            if result.rowcount == 0:
                return None
            row = db.execute(
                select(table).where(table.c.id == record_id)
            ).mappings().first()
            return dict(row) if row else None
        finally:
            db.close()

    def _claim_sync(
        self,
        table_name: str,
        record_ids: list[str],
        changes: dict,
        expect: Sequence[Filter],
    ) -> Optional[list[dict]]:
        table = self._table(table_name)
        stmt = (
            update(table)
            .where(table.c.id.in_(record_ids), *[self._clause(table, f) for f in expect])
            .values(**changes)
        )
        db = self.SessionLocal()
        try:
            result = db.execute(stmt)
            if result.rowcount != len(record_ids):
                db.rollback()
                return None
            db.commit()
            rows = db.execute(
                select(table).where(table.c.id.in_(record_ids))
            ).mappings().all()
            by_id = {row["id"]: dict(row) for row in rows}
            return [by_id[i] for i in record_ids]
        finally:
            db.close()

    def _select_sync(
        self,
        table_name: str,
        filters: Sequence[Filter],
        order_by: Optional[str],
        descending: bool,
    ) -> list[dict]:
        table = self._table(table_name)
        stmt = select(table).where(*[self._clause(table, f) for f in filters])
        if order_by:
            column = table.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        db = self.SessionLocal()
        try:
            return [dict(row) for row in db.execute(stmt).mappings().all()]
        finally:
            db.close()

    # ── RemoteStore API ─────────────────────────────────────────────────

    async def insert(self, table: str, record: dict) -> dict:
        row, created = await self._run(self._insert_sync, table, record)
        if created:
            await self._publish(table, "insert", row)
        return row

    async def update(self, table, record_id, changes, expect=None) -> Optional[dict]:
        row = await self._run(self._update_sync, table, record_id, changes, list(expect or ()))
        if row is not None:
            await self._publish(table, "update", row)
        return row

    async def claim(self, table, record_ids, changes, expect=()) -> Optional[list[dict]]:
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return []
        rows = await self._run(self._claim_sync, table, ids, changes, list(expect))
        for row in rows or ():
            await self._publish(table, "update", row)
        return rows

    async def select(self, table, filters=(), order_by=None, descending=False) -> list[dict]:
        return await self._run(self._select_sync, table, list(filters), order_by, descending)

    async def aclose(self) -> None:
        self.engine.dispose()
