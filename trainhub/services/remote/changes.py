# trainhub/services/remote/changes.py
"""
Change notification feeds.

A feed delivers insert/update/delete events for one table, filtered per
subscription by row-level predicates. Each subscription owns a queue and a
pump task that hands events to its handler one at a time; close() stops
the pump and releases the underlying channel.

Delivery is at-least-once and unordered across publishers: consumers must
treat events as hints (re-pull), never as authoritative payloads.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Sequence

import redis.asyncio as aioredis

from .base import Filter, matches_all

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str  # insert | update | delete
    record: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(table=data["table"], type=data["type"], record=data.get("record") or {})


Handler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    def __init__(self, table: str, filters: Sequence[Filter], handler: Handler):
        self.table = table
        self.filters = tuple(filters)
        self.handler = handler
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task = asyncio.create_task(self._pump())
        self._releasers: list[Callable[[], Awaitable[None]]] = []

    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and matches_all(event.record, self.filters)

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed and self.matches(event):
            self._queue.put_nowait(event)

    def on_close(self, releaser: Callable[[], Awaitable[None]]) -> None:
        self._releasers.append(releaser)

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Change handler failed for {self.table} event")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        for release in self._releasers:
            try:
                await release()
            except Exception:
                logger.exception(f"Failed to release {self.table} subscription")


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        ...

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        filters: Sequence[Filter],
        handler: Handler,
    ) -> Subscription:
        ...

    async def aclose(self) -> None:
        return None


class LocalChangeFeed(ChangeFeed):
    """In-process feed (single server process, tests)."""

    def __init__(self) -> None:
        self._subscriptions: set[Subscription] = set()

    @property
    def active(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            sub.deliver(event)

    async def subscribe(self, table, filters, handler) -> Subscription:
        sub = Subscription(table, filters, handler)
        self._subscriptions.add(sub)

        async def _release() -> None:
            self._subscriptions.discard(sub)

        sub.on_close(_release)
        return sub


class RedisChangeFeed(ChangeFeed):
    """
    Redis pub/sub feed.

    Channel format: changes:{table}
    Message: ChangeEvent JSON.
    """

    CHANNEL_PREFIX = "changes"

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._publisher: aioredis.Redis | None = None

    def _channel(self, table: str) -> str:
        return f"{self.CHANNEL_PREFIX}:{table}"

    async def publish(self, event: ChangeEvent) -> None:
        if self._publisher is None:
            self._publisher = aioredis.from_url(self.redis_url, decode_responses=True)
        await self._publisher.publish(self._channel(event.table), event.to_json())

    async def subscribe(self, table, filters, handler) -> Subscription:
        r = aioredis.from_url(self.redis_url, decode_responses=True)
        pubsub = r.pubsub()
        channel = self._channel(table)
        await pubsub.subscribe(channel)

        sub = Subscription(table, filters, handler)
        reader = asyncio.create_task(self._read(pubsub, sub))

        async def _release() -> None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            await r.aclose()

        sub.on_close(_release)
        logger.info(f"Subscribed to {channel}")
        return sub

    async def _read(self, pubsub, sub: Subscription) -> None:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                event = ChangeEvent.from_json(message["data"])
            except (json.JSONDecodeError, KeyError):
                logger.error(f"Invalid change event on {sub.table}: {message.get('data')!r}")
                continue
            sub.deliver(event)

    async def aclose(self) -> None:
        if self._publisher is not None:
            await self._publisher.aclose()
            self._publisher = None
