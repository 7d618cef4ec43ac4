# trainhub/services/cache/redis_store.py
"""
Redis-backed cache.

Key format: {prefix}:{collection}
Value: JSON array of flat records (same shape as the file cache).

Redis has no multi-key read-modify-write here, so the base-class lock
still serializes mutations within one process; one cache key space per
client process is assumed.

Calls are synchronous redis-py round trips made from async handlers, so
each one blocks the event loop for its duration. Keep Redis close to the
API process, or use the memory or file cache when that latency matters.
"""

import json

from redis import Redis

from .base import LocalCache, Record


class RedisCache(LocalCache):
    KEY_PREFIX = "cache:training"

    def __init__(self, redis: Redis, prefix: str | None = None):
        super().__init__()
        self.redis = redis
        self.prefix = prefix or self.KEY_PREFIX

    def _key(self, collection: str) -> str:
        return f"{self.prefix}:{collection}"

    def _load(self, collection: str) -> list[Record]:
        raw = self.redis.get(self._key(collection))
        if not raw:
            return []
        if isinstance(raw, bytes):
            raw = raw.decode()
        return json.loads(raw)

    def _save(self, collection: str, records: list[Record]) -> None:
        self.redis.set(self._key(collection), json.dumps(records))
