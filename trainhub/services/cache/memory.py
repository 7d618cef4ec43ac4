# trainhub/services/cache/memory.py

import copy

from .base import COLLECTIONS, LocalCache, Record


class MemoryCache(LocalCache):
    """In-process cache (tests, ephemeral clients)."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, list[Record]] = {c: [] for c in COLLECTIONS}

    def _load(self, collection: str) -> list[Record]:
        return copy.deepcopy(self._data[collection])

    def _save(self, collection: str, records: list[Record]) -> None:
        self._data[collection] = copy.deepcopy(records)
