# trainhub/services/cache/file_store.py
"""
Device-local durable cache: one JSON array file per collection.

Files are replaced atomically (write to a temp file, then os.replace)
so a crash never leaves a half-written collection.
"""

import json
import logging
import os
from pathlib import Path

from .base import LocalCache, Record

logger = logging.getLogger(__name__)


class FileCache(LocalCache):
    def __init__(self, directory: Path | str):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, collection: str) -> Path:
        return self.directory / f"training_{collection}.json"

    def _load(self, collection: str) -> list[Record]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error(f"Corrupt cache file {path}, starting empty")
            return []
        return data if isinstance(data, list) else []

    def _save(self, collection: str, records: list[Record]) -> None:
        path = self._path(collection)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(records), encoding="utf-8")
        os.replace(tmp, path)
