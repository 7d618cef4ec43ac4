# trainhub/services/cache/__init__.py
"""
Local cache: a process/device-local mirror of bookings, sessions and
students, used as the offline-tolerant fast read path.
"""

from .base import BOOKINGS, COLLECTIONS, SESSIONS, STUDENTS, LocalCache
from .file_store import FileCache
from .memory import MemoryCache
from .redis_store import RedisCache

__all__ = [
    "BOOKINGS",
    "COLLECTIONS",
    "SESSIONS",
    "STUDENTS",
    "FileCache",
    "LocalCache",
    "MemoryCache",
    "RedisCache",
]
