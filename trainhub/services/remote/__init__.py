# trainhub/services/remote/__init__.py

from .base import (
    BOOKINGS_TABLE,
    ENROLLMENTS_TABLE,
    SESSIONS_TABLE,
    Filter,
    RemoteStore,
    eq,
    in_,
    is_null,
)
from .changes import ChangeEvent, ChangeFeed, LocalChangeFeed, RedisChangeFeed, Subscription
from .http_store import HttpRemoteStore
from .sql_store import SqlRemoteStore

__all__ = [
    "BOOKINGS_TABLE",
    "ENROLLMENTS_TABLE",
    "SESSIONS_TABLE",
    "ChangeEvent",
    "ChangeFeed",
    "Filter",
    "HttpRemoteStore",
    "LocalChangeFeed",
    "RedisChangeFeed",
    "RemoteStore",
    "SqlRemoteStore",
    "Subscription",
    "eq",
    "in_",
    "is_null",
]
