# trainhub/utils/clock.py

from datetime import datetime, timezone
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a record identity (URL-safe, no separators)."""
    return uuid4().hex
