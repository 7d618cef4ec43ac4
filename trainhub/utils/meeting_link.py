# trainhub/utils/meeting_link.py
"""
Meeting room links for sessions.

The room token keeps ASCII letters and digits and escapes every other
character (including "-") as "-<hex codepoint>-". The mapping is
injective, so two distinct session ids never share a room, and the
result never contains raw spaces or punctuation.
"""

import re

DEFAULT_MEETING_BASE_URL = "https://meet.jit.si"
ROOM_PREFIX = "training-session-"

_SAFE = re.compile(r"[A-Za-z0-9]")


def room_token(session_id: str) -> str:
    return "".join(
        ch if _SAFE.match(ch) else f"-{ord(ch):x}-"
        for ch in session_id
    )


def generate_link(session_id: str, base_url: str = DEFAULT_MEETING_BASE_URL) -> str:
    """Build the meeting URL for a session (deterministic)."""
    return f"{base_url.rstrip('/')}/{ROOM_PREFIX}{room_token(session_id)}"


def extract_room_name(meeting_link: str) -> str:
    """Return the room name (last path segment) of a meeting link, or ""."""
    match = re.search(r"://[^/]+/(.+)$", meeting_link)
    return match.group(1) if match else ""
