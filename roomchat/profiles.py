"""Presentation helpers: user avatars and relative timestamps."""
from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel

AVATAR_GRADIENTS = [
    "from-rose-400 to-pink-400",
    "from-purple-400 to-violet-400",
    "from-blue-400 to-sky-400",
    "from-emerald-400 to-teal-400",
    "from-amber-400 to-orange-400",
    "from-red-400 to-rose-400",
    "from-indigo-400 to-purple-400",
    "from-cyan-400 to-blue-400",
    "from-orange-400 to-red-400",
    "from-green-400 to-emerald-400",
]


class UserProfile(BaseModel):
    """Avatar data derived from a user name."""
    username: str
    initials: str
    gradient: str


def username_hash(username: str) -> int:
    """Signed 32-bit ``hash * 31 + char`` over the UTF-16 code units of a name."""
    data = username.encode("utf-16-le")
    value = 0
    for i in range(0, len(data), 2):
        code = data[i] | (data[i + 1] << 8)
        value = ((value << 5) - value + code) & 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def make_profile(username: str) -> UserProfile:
    gradient = AVATAR_GRADIENTS[abs(username_hash(username)) % len(AVATAR_GRADIENTS)]
    initials = "".join(part[:1].upper() for part in username.split(" "))[:2]
    return UserProfile(
        username=username,
        initials=initials or username[:1].upper(),
        gradient=gradient,
    )


class ProfileCache:
    """Profiles per user name, computed once per cache instance."""

    def __init__(self):
        self._profiles: Dict[str, UserProfile] = {}

    def get(self, username: str) -> UserProfile:
        profile = self._profiles.get(username)
        if profile is None:
            profile = self._profiles[username] = make_profile(username)
        return profile

    def clear(self) -> None:
        self._profiles.clear()

    def __len__(self) -> int:
        return len(self._profiles)


def time_ago(timestamp: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format a timestamp relative to ``now`` ("just now", "5 minutes ago", ...).

    Naive timestamps are compared with naive local time, aware ones with UTC.
    """
    if timestamp is None:
        return ""
    if now is None:
        now = datetime.now(timezone.utc) if timestamp.tzinfo else datetime.now()
    seconds = max(0, int((now - timestamp).total_seconds()))

    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"
