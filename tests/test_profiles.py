"""Tests for avatar profiles and relative timestamps."""
from datetime import datetime, timedelta, timezone

import pytest

from roomchat.profiles import AVATAR_GRADIENTS, ProfileCache, make_profile, time_ago, username_hash


class TestProfiles:

    def test_hash_matches_string_hash(self):
        assert username_hash("") == 0
        assert username_hash("Bob") == 66965
        assert username_hash("a") == 97

    def test_hash_wraps_to_signed_32_bit(self):
        value = username_hash("a much longer user name that overflows")
        assert -2 ** 31 <= value < 2 ** 31

    def test_gradient_from_hash(self):
        assert make_profile("Bob").gradient == "from-red-400 to-rose-400"
        for name in ("Alice", "a much longer user name that overflows", "Zoë"):
            assert make_profile(name).gradient == AVATAR_GRADIENTS[abs(username_hash(name)) % 10]

    @pytest.mark.parametrize("username,initials", [
        ("Alice", "A"),
        ("alice smith", "AS"),
        ("Ada Byron King", "AB"),
        ("bob  builder", "BB"),
    ])
    def test_initials(self, username, initials):
        assert make_profile(username).initials == initials

    def test_cache(self):
        cache = ProfileCache()
        first = cache.get("Alice")
        assert cache.get("Alice") is first
        cache.get("Bob")
        assert len(cache) == 2
        cache.clear()
        assert len(cache) == 0


class TestTimeAgo:
    NOW = datetime(2024, 5, 1, 12, 0, 0)

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(seconds=0), "just now"),
        (timedelta(seconds=59), "just now"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=5, seconds=30), "5 minutes ago"),
        (timedelta(hours=1), "1 hour ago"),
        (timedelta(hours=23, minutes=59), "23 hours ago"),
        (timedelta(days=3), "3 days ago"),
    ])
    def test_relative(self, delta, expected):
        assert time_ago(self.NOW - delta, now=self.NOW) == expected

    def test_future_timestamp(self):
        assert time_ago(self.NOW + timedelta(minutes=5), now=self.NOW) == "just now"

    def test_missing_timestamp(self):
        assert time_ago(None) == ""

    def test_aware_timestamp(self):
        stamp = datetime.now(timezone.utc) - timedelta(hours=2, minutes=1)
        assert time_ago(stamp) == "2 hours ago"
