"""Tests for display name resolution."""

import asyncio

import pytest

from nippo_feed.engine.names import DisplayNameResolver, name_from_profile
from nippo_feed.store.local import profile_key


@pytest.fixture
def resolver(profiles, local):
    return DisplayNameResolver(profiles, local, own_identity="u-me", placeholder="User")


class TestNameFromProfile:
    def test_priority(self):
        assert name_from_profile({"profileData": {"fullName": "Full"}, "displayName": "D"}) == "Full"
        assert name_from_profile({"displayName": "D", "username": "u"}) == "D"
        assert name_from_profile({"username": "u", "email": "e@x.com"}) == "u"
        assert name_from_profile({"email": "e@x.com"}) == "e"

    def test_blank_fields_skipped(self):
        assert name_from_profile({"displayName": "  ", "username": "u"}) == "u"
        assert name_from_profile({"email": "no-at-sign"}) is None
        assert name_from_profile(None) is None


class TestResolve:
    def test_remote_then_cached(self, resolver, profiles):
        assert asyncio.run(resolver.resolve("u-alice")) == "Alice"
        assert asyncio.run(resolver.resolve("u-alice")) == "Alice"
        assert profiles.calls == ["u-alice"]

    def test_email_prefix(self, resolver):
        assert asyncio.run(resolver.resolve("u-carol")) == "carol"

    def test_missing_profile_is_placeholder_and_cached(self, resolver, profiles):
        assert asyncio.run(resolver.resolve("u-ghost")) == "User"
        asyncio.run(resolver.resolve("u-ghost"))
        assert profiles.calls == ["u-ghost"]

    def test_transient_failure_not_cached(self, resolver, profiles):
        profiles.failing.add("u-alice")
        assert asyncio.run(resolver.resolve("u-alice")) == "User"
        profiles.failing.clear()
        assert asyncio.run(resolver.resolve("u-alice")) == "Alice"

    def test_empty_identity(self, resolver, profiles):
        assert asyncio.run(resolver.resolve(None)) == "User"
        assert asyncio.run(resolver.resolve("")) == "User"
        assert profiles.calls == []

    def test_own_profile_falls_back_to_local(self, resolver, profiles, local):
        local.set(profile_key("u-me"), {"displayName": "Me (saved)"})
        profiles.failing.add("u-me")
        assert asyncio.run(resolver.resolve("u-me")) == "Me (saved)"

    def test_local_fallback_only_for_own_identity(self, resolver, profiles, local):
        local.set(profile_key("u-other"), {"displayName": "Someone"})
        profiles.failing.add("u-other")
        assert asyncio.run(resolver.resolve("u-other")) == "User"

    def test_own_profile_saved_locally(self, resolver, profiles, local):
        profiles.profiles["u-me"] = {"displayName": "Me"}
        asyncio.run(resolver.resolve("u-me"))
        assert local.get(profile_key("u-me")) == {"displayName": "Me"}

    def test_clear(self, resolver, profiles):
        asyncio.run(resolver.resolve("u-alice"))
        resolver.clear()
        asyncio.run(resolver.resolve("u-alice"))
        assert profiles.calls == ["u-alice", "u-alice"]


class TestResolveBatch:
    def test_only_uncached_are_looked_up(self, resolver, profiles):
        asyncio.run(resolver.resolve("u-alice"))
        profiles.calls.clear()

        names = asyncio.run(resolver.resolve_batch(["u-alice", "u-bob"]))

        assert names == {"u-alice": "Alice", "u-bob": "bob"}
        assert profiles.calls == ["u-bob"]

    def test_duplicates_and_blanks(self, resolver, profiles):
        names = asyncio.run(resolver.resolve_batch(["u-bob", None, "u-bob", ""]))
        assert names == {"u-bob": "bob"}
        assert profiles.calls == ["u-bob"]

    def test_partial_failure(self, resolver, profiles):
        profiles.failing.add("u-bob")
        names = asyncio.run(resolver.resolve_batch(["u-alice", "u-bob"]))
        assert names == {"u-alice": "Alice", "u-bob": "User"}

    def test_slow_lookup_times_out(self, profiles, local):
        class SlowProfiles:
            async def get_profile(self, identity):
                await asyncio.sleep(1)
                return {"displayName": "late"}

        resolver = DisplayNameResolver(SlowProfiles(), local, lookup_timeout_s=0.05)
        assert asyncio.run(resolver.resolve_batch(["u-x"])) == {"u-x": "User"}
        assert resolver.cached("u-x") is None
