"""Display name resolution for author identities.

Lookup order, first hit wins:

1. names already resolved in this session
2. the remote profile store
3. for the signed-in user only, the profile last saved on this device
4. a generic placeholder

Batch resolution fetches only identities not yet cached, concurrently and
with a timeout per lookup. Concurrent batches are not coalesced, so two
overlapping batches may look the same identity up twice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional

from nippo_feed.errors import ProfileNotFoundError, TransientFetchError
from nippo_feed.store.local import LocalStore, profile_key
from nippo_feed.store.remote import ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = "User"
MAX_CONCURRENT_LOOKUPS = 8


def name_from_profile(profile: Mapping[str, Any] | None) -> Optional[str]:
    """Best display name a profile offers, or None."""
    if not profile:
        return None
    nested = profile.get("profileData")
    if isinstance(nested, Mapping):
        full_name = nested.get("fullName")
        if isinstance(full_name, str) and full_name.strip():
            return full_name.strip()
    for key in ("fullName", "displayName", "username"):
        value = profile.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    email = profile.get("email")
    if isinstance(email, str) and "@" in email:
        local_part = email.split("@", 1)[0].strip()
        if local_part:
            return local_part
    return None


class DisplayNameResolver:
    """Resolves identities to names, caching for the life of the session."""

    def __init__(
        self,
        profiles: ProfileStore,
        local: LocalStore | None = None,
        own_identity: str | None = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
        lookup_timeout_s: float = 10.0,
        max_concurrent: int = MAX_CONCURRENT_LOOKUPS,
    ):
        self._profiles = profiles
        self._local = local
        self.own_identity = own_identity
        self.placeholder = placeholder
        self.lookup_timeout_s = lookup_timeout_s
        self.max_concurrent = max_concurrent
        self._names: dict[str, str] = {}

    def cached(self, identity: str) -> Optional[str]:
        return self._names.get(identity)

    def clear(self):
        self._names = {}

    def _local_own_name(self, identity: str) -> Optional[str]:
        if self._local is None or identity != self.own_identity:
            return None
        return name_from_profile(self._local.get(profile_key(identity)))

    async def _fetch_name(self, identity: str) -> str:
        """Remote lookup. Raises ProfileNotFoundError or TransientFetchError."""
        try:
            profile = await asyncio.wait_for(
                self._profiles.get_profile(identity), timeout=self.lookup_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise TransientFetchError(f"profile lookup for {identity} timed out") from exc

        name = name_from_profile(profile)
        if name is None:
            raise ProfileNotFoundError(identity)
        if identity == self.own_identity and self._local is not None:
            self._local.set(profile_key(identity), dict(profile))
        return name

    async def _lookup(self, identity: str) -> tuple[str, bool]:
        """(name, cacheable). Never raises."""
        try:
            return await self._fetch_name(identity), True
        except ProfileNotFoundError:
            local_name = self._local_own_name(identity)
            if local_name:
                return local_name, True
            logger.debug("No profile for %s, using placeholder", identity)
            return self.placeholder, True
        except (TransientFetchError, asyncio.TimeoutError) as exc:
            logger.warning("Profile lookup failed for %s: %s", identity, exc)
        except Exception as exc:
            logger.warning("Unexpected error resolving %s: %s", identity, exc)

        local_name = self._local_own_name(identity)
        if local_name:
            return local_name, False
        return self.placeholder, False

    async def resolve(self, identity: str | None) -> str:
        if not identity:
            return self.placeholder
        if identity in self._names:
            return self._names[identity]
        name, cacheable = await self._lookup(identity)
        if cacheable:
            self._names[identity] = name
        return name

    async def resolve_batch(self, identities: Iterable[str | None]) -> dict[str, str]:
        """Resolve many identities, fetching only the ones not cached yet."""
        wanted = list(dict.fromkeys(i for i in identities if i))
        uncached = [i for i in wanted if i not in self._names]

        fetched: dict[str, str] = {}
        if uncached:
            semaphore = asyncio.Semaphore(self.max_concurrent)

            async def _one(identity: str) -> tuple[str, str, bool]:
                async with semaphore:
                    name, cacheable = await self._lookup(identity)
                return identity, name, cacheable

            results = await asyncio.gather(*(_one(i) for i in uncached), return_exceptions=True)
            for identity, result in zip(uncached, results):
                if isinstance(result, BaseException):
                    logger.warning("Name lookup for %s raised: %s", identity, result)
                    fetched[identity] = self.placeholder
                    continue
                _, name, cacheable = result
                fetched[identity] = name
                if cacheable:
                    self._names[identity] = name
            logger.debug("Resolved %d names (%d from cache)", len(wanted), len(wanted) - len(uncached))

        return {i: self._names.get(i) or fetched.get(i) or self.placeholder for i in wanted}
