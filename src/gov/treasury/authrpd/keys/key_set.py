"""Public key set (JWKS) publication.

The published set holds the current period's public key plus those of the
``window_periods`` preceding periods, so tokens signed just before a monthly
rotation keep verifying until they expire. Key material changes at most
monthly, so the document is cached for about an hour.
"""

import logging
from typing import Any, Dict, List, Optional

from jwcrypto import jwk

from gov.treasury.authrpd.cache import CacheAside
from gov.treasury.authrpd.errors import KeyNotFound
from gov.treasury.authrpd.keys.periods import Clock, period_id, rolling_window, utcnow
from gov.treasury.authrpd.keys.store import KeyStore

logger = logging.getLogger(__name__)

KeySet = Dict[str, List[Dict[str, Any]]]


class KeySetBuilder:
    def __init__(
        self,
        key_store: KeyStore,
        cache: Optional[CacheAside] = None,
        window_periods: int = 2,
        cache_ttl: int = 3600,
        clock: Clock = utcnow,
    ) -> None:
        self.key_store = key_store
        self.cache = cache
        self.window_periods = window_periods
        self.cache_ttl = cache_ttl
        self.clock = clock

    def window(self) -> List[str]:
        return rolling_window(period_id(self.clock()), self.window_periods)

    async def build_key_set(self) -> KeySet:
        """
        Return ``{"keys": [...]}`` for the exposed rotation window.

        The cache key includes the current period, so the first request after a
        month boundary always builds a fresh set.
        """
        window = self.window()
        if self.cache is None:
            return await self._generate(window)
        return await self.cache.fetch(
            f"jwks:json:{window[0]}", lambda: self._generate(window), self.cache_ttl
        )

    async def find_key(self, kid: Optional[str]) -> jwk.JWK:
        """
        Return the public key published under ``kid``.

        Raises:
            KeyNotFound: ``kid`` is absent or outside the rotation window
        """
        if kid is None:
            raise KeyNotFound(kid)

        window = self.window()
        if kid not in window:
            raise KeyNotFound(kid)

        entry = self._select(await self.build_key_set(), kid)
        if entry is None and self.cache is not None:
            # The cached set may predate this period's key generation.
            key_set = await self._generate(window)
            await self.cache.set(f"jwks:json:{window[0]}", key_set, self.cache_ttl)
            entry = self._select(key_set, kid)

        if entry is None:
            raise KeyNotFound(kid)
        return jwk.JWK(**entry)

    @staticmethod
    def _select(key_set: KeySet, kid: str) -> Optional[Dict[str, Any]]:
        for entry in key_set.get("keys", []):
            if entry.get("kid") == kid:
                return entry
        return None

    async def _generate(self, window: List[str]) -> KeySet:
        available = set(await self.key_store.list_periods())
        keys: List[Dict[str, Any]] = []
        for kid in window:
            if kid not in available:
                logger.warning("No signing key for period %s, omitting from key set", kid)
                continue
            try:
                handle = await self.key_store.load(kid)
            except KeyNotFound:
                logger.warning("Failed to load key for period %s", kid)
                continue
            keys.append(handle.public_jwk())
        return {"keys": keys}
