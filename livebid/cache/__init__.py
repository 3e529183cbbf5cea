"""Fast-path state cache: leading bid snapshots and live participant sets.

Nothing stored here is authoritative. Every backend failure is logged and
answered as a cache miss so callers fall back to the durable store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..auction.models import LeadingBidSnapshot
from ..config import ServerConfig
from .in_memory import InMemoryCache
from .redis import RedisCache

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get_leading_bid(self, auction_id: str) -> LeadingBidSnapshot | None: ...

    async def set_leading_bid(self, snapshot: LeadingBidSnapshot, ttl_seconds: int) -> None: ...

    async def add_participant(self, auction_id: str, user_id: str) -> None: ...

    async def remove_participant(self, auction_id: str, user_id: str) -> None: ...

    async def list_participants(self, auction_id: str) -> set[str]: ...

    async def clear(self, auction_id: str) -> None: ...

    async def close(self) -> None: ...


class FastPathCache:
    def __init__(
        self,
        backend: CacheBackend,
        *,
        ttl_seconds: int = 3600,
        write_timeout_seconds: float = 0.25,
    ) -> None:
        self._backend = backend
        self._ttl = ttl_seconds
        self._write_timeout = write_timeout_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    async def get_leading_bid(self, auction_id: str) -> LeadingBidSnapshot | None:
        try:
            return await self._backend.get_leading_bid(auction_id)
        except Exception:
            logger.warning("cache read failed for auction=%s", auction_id, exc_info=True)
            return None

    async def set_leading_bid(self, snapshot: LeadingBidSnapshot) -> bool:
        return await self._write(
            "set_leading_bid",
            snapshot.auction_id,
            self._backend.set_leading_bid(snapshot, self._ttl),
        )

    async def add_participant(self, auction_id: str, user_id: str) -> bool:
        return await self._write(
            "add_participant", auction_id, self._backend.add_participant(auction_id, user_id)
        )

    async def remove_participant(self, auction_id: str, user_id: str) -> bool:
        return await self._write(
            "remove_participant", auction_id, self._backend.remove_participant(auction_id, user_id)
        )

    async def list_participants(self, auction_id: str) -> set[str]:
        try:
            return await self._backend.list_participants(auction_id)
        except Exception:
            logger.warning("participant read failed for auction=%s", auction_id, exc_info=True)
            return set()

    async def clear(self, auction_id: str) -> bool:
        return await self._write("clear", auction_id, self._backend.clear(auction_id))

    async def close(self) -> None:
        await self._backend.close()

    async def _write(self, operation: str, auction_id: str, pending) -> bool:
        try:
            await asyncio.wait_for(pending, timeout=self._write_timeout)
        except Exception:
            logger.warning(
                "cache %s failed for auction=%s", operation, auction_id, exc_info=True
            )
            return False
        return True


def build_cache(config: ServerConfig) -> FastPathCache:
    backend_name = config.cache.backend
    options = dict(config.cache.options)
    backend: CacheBackend
    if backend_name == "in_memory":
        backend = InMemoryCache()
    elif backend_name == "redis":
        backend = RedisCache(**options)
    else:
        raise ValueError(f"unknown cache backend {backend_name}")
    return FastPathCache(
        backend,
        ttl_seconds=config.cache.leading_bid_ttl_seconds,
        write_timeout_seconds=config.cache.write_timeout_seconds,
    )
