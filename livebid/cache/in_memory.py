"""Process-local fast-path cache with TTL-bounded leading-bid entries."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..auction.models import LeadingBidSnapshot


@dataclass
class _Entry:
    snapshot: LeadingBidSnapshot
    expires_at: datetime


class InMemoryCache:
    def __init__(self) -> None:
        self._leading: dict[str, _Entry] = {}
        self._participants: dict[str, set[str]] = defaultdict(set)

    async def get_leading_bid(self, auction_id: str) -> LeadingBidSnapshot | None:
        entry = self._leading.get(auction_id)
        if entry is None:
            return None
        if entry.expires_at <= datetime.now(timezone.utc):
            self._leading.pop(auction_id, None)
            return None
        return entry.snapshot

    async def set_leading_bid(self, snapshot: LeadingBidSnapshot, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        self._leading[snapshot.auction_id] = _Entry(snapshot, expires_at)

    async def add_participant(self, auction_id: str, user_id: str) -> None:
        self._participants[auction_id].add(user_id)

    async def remove_participant(self, auction_id: str, user_id: str) -> None:
        self._participants[auction_id].discard(user_id)

    async def list_participants(self, auction_id: str) -> set[str]:
        return set(self._participants.get(auction_id, ()))

    async def clear(self, auction_id: str) -> None:
        self._leading.pop(auction_id, None)
        self._participants.pop(auction_id, None)

    async def close(self) -> None:
        return None
