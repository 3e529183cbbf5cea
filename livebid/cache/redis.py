"""Redis fast-path cache using the redis-py asyncio client."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

import orjson
from redis import asyncio as aioredis

from ..auction.models import LeadingBidSnapshot


class RedisCache:
    def __init__(
        self,
        *,
        url: str = "",
        prefix: str = "livebid",
        participants_ttl_seconds: int = 86400,
        client: aioredis.Redis | None = None,
    ) -> None:
        if client is None and not url:
            raise ValueError("redis url missing")
        self._redis = client if client is not None else aioredis.from_url(url, decode_responses=True)
        self._prefix = prefix.rstrip(":")
        self._participants_ttl = participants_ttl_seconds

    def _leading_key(self, auction_id: str) -> str:
        return f"{self._prefix}:auction:{auction_id}:highest_bid"

    def _participants_key(self, auction_id: str) -> str:
        return f"{self._prefix}:auction:{auction_id}:participants"

    def _encode(self, snapshot: LeadingBidSnapshot) -> bytes:
        return orjson.dumps(
            {
                "auction_id": snapshot.auction_id,
                "bid_id": snapshot.bid_id,
                "amount": str(snapshot.amount),
                "bidder_id": snapshot.bidder_id,
                "bidder_display": snapshot.bidder_display,
                "bid_time": snapshot.bid_time.isoformat(),
            }
        )

    def _decode(self, raw: Any) -> LeadingBidSnapshot:
        data = orjson.loads(raw)
        return LeadingBidSnapshot(
            auction_id=data["auction_id"],
            bid_id=data["bid_id"],
            amount=Decimal(data["amount"]),
            bidder_id=data["bidder_id"],
            bidder_display=data.get("bidder_display"),
            bid_time=datetime.fromisoformat(data["bid_time"]),
        )

    async def get_leading_bid(self, auction_id: str) -> LeadingBidSnapshot | None:
        raw = await self._redis.get(self._leading_key(auction_id))
        if raw is None:
            return None
        return self._decode(raw)

    async def set_leading_bid(self, snapshot: LeadingBidSnapshot, ttl_seconds: int) -> None:
        await self._redis.set(
            self._leading_key(snapshot.auction_id),
            self._encode(snapshot),
            ex=ttl_seconds,
        )

    async def add_participant(self, auction_id: str, user_id: str) -> None:
        key = self._participants_key(auction_id)
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.sadd(key, user_id)
            pipe.expire(key, self._participants_ttl)
            await pipe.execute()

    async def remove_participant(self, auction_id: str, user_id: str) -> None:
        await self._redis.srem(self._participants_key(auction_id), user_id)

    async def list_participants(self, auction_id: str) -> set[str]:
        members = await self._redis.smembers(self._participants_key(auction_id))
        return set(members or ())

    async def clear(self, auction_id: str) -> None:
        await self._redis.delete(
            self._leading_key(auction_id),
            self._participants_key(auction_id),
        )

    async def close(self) -> None:
        await self._redis.aclose()
