"""Read side of an auction: registry row merged with the fast-path cache."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from ..cache import FastPathCache
from ..realtime.events import snapshot_payload
from ..storage import AuctionStore
from ..transport.timestamps import utcnow
from .fsm import compute_status
from .models import Auction, LeadingBidSnapshot
from .pricing import minimum_next_bid

logger = logging.getLogger(__name__)


class AuctionViews:
    def __init__(
        self,
        store: AuctionStore,
        cache: FastPathCache,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock

    async def leading_bid(self, auction: Auction) -> LeadingBidSnapshot | None:
        """Current leader, from the cache when it is not behind the registry.

        The cache is written only after a commit, so a snapshot for an auction
        the registry says has no winner is stale and ignored.
        """
        if auction.winner_id is None:
            return None
        cached = await self._cache.get_leading_bid(auction.auction_id)
        if cached is not None and cached.amount >= auction.leading_amount:
            return cached
        winning = await self._store.get_winning_bid(auction.auction_id)
        if winning is None:
            return None
        user = await self._store.get_user(winning.bidder_id)
        snapshot = LeadingBidSnapshot.from_bid(winning, user.display_name if user else None)
        if await self._cache.set_leading_bid(snapshot):
            logger.debug("repaired leading bid cache auction=%s", auction.auction_id)
        return snapshot

    async def minimum_next_bid(self, auction: Auction) -> Decimal:
        leading = await self.leading_bid(auction)
        amount = leading.amount if leading is not None else auction.leading_amount
        return minimum_next_bid(amount, auction.bid_increment)

    async def auction_state(self, auction_id: str) -> dict[str, Any] | None:
        auction = await self._store.get_auction(auction_id)
        if auction is None:
            return None
        leading = await self.leading_bid(auction)
        return self.describe(auction, leading)

    def describe(
        self,
        auction: Auction,
        leading: LeadingBidSnapshot | None,
    ) -> dict[str, Any]:
        status = compute_status(auction.status, auction.start_time, auction.end_time, self._clock())
        current = auction.current_highest_bid
        winner_id = auction.winner_id
        floor = auction.leading_amount
        if leading is not None:
            current = leading.amount
            winner_id = leading.bidder_id
            floor = leading.amount
        return {
            "auction_id": auction.auction_id,
            "seller_id": auction.seller_id,
            "title": auction.title,
            "description": auction.description,
            "category": auction.category,
            "status": status.value,
            "starting_price": auction.starting_price,
            "bid_increment": auction.bid_increment,
            "start_time": auction.start_time,
            "end_time": auction.end_time,
            "current_highest_bid": current,
            "winner_id": winner_id,
            "highest_bid": snapshot_payload(leading),
            "minimum_next_bid": minimum_next_bid(floor, auction.bid_increment),
            "seller_decision": auction.seller_decision,
        }
