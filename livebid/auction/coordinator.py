"""Bid admission: validate, serialize per auction, commit, then notify and fan out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from ..auth.service import Identity
from ..cache import FastPathCache
from ..notifications.service import NotificationService
from ..realtime.events import bid_payload
from ..realtime.hub import PresenceHub
from ..storage import AuctionStore
from ..transport.timestamps import utcnow
from .fsm import AuctionStatus, compute_status
from .models import Auction, AuctionNotFound, Bid, LeadingBidSnapshot
from .pricing import format_amount, minimum_next_bid, parse_amount

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    AUCTION_NOT_FOUND = "auction_not_found"
    AUCTION_NOT_ACTIVE = "auction_not_active"
    SELF_BID = "self_bid"
    INVALID_AMOUNT = "invalid_amount"
    BELOW_MINIMUM = "below_minimum"


class BidRejected(ValueError):
    def __init__(
        self,
        reason: RejectionReason,
        message: str,
        *,
        minimum_bid: Decimal | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.minimum_bid = minimum_bid

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"reason": self.reason.value, "message": self.message}
        if self.minimum_bid is not None:
            body["minimum_bid"] = self.minimum_bid
        return body


@dataclass
class BidOutcome:
    bid: Bid
    snapshot: LeadingBidSnapshot
    minimum_next_bid: Decimal
    previous: Bid | None = None


class BidCoordinator:
    def __init__(
        self,
        store: AuctionStore,
        cache: FastPathCache,
        hub: PresenceHub,
        notifications: NotificationService,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._hub = hub
        self._notifications = notifications
        self._clock = clock

    async def place_bid(
        self,
        auction_id: str,
        bidder: Identity,
        amount: Any,
        *,
        commit_timeout: float | None = None,
    ) -> BidOutcome:
        """Admit a bid or raise BidRejected.

        At most one commit per auction runs at a time; the floor is re-checked
        against the locked row so a concurrent loser sees the updated minimum.
        ``commit_timeout`` bounds only the wait for the lock and the commit
        (asyncio.TimeoutError, nothing committed). Once the bid is committed,
        the cache refresh, notifications and fan-out run to completion even if
        the caller is cancelled.
        """
        auction = await self._store.get_auction(auction_id)
        parsed = self._check_preconditions(auction, auction_id, bidder, amount)

        floor = auction.leading_amount
        cached = await self._cache.get_leading_bid(auction_id)
        if cached is not None and auction.winner_id is not None and cached.amount > floor:
            floor = cached.amount
        self._check_floor(parsed, floor, auction.bid_increment)

        auction, committed, previous = await asyncio.wait_for(
            self._commit(auction_id, bidder, parsed), timeout=commit_timeout
        )

        snapshot = LeadingBidSnapshot.from_bid(committed, bidder.display_name)
        next_minimum = minimum_next_bid(committed.amount, auction.bid_increment)
        logger.info(
            "bid %s committed auction=%s bidder=%s amount=%s",
            committed.bid_id,
            auction_id,
            bidder.user_id,
            format_amount(committed.amount),
        )

        await asyncio.shield(
            self._after_commit(auction, committed, bidder, previous, snapshot, next_minimum)
        )

        return BidOutcome(
            bid=committed,
            snapshot=snapshot,
            minimum_next_bid=next_minimum,
            previous=previous,
        )

    async def _commit(
        self,
        auction_id: str,
        bidder: Identity,
        amount: Decimal,
    ) -> tuple[Auction, Bid, Bid | None]:
        try:
            async with self._store.lock_auction(auction_id) as txn:
                self._check_preconditions(txn.auction, auction_id, bidder, amount)
                self._check_floor(amount, txn.auction.leading_amount, txn.auction.bid_increment)
                previous = txn.winning_bid
                committed = await txn.commit_bid(
                    Bid(
                        auction_id=auction_id,
                        bidder_id=bidder.user_id,
                        amount=amount,
                        bid_time=self._clock(),
                    )
                )
                return txn.auction, committed, previous
        except AuctionNotFound as exc:
            raise BidRejected(RejectionReason.AUCTION_NOT_FOUND, "auction not found") from exc

    async def _after_commit(
        self,
        auction: Auction,
        committed: Bid,
        bidder: Identity,
        previous: Bid | None,
        snapshot: LeadingBidSnapshot,
        next_minimum: Decimal,
    ) -> None:
        await self._cache.set_leading_bid(snapshot)
        await self._cache.add_participant(auction.auction_id, bidder.user_id)
        await self._notify(auction, committed, bidder, previous)
        try:
            self._hub.publish_bid(
                auction.auction_id, bid_payload(committed, bidder.display_name, next_minimum)
            )
        except Exception:
            logger.exception(
                "bid fan-out failed auction=%s bid=%s", auction.auction_id, committed.bid_id
            )

    def _check_preconditions(
        self,
        auction: Auction | None,
        auction_id: str,
        bidder: Identity,
        amount: Any,
    ) -> Decimal:
        if auction is None:
            raise BidRejected(RejectionReason.AUCTION_NOT_FOUND, "auction not found")
        status = compute_status(auction.status, auction.start_time, auction.end_time, self._clock())
        if status is not AuctionStatus.ACTIVE:
            raise BidRejected(
                RejectionReason.AUCTION_NOT_ACTIVE, "auction is not currently active"
            )
        if auction.seller_id == bidder.user_id:
            raise BidRejected(RejectionReason.SELF_BID, "cannot bid on your own auction")
        parsed = parse_amount(amount)
        if parsed is None:
            raise BidRejected(
                RejectionReason.INVALID_AMOUNT, "bid amount must be a positive number"
            )
        return parsed

    def _check_floor(self, amount: Decimal, leading: Decimal, increment: Decimal) -> None:
        minimum = minimum_next_bid(leading, increment)
        if amount < minimum:
            raise BidRejected(
                RejectionReason.BELOW_MINIMUM,
                f"minimum bid is {format_amount(minimum)}",
                minimum_bid=minimum,
            )

    async def _notify(
        self,
        auction: Auction,
        bid: Bid,
        bidder: Identity,
        previous: Bid | None,
    ) -> None:
        try:
            await self._notifications.new_bid(auction, bidder.display_name, bid.amount)
            if previous is not None and previous.bidder_id != bid.bidder_id:
                await self._notifications.outbid(
                    auction, previous.bidder_id, previous.amount, bid.amount
                )
        except Exception:
            logger.exception("bid notifications failed auction=%s bid=%s", auction.auction_id, bid.bid_id)
