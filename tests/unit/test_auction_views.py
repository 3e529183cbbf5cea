"""Leading-bid reads: cache first, ledger fallback, lazy repair."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from livebid.auction.fsm import AuctionStatus
from livebid.auction.models import Auction, LeadingBidSnapshot


class TestLeadingBid:
    @pytest.mark.asyncio
    async def test_no_bids_means_no_leader(self, services, seed_auction):
        auction = await seed_auction()
        assert await services.views.leading_bid(auction) is None
        assert await services.views.minimum_next_bid(auction) == Decimal("1100.00")

    @pytest.mark.asyncio
    async def test_repeated_reads_are_identical(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        first = await services.views.auction_state(auction.auction_id)
        second = await services.views.auction_state(auction.auction_id)
        assert first == second

    @pytest.mark.asyncio
    async def test_cold_cache_is_repaired_from_ledger(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        outcome = await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        await services.cache.clear(auction.auction_id)

        stored = await services.store.get_auction(auction.auction_id)
        snapshot = await services.views.leading_bid(stored)

        assert snapshot == LeadingBidSnapshot.from_bid(outcome.bid, "Xavier")
        assert await services.cache.get_leading_bid(auction.auction_id) == snapshot

    @pytest.mark.asyncio
    async def test_cache_behind_registry_is_ignored(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        first = await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        await services.coordinator.place_bid(auction.auction_id, identity_of("y"), 1300)
        await services.cache.set_leading_bid(LeadingBidSnapshot.from_bid(first.bid, "Xavier"))

        state = await services.views.auction_state(auction.auction_id)

        assert state["highest_bid"]["bidder_id"] == "y"
        assert state["current_highest_bid"] == Decimal("1300.00")
        assert state["minimum_next_bid"] == Decimal("1400.00")

    @pytest.mark.asyncio
    async def test_snapshot_for_auction_without_winner_is_ignored(
        self, services, seed_auction, clock
    ):
        auction = await seed_auction()
        await services.cache.set_leading_bid(
            LeadingBidSnapshot(
                auction_id=auction.auction_id,
                bid_id="ghost",
                amount=Decimal("9000.00"),
                bidder_id="x",
                bidder_display="Xavier",
                bid_time=clock.now,
            )
        )
        assert await services.views.leading_bid(auction) is None


class TestAuctionState:
    @pytest.mark.asyncio
    async def test_unknown_auction(self, services):
        assert await services.views.auction_state("missing") is None

    @pytest.mark.asyncio
    async def test_reports_effective_status(self, services, seed_auction, clock):
        auction = await seed_auction(status=AuctionStatus.SCHEDULED)
        state = await services.views.auction_state(auction.auction_id)
        assert state["status"] == "active"

        clock.advance(hours=2)
        state = await services.views.auction_state(auction.auction_id)
        assert state["status"] == "ended"

    def test_describe_without_leader(self, services, clock):
        auction = Auction(
            auction_id="a1",
            seller_id="seller",
            starting_price=Decimal("50.00"),
            bid_increment=Decimal("5.00"),
            start_time=clock.now + timedelta(hours=1),
            end_time=clock.now + timedelta(hours=2),
            status=AuctionStatus.SCHEDULED,
        )
        state = services.views.describe(auction, None)
        assert state["status"] == "scheduled"
        assert state["highest_bid"] is None
        assert state["minimum_next_bid"] == Decimal("55.00")

        with pytest.raises(ValueError):
            replace(auction, end_time=auction.start_time)
