"""Bid admission: preconditions, serialization and post-commit side effects."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from livebid.auction.coordinator import BidCoordinator, BidOutcome, BidRejected, RejectionReason
from livebid.auction.fsm import AuctionStatus
from livebid.auction.models import LeadingBidSnapshot, NotificationType
from livebid.auction.views import AuctionViews
from livebid.cache import FastPathCache
from livebid.cache.in_memory import InMemoryCache
from livebid.notifications.service import NotificationService
from livebid.realtime import events
from livebid.realtime.hub import PresenceHub


class YieldingCache(InMemoryCache):
    """Suspends on every read so concurrent bids interleave before the commit lock."""

    async def get_leading_bid(self, auction_id):
        await asyncio.sleep(0)
        return await super().get_leading_bid(auction_id)


def _coordinator(store, cache, clock) -> BidCoordinator:
    hub = PresenceHub(cache, AuctionViews(store, cache, clock=clock))
    notifications = NotificationService(store, hub, clock=clock)
    return BidCoordinator(store, cache, hub, notifications, clock=clock)


async def _notification_types(store, user_id):
    items, _ = await store.list_notifications(user_id, limit=100, offset=0)
    return [item.type for item in items]


class TestScenarioA:
    @pytest.mark.asyncio
    async def test_sequential_bids_and_outbid(self, services, seed_auction, identity_of):
        """1100 accepted, 1150 rejected with minimum 1200, 1200 accepted and X outbid."""
        auction = await seed_auction()
        coordinator = services.coordinator

        first = await coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        assert first.bid.amount == Decimal("1100.00")
        assert first.minimum_next_bid == Decimal("1200.00")

        with pytest.raises(BidRejected) as rejected:
            await coordinator.place_bid(auction.auction_id, identity_of("y"), 1150)
        assert rejected.value.reason is RejectionReason.BELOW_MINIMUM
        assert rejected.value.message == "minimum bid is 1200.00"
        assert rejected.value.minimum_bid == Decimal("1200.00")

        second = await coordinator.place_bid(auction.auction_id, identity_of("y"), "1200")
        assert second.previous.bidder_id == "x"
        assert second.minimum_next_bid == Decimal("1300.00")

        assert NotificationType.OUTBID in await _notification_types(services.store, "x")
        assert NotificationType.OUTBID not in await _notification_types(services.store, "y")
        seller_types = await _notification_types(services.store, "seller")
        assert seller_types.count(NotificationType.NEW_BID) == 2

        stored = await services.store.get_auction(auction.auction_id)
        assert stored.winner_id == "y"
        assert stored.winning_bid == Decimal("1200.00")
        assert stored.current_highest_bid == Decimal("1200.00")

    @pytest.mark.asyncio
    async def test_leader_raising_own_bid_is_not_outbid(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1300)
        assert NotificationType.OUTBID not in await _notification_types(services.store, "x")


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_unknown_auction(self, services, identity_of):
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid("missing", identity_of("x"), 5000)
        assert rejected.value.reason is RejectionReason.AUCTION_NOT_FOUND
        assert rejected.value.message == "auction not found"

    @pytest.mark.asyncio
    async def test_seller_cannot_bid_on_own_auction(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("seller"), 5000)
        assert rejected.value.reason is RejectionReason.SELF_BID
        assert rejected.value.message == "cannot bid on your own auction"
        assert await services.store.get_winning_bid(auction.auction_id) is None

    @pytest.mark.parametrize("amount", [0, -100, "abc", None, "NaN", "Infinity", True, ""])
    @pytest.mark.asyncio
    async def test_invalid_amounts(self, services, seed_auction, identity_of, amount):
        auction = await seed_auction()
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("x"), amount)
        assert rejected.value.reason is RejectionReason.INVALID_AMOUNT
        assert rejected.value.message == "bid amount must be a positive number"

    @pytest.mark.asyncio
    async def test_future_auction_is_not_active(self, services, seed_auction, clock, identity_of):
        auction = await seed_auction(
            status=AuctionStatus.SCHEDULED,
            start_time=clock.now + timedelta(minutes=10),
            end_time=clock.now + timedelta(hours=1),
        )
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        assert rejected.value.reason is RejectionReason.AUCTION_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_scheduled_auction_past_start_accepts_bids(
        self, services, seed_auction, identity_of
    ):
        """Status is computed lazily, before the sweeper persists it."""
        auction = await seed_auction(status=AuctionStatus.SCHEDULED)
        outcome = await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        assert isinstance(outcome, BidOutcome)
        stored = await services.store.get_auction(auction.auction_id)
        assert stored.status is AuctionStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_scenario_d_bid_after_end_time(self, services, seed_auction, clock, identity_of):
        """Rejected even though the sweeper has not ended the auction yet."""
        auction = await seed_auction()
        clock.advance(hours=2)
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 5000)
        assert rejected.value.reason is RejectionReason.AUCTION_NOT_ACTIVE
        assert rejected.value.message == "auction is not currently active"

    @pytest.mark.asyncio
    async def test_cancelled_auction_rejects(self, services, seed_auction, identity_of):
        auction = await seed_auction(status=AuctionStatus.CANCELLED)
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 5000)
        assert rejected.value.reason is RejectionReason.AUCTION_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_order_of_checks(self, services, seed_auction, clock, identity_of):
        """A seller bidding garbage on an ended auction hears about the auction first."""
        auction = await seed_auction()
        clock.advance(hours=2)
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("seller"), "abc")
        assert rejected.value.reason is RejectionReason.AUCTION_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_rejection_body(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1000)
        assert rejected.value.as_dict() == {
            "reason": "below_minimum",
            "message": "minimum bid is 1100.00",
            "minimum_bid": Decimal("1100.00"),
        }


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_scenario_b_single_winner(self, store, clock, seed_auction, identity_of):
        """Both bids clear the cached floor, only one survives the locked re-check."""
        cache = FastPathCache(YieldingCache())
        coordinator = _coordinator(store, cache, clock)
        auction = await seed_auction()
        await coordinator.place_bid(auction.auction_id, identity_of("z"), 1100)

        results = await asyncio.gather(
            coordinator.place_bid(auction.auction_id, identity_of("x"), 1200),
            coordinator.place_bid(auction.auction_id, identity_of("y"), 1250),
            return_exceptions=True,
        )

        accepted = [result for result in results if isinstance(result, BidOutcome)]
        rejected = [result for result in results if isinstance(result, BidRejected)]
        assert len(accepted) == 1
        assert len(rejected) == 1
        assert rejected[0].reason is RejectionReason.BELOW_MINIMUM
        assert rejected[0].minimum_bid == accepted[0].bid.amount + Decimal("100")

        bids, total = await store.list_bids(auction.auction_id, limit=10, offset=0)
        assert total == 2
        assert [bid.is_winning for bid in bids].count(True) == 1

    @pytest.mark.asyncio
    async def test_many_concurrent_bids_keep_one_maximal_winner(
        self, store, clock, seed_auction, identity_of
    ):
        cache = FastPathCache(YieldingCache())
        coordinator = _coordinator(store, cache, clock)
        auction = await seed_auction()
        bidders = ["x", "y", "z"]
        amounts = [1100 + 50 * step for step in range(30)]

        results = await asyncio.gather(
            *(
                coordinator.place_bid(
                    auction.auction_id, identity_of(bidders[index % 3]), amount
                )
                for index, amount in enumerate(amounts)
            ),
            return_exceptions=True,
        )
        assert all(isinstance(result, (BidOutcome, BidRejected)) for result in results)

        bids, total = await store.list_bids(auction.auction_id, limit=100, offset=0)
        winners = [bid for bid in bids if bid.is_winning]
        assert len(winners) == 1
        assert winners[0].amount == max(bid.amount for bid in bids)

        ledger = store._bids[auction.auction_id]
        for earlier, later in zip(ledger, ledger[1:]):
            assert later.amount >= earlier.amount + Decimal("100")


class TestBestEffortSideEffects:
    @pytest.mark.asyncio
    async def test_cache_failure_does_not_fail_the_bid(self, store, clock, seed_auction, identity_of):
        backend = AsyncMock()
        backend.get_leading_bid.side_effect = ConnectionError("cache down")
        backend.set_leading_bid.side_effect = ConnectionError("cache down")
        backend.add_participant.side_effect = ConnectionError("cache down")
        backend.list_participants.side_effect = ConnectionError("cache down")
        cache = FastPathCache(backend)
        coordinator = _coordinator(store, cache, clock)
        auction = await seed_auction()

        outcome = await coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        assert outcome.bid.is_winning
        with pytest.raises(BidRejected) as rejected:
            await coordinator.place_bid(auction.auction_id, identity_of("y"), 1150)
        assert rejected.value.minimum_bid == Decimal("1200.00")

    @pytest.mark.asyncio
    async def test_notification_failure_is_swallowed(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        services.store.create_notification = AsyncMock(side_effect=RuntimeError("db hiccup"))
        outcome = await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        assert outcome.bid.amount == Decimal("1100.00")
        assert (await services.store.get_winning_bid(auction.auction_id)).bid_id == outcome.bid.bid_id

    @pytest.mark.asyncio
    async def test_commit_refreshes_cache_and_participants(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        outcome = await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        cached = await services.cache.get_leading_bid(auction.auction_id)
        assert cached == LeadingBidSnapshot.from_bid(outcome.bid, "Xavier")
        assert await services.cache.list_participants(auction.auction_id) == {"x"}

    @pytest.mark.asyncio
    async def test_stale_cache_cannot_lower_the_floor(self, services, seed_auction, identity_of):
        auction = await seed_auction()
        first = await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        await services.coordinator.place_bid(auction.auction_id, identity_of("y"), 1500)
        await services.cache.set_leading_bid(LeadingBidSnapshot.from_bid(first.bid, "Xavier"))

        with pytest.raises(BidRejected) as rejected:
            await services.coordinator.place_bid(auction.auction_id, identity_of("z"), 1200)
        assert rejected.value.minimum_bid == Decimal("1600.00")


def _slow_notifications(store, delay: float):
    original = store.create_notification

    async def slow_create(notification):
        await asyncio.sleep(delay)
        return await original(notification)

    store.create_notification = slow_create


class TestCommitTimeout:
    @pytest.mark.asyncio
    async def test_slow_side_effects_do_not_count_against_the_timeout(
        self, services, seed_auction, identity_of
    ):
        auction = await seed_auction()
        await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        _slow_notifications(services.store, 0.1)

        outcome = await services.coordinator.place_bid(
            auction.auction_id, identity_of("y"), 1200, commit_timeout=0.05
        )

        assert outcome.bid.amount == Decimal("1200.00")
        assert NotificationType.OUTBID in await _notification_types(services.store, "x")

    @pytest.mark.asyncio
    async def test_committed_bid_still_fans_out_when_the_caller_gives_up(
        self, services, seed_auction, connect, identity_of
    ):
        auction = await seed_auction()
        await services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        member, socket = connect("z")
        await services.hub.join(member, auction.auction_id)
        _slow_notifications(services.store, 0.1)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                services.coordinator.place_bid(auction.auction_id, identity_of("y"), 1200),
                timeout=0.05,
            )
        await asyncio.sleep(0.4)

        assert (await services.store.get_winning_bid(auction.auction_id)).bidder_id == "y"
        assert NotificationType.OUTBID in await _notification_types(services.store, "x")
        seller_types = await _notification_types(services.store, "seller")
        assert seller_types.count(NotificationType.NEW_BID) == 2
        await member.flush()
        new_bids = [frame for frame in socket.frames() if frame["event"] == events.NEW_BID]
        assert [frame["data"]["amount"] for frame in new_bids] == [1200.0]

    @pytest.mark.asyncio
    async def test_lock_wait_times_out_without_committing(
        self, services, seed_auction, identity_of
    ):
        auction = await seed_auction()
        locked = asyncio.Event()
        release = asyncio.Event()

        async def hold_lock():
            async with services.store.lock_auction(auction.auction_id):
                locked.set()
                await release.wait()

        holder = asyncio.create_task(hold_lock())
        await locked.wait()
        try:
            with pytest.raises(asyncio.TimeoutError):
                await services.coordinator.place_bid(
                    auction.auction_id, identity_of("x"), 1100, commit_timeout=0.05
                )
        finally:
            release.set()
            await holder

        assert await services.store.get_winning_bid(auction.auction_id) is None
        _, total = await services.store.list_bids(auction.auction_id, limit=10, offset=0)
        assert total == 0


class TestScenarioDRace:
    @pytest.mark.asyncio
    async def test_bid_queued_behind_the_end_transition_is_rejected(
        self, services, seed_auction, identity_of
    ):
        """The bid passes the unlocked check, then finds the row ended under the lock."""
        auction = await seed_auction()
        locked = asyncio.Event()
        release = asyncio.Event()

        async def hold_lock():
            async with services.store.lock_auction(auction.auction_id):
                locked.set()
                await release.wait()

        holder = asyncio.create_task(hold_lock())
        await locked.wait()
        ending = asyncio.create_task(
            services.store.set_status(auction.auction_id, AuctionStatus.ACTIVE, AuctionStatus.ENDED)
        )
        await asyncio.sleep(0.01)
        bidding = asyncio.create_task(
            services.coordinator.place_bid(auction.auction_id, identity_of("x"), 1100)
        )
        await asyncio.sleep(0.01)
        release.set()
        await holder

        ended = await ending
        assert ended.status is AuctionStatus.ENDED
        with pytest.raises(BidRejected) as rejected:
            await bidding
        assert rejected.value.reason is RejectionReason.AUCTION_NOT_ACTIVE
        _, total = await services.store.list_bids(auction.auction_id, limit=10, offset=0)
        assert total == 0
