"""Periodic lifecycle sweep: scheduled -> active -> ended."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Callable

from ..handoff.client import EndedHandoff
from ..notifications.service import NotificationService
from ..realtime import events
from ..realtime.hub import PresenceHub
from ..storage import AuctionStore
from ..transport.timestamps import format_timestamp, utcnow
from .fsm import AuctionStatus, LifecycleEvent, transition
from .models import Auction, LeadingBidSnapshot
from .views import AuctionViews

logger = logging.getLogger(__name__)


class LifecycleSweeper:
    def __init__(
        self,
        store: AuctionStore,
        views: AuctionViews,
        hub: PresenceHub,
        notifications: NotificationService,
        handoff: EndedHandoff,
        *,
        interval_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._views = views
        self._hub = hub
        self._notifications = notifications
        self._handoff = handoff
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    async def sweep(self, now: datetime | None = None) -> dict[str, int]:
        """Apply every due transition once and return per-outcome counts."""
        now = now or self._clock()
        counts = {"started": 0, "ended": 0, "skipped": 0, "failed": 0}
        for auction in await self._store.list_due_auctions(now):
            try:
                if auction.status is AuctionStatus.SCHEDULED:
                    outcome = "started" if await self._start(auction) else "skipped"
                elif auction.status is AuctionStatus.ACTIVE:
                    outcome = "ended" if await self._end(auction, now) else "skipped"
                else:
                    outcome = "skipped"
            except Exception:
                logger.exception("lifecycle transition failed auction=%s", auction.auction_id)
                outcome = "failed"
            counts[outcome] += 1
        if counts["started"] or counts["ended"] or counts["failed"]:
            logger.info("lifecycle sweep %s", counts)
        return counts

    async def _start(self, auction: Auction) -> bool:
        target = transition(auction.status, LifecycleEvent.START)
        started = await self._store.set_status(auction.auction_id, auction.status, target)
        if started is None:
            logger.debug("auction %s already moved past scheduled", auction.auction_id)
            return False
        logger.info("auction %s started", started.auction_id)
        try:
            await self._notifications.auction_started(started)
        except Exception:
            logger.exception("start notification failed auction=%s", started.auction_id)
        self._publish(started, events.LIFECYCLE_STARTED, self._status_payload(started))
        return True

    async def _end(self, auction: Auction, now: datetime) -> bool:
        target = transition(auction.status, LifecycleEvent.END)
        updates = {"seller_decision": "pending"} if auction.winner_id else None
        ended = await self._store.set_status(auction.auction_id, auction.status, target, updates)
        if ended is None:
            logger.debug("auction %s already moved past active", auction.auction_id)
            return False
        final_bid = await self._views.leading_bid(ended)
        logger.info(
            "auction %s ended winner=%s",
            ended.auction_id,
            final_bid.bidder_id if final_bid else None,
        )
        bidders = {entry["bidder_id"] for entry in await self._store.bidder_summary(ended.auction_id)}
        try:
            await self._notifications.auction_closed(ended, final_bid, bidders)
        except Exception:
            logger.exception("close notifications failed auction=%s", ended.auction_id)
        self._publish(ended, events.LIFECYCLE_ENDED, self._ended_payload(ended, final_bid))
        try:
            await self._handoff.auction_closed(
                {
                    "auction_id": ended.auction_id,
                    "seller_id": ended.seller_id,
                    "winner_id": final_bid.bidder_id if final_bid else None,
                    "winning_bid": final_bid.amount if final_bid else None,
                    "ended_at": format_timestamp(now),
                }
            )
        except Exception:
            logger.exception("handoff failed auction=%s", ended.auction_id)
        return True

    def _publish(self, auction: Auction, kind: str, payload: dict[str, Any]) -> None:
        try:
            self._hub.publish_lifecycle_event(auction.auction_id, kind, payload)
        except Exception:
            logger.exception("lifecycle fan-out failed auction=%s kind=%s", auction.auction_id, kind)

    def _status_payload(self, auction: Auction) -> dict[str, Any]:
        return {
            "auction_id": auction.auction_id,
            "status": auction.status.value,
            "start_time": auction.start_time,
            "end_time": auction.end_time,
        }

    def _ended_payload(
        self,
        auction: Auction,
        final_bid: LeadingBidSnapshot | None,
    ) -> dict[str, Any]:
        winner = None
        if final_bid is not None:
            winner = {"id": final_bid.bidder_id, "display_name": final_bid.bidder_display}
        return {
            **self._status_payload(auction),
            "final_bid": events.snapshot_payload(final_bid),
            "winner": winner,
        }

    async def run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("lifecycle sweep failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="livebid-lifecycle-sweeper")
            logger.info("lifecycle sweeper started interval=%ss", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
