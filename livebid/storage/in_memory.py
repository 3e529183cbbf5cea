"""In-memory store for auctions, bids, notifications and users."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import replace
from datetime import datetime
from typing import Any, AsyncIterator

from ..auction.fsm import AuctionStatus, is_forward
from ..auction.models import Auction, AuctionNotFound, Bid, Notification, User


class _InMemoryTransaction:
    def __init__(self, store: "InMemoryStore", auction: Auction, winning_bid: Bid | None) -> None:
        self._store = store
        self.auction = auction
        self.winning_bid = winning_bid

    async def commit_bid(self, bid: Bid) -> Bid:
        # No awaits below: readers on the same loop see either the old or the new winner.
        stored = replace(bid, is_winning=False)
        ledger = self._store._bids[bid.auction_id]
        ledger.append(stored)
        for existing in ledger:
            if existing.is_winning:
                existing.is_winning = False
        stored.is_winning = True
        auction = self._store._auctions[bid.auction_id]
        auction.current_highest_bid = stored.amount
        auction.winner_id = stored.bidder_id
        auction.winning_bid = stored.amount
        self.auction = deepcopy(auction)
        return deepcopy(stored)


class InMemoryStore:
    def __init__(self) -> None:
        self._auctions: dict[str, Auction] = {}
        self._bids: dict[str, list[Bid]] = defaultdict(list)
        self._notifications: dict[str, Notification] = {}
        self._users: dict[str, User] = {}
        self._auction_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_auction(self, auction: Auction) -> Auction:
        if auction.auction_id in self._auctions:
            raise ValueError(f"auction {auction.auction_id} already exists")
        self._auctions[auction.auction_id] = deepcopy(auction)
        return deepcopy(auction)

    async def get_auction(self, auction_id: str) -> Auction | None:
        auction = self._auctions.get(auction_id)
        return deepcopy(auction) if auction else None

    async def list_auctions(self) -> list[Auction]:
        return [deepcopy(auction) for auction in self._auctions.values()]

    async def list_due_auctions(self, now: datetime) -> list[Auction]:
        due = []
        for auction in self._auctions.values():
            if auction.status is AuctionStatus.SCHEDULED and auction.start_time <= now:
                due.append(deepcopy(auction))
            elif auction.status is AuctionStatus.ACTIVE and auction.end_time <= now:
                due.append(deepcopy(auction))
        return due

    async def set_status(
        self,
        auction_id: str,
        expected: AuctionStatus,
        new: AuctionStatus,
        updates: dict[str, Any] | None = None,
    ) -> Auction | None:
        if not is_forward(expected, new):
            raise ValueError(f"status cannot move from {expected.value} to {new.value}")
        async with self._auction_locks[auction_id]:
            auction = self._auctions.get(auction_id)
            if auction is None or auction.status is not expected:
                return None
            for key, value in (updates or {}).items():
                setattr(auction, key, value)
            auction.status = new
            return deepcopy(auction)

    @asynccontextmanager
    async def lock_auction(self, auction_id: str) -> AsyncIterator[_InMemoryTransaction]:
        async with self._auction_locks[auction_id]:
            auction = self._auctions.get(auction_id)
            if auction is None:
                raise AuctionNotFound(auction_id)
            winning = next((bid for bid in self._bids[auction_id] if bid.is_winning), None)
            yield _InMemoryTransaction(self, deepcopy(auction), deepcopy(winning))

    async def get_winning_bid(self, auction_id: str) -> Bid | None:
        winning = next((bid for bid in self._bids.get(auction_id, []) if bid.is_winning), None)
        return deepcopy(winning)

    async def list_bids(self, auction_id: str, *, limit: int, offset: int) -> tuple[list[Bid], int]:
        bids = sorted(
            self._bids.get(auction_id, []),
            key=lambda bid: (-bid.amount, bid.bid_time),
        )
        return [deepcopy(bid) for bid in bids[offset : offset + limit]], len(bids)

    async def list_bids_by_bidder(self, auction_id: str, bidder_id: str) -> list[Bid]:
        bids = [bid for bid in self._bids.get(auction_id, []) if bid.bidder_id == bidder_id]
        bids.sort(key=lambda bid: bid.bid_time, reverse=True)
        return [deepcopy(bid) for bid in bids]

    async def bidder_summary(self, auction_id: str) -> list[dict[str, Any]]:
        summary: dict[str, dict[str, Any]] = {}
        for bid in self._bids.get(auction_id, []):
            entry = summary.setdefault(
                bid.bidder_id,
                {"bidder_id": bid.bidder_id, "highest_bid": bid.amount, "bid_count": 0},
            )
            entry["bid_count"] += 1
            entry["highest_bid"] = max(entry["highest_bid"], bid.amount)
        return sorted(summary.values(), key=lambda entry: entry["highest_bid"], reverse=True)

    async def count_bids(self) -> int:
        return sum(len(bids) for bids in self._bids.values())

    async def create_notification(self, notification: Notification) -> Notification:
        self._notifications[notification.notification_id] = deepcopy(notification)
        return deepcopy(notification)

    async def list_notifications(
        self, user_id: str, *, limit: int, offset: int
    ) -> tuple[list[Notification], int]:
        owned = [n for n in self._notifications.values() if n.user_id == user_id]
        owned.sort(key=lambda n: n.created_at, reverse=True)
        return [deepcopy(n) for n in owned[offset : offset + limit]], len(owned)

    async def count_unread(self, user_id: str) -> int:
        return sum(
            1 for n in self._notifications.values() if n.user_id == user_id and not n.is_read
        )

    async def mark_notification_read(self, notification_id: str, user_id: str) -> bool:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        notification.is_read = True
        return True

    async def upsert_user(self, user: User) -> User:
        self._users[user.user_id] = deepcopy(user)
        return deepcopy(user)

    async def get_user(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return deepcopy(user) if user else None

    async def set_user_active(self, user_id: str, active: bool) -> bool:
        user = self._users.get(user_id)
        if user is None:
            return False
        user.is_active = active
        return True

    async def close(self) -> None:
        return None
