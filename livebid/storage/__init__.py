"""Durable store factory: auction registry, bid ledger, notifications, users."""

from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncContextManager, Protocol

from ..auction.fsm import AuctionStatus
from ..auction.models import Auction, Bid, Notification, User
from ..config import ServerConfig
from .in_memory import InMemoryStore
from .postgres import PostgresStore


class AuctionTransaction(Protocol):
    """Exclusive handle on one auction row for the duration of a bid commit."""

    auction: Auction
    winning_bid: Bid | None

    async def commit_bid(self, bid: Bid) -> Bid:
        """Insert ``bid`` and make it the single winning bid of the auction."""
        ...


class AuctionStore(Protocol):
    async def create_auction(self, auction: Auction) -> Auction: ...

    async def get_auction(self, auction_id: str) -> Auction | None: ...

    async def list_auctions(self) -> list[Auction]: ...

    async def list_due_auctions(self, now: datetime) -> list[Auction]: ...

    async def set_status(
        self,
        auction_id: str,
        expected: AuctionStatus,
        new: AuctionStatus,
        updates: dict[str, Any] | None = None,
    ) -> Auction | None: ...

    def lock_auction(self, auction_id: str) -> AsyncContextManager[AuctionTransaction]: ...

    async def get_winning_bid(self, auction_id: str) -> Bid | None: ...

    async def list_bids(
        self, auction_id: str, *, limit: int, offset: int
    ) -> tuple[list[Bid], int]: ...

    async def list_bids_by_bidder(self, auction_id: str, bidder_id: str) -> list[Bid]: ...

    async def bidder_summary(self, auction_id: str) -> list[dict[str, Any]]: ...

    async def count_bids(self) -> int: ...

    async def create_notification(self, notification: Notification) -> Notification: ...

    async def list_notifications(
        self, user_id: str, *, limit: int, offset: int
    ) -> tuple[list[Notification], int]: ...

    async def count_unread(self, user_id: str) -> int: ...

    async def mark_notification_read(self, notification_id: str, user_id: str) -> bool: ...

    async def upsert_user(self, user: User) -> User: ...

    async def get_user(self, user_id: str) -> User | None: ...

    async def set_user_active(self, user_id: str, active: bool) -> bool: ...

    async def close(self) -> None: ...


def build_store(config: ServerConfig) -> AuctionStore:
    backend = config.storage.backend
    options = dict(config.storage.options)
    if backend == "in_memory":
        return InMemoryStore()
    if backend == "postgres":
        return PostgresStore(**options)
    raise ValueError(f"unknown storage backend {backend}")
