"""Postgres store leveraging asyncpg."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

import asyncpg
import orjson

from ..auction.fsm import AuctionStatus, is_forward
from ..auction.models import (
    Auction,
    AuctionNotFound,
    Bid,
    Notification,
    NotificationType,
    User,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'buyer',
    is_active BOOLEAN NOT NULL DEFAULT TRUE
);
CREATE TABLE IF NOT EXISTS auctions (
    auction_id TEXT PRIMARY KEY,
    seller_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT 'Other',
    starting_price NUMERIC(12, 2) NOT NULL CHECK (starting_price > 0),
    bid_increment NUMERIC(12, 2) NOT NULL CHECK (bid_increment > 0),
    start_time TIMESTAMPTZ NOT NULL,
    end_time TIMESTAMPTZ NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    current_highest_bid NUMERIC(12, 2) NOT NULL DEFAULT 0,
    winner_id TEXT,
    winning_bid NUMERIC(12, 2),
    seller_decision TEXT NOT NULL DEFAULT 'pending',
    counter_offer_amount NUMERIC(12, 2),
    counter_offer_status TEXT,
    is_transaction_complete BOOLEAN NOT NULL DEFAULT FALSE,
    CHECK (end_time > start_time)
);
CREATE INDEX IF NOT EXISTS idx_auctions_status ON auctions (status);
CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    auction_id TEXT NOT NULL REFERENCES auctions (auction_id),
    bidder_id TEXT NOT NULL,
    amount NUMERIC(12, 2) NOT NULL CHECK (amount > 0),
    bid_time TIMESTAMPTZ NOT NULL,
    is_winning BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS idx_bids_auction_amount ON bids (auction_id, amount);
CREATE INDEX IF NOT EXISTS idx_bids_bidder ON bids (bidder_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_single_winner ON bids (auction_id) WHERE is_winning;
CREATE TABLE IF NOT EXISTS notifications (
    notification_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    auction_id TEXT,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    is_read BOOLEAN NOT NULL DEFAULT FALSE,
    data JSONB,
    created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notifications_user_read ON notifications (user_id, is_read);
CREATE INDEX IF NOT EXISTS idx_notifications_created ON notifications (created_at);
"""

_AUCTION_COLUMNS = (
    "auction_id",
    "seller_id",
    "title",
    "description",
    "category",
    "starting_price",
    "bid_increment",
    "start_time",
    "end_time",
    "status",
    "current_highest_bid",
    "winner_id",
    "winning_bid",
    "seller_decision",
    "counter_offer_amount",
    "counter_offer_status",
    "is_transaction_complete",
)

_UPDATABLE_COLUMNS = frozenset(_AUCTION_COLUMNS) - {"auction_id", "status"}


def _auction_from_row(row: asyncpg.Record) -> Auction:
    values = dict(row)
    values["status"] = AuctionStatus(values["status"])
    return Auction(**{column: values[column] for column in _AUCTION_COLUMNS})


def _bid_from_row(row: asyncpg.Record) -> Bid:
    return Bid(
        bid_id=row["bid_id"],
        auction_id=row["auction_id"],
        bidder_id=row["bidder_id"],
        amount=row["amount"],
        bid_time=row["bid_time"],
        is_winning=row["is_winning"],
    )


class _PostgresTransaction:
    def __init__(self, conn: asyncpg.Connection, auction: Auction, winning_bid: Bid | None) -> None:
        self._conn = conn
        self.auction = auction
        self.winning_bid = winning_bid

    async def commit_bid(self, bid: Bid) -> Bid:
        await self._conn.execute(
            """INSERT INTO bids(bid_id, auction_id, bidder_id, amount, bid_time, is_winning)
               VALUES($1, $2, $3, $4, $5, FALSE)""",
            bid.bid_id,
            bid.auction_id,
            bid.bidder_id,
            bid.amount,
            bid.bid_time,
        )
        await self._conn.execute(
            "UPDATE bids SET is_winning=FALSE WHERE auction_id=$1 AND is_winning",
            bid.auction_id,
        )
        await self._conn.execute("UPDATE bids SET is_winning=TRUE WHERE bid_id=$1", bid.bid_id)
        row = await self._conn.fetchrow(
            """UPDATE auctions
               SET current_highest_bid=$2, winner_id=$3, winning_bid=$2
               WHERE auction_id=$1
               RETURNING *""",
            bid.auction_id,
            bid.amount,
            bid.bidder_id,
        )
        self.auction = _auction_from_row(row)
        return Bid(
            bid_id=bid.bid_id,
            auction_id=bid.auction_id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            bid_time=bid.bid_time,
            is_winning=True,
        )


class PostgresStore:
    def __init__(self, *, dsn: str | None = None, **connect_kwargs: Any) -> None:
        if not dsn and not connect_kwargs:
            raise ValueError("postgres connection details missing")
        self._dsn = dsn
        self._connect_kwargs = connect_kwargs
        self._pool: asyncpg.Pool | None = None

    def _encode(self, payload: dict[str, Any]) -> str:
        return orjson.dumps(payload, default=str).decode()

    def _decode(self, value: Any) -> dict[str, Any]:
        if isinstance(value, (bytes, bytearray)):
            value = value.decode()
        if isinstance(value, str):
            return orjson.loads(value)
        return value or {}

    def _notification_from_row(self, row: asyncpg.Record) -> Notification:
        return Notification(
            notification_id=row["notification_id"],
            user_id=row["user_id"],
            auction_id=row["auction_id"],
            type=NotificationType(row["type"]),
            title=row["title"],
            message=row["message"],
            is_read=row["is_read"],
            data=self._decode(row["data"]),
            created_at=row["created_at"],
        )

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self._dsn, **self._connect_kwargs)
            async with self._pool.acquire() as conn:
                await conn.execute(_SCHEMA)
        return self._pool

    async def create_auction(self, auction: Auction) -> Auction:
        pool = await self._ensure_pool()
        values = auction.as_dict()
        values["status"] = auction.status.value
        placeholders = ", ".join(f"${index}" for index in range(1, len(_AUCTION_COLUMNS) + 1))
        async with pool.acquire() as conn:
            await conn.execute(
                f"INSERT INTO auctions({', '.join(_AUCTION_COLUMNS)}) VALUES({placeholders})",
                *(values[column] for column in _AUCTION_COLUMNS),
            )
        return auction

    async def get_auction(self, auction_id: str) -> Auction | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM auctions WHERE auction_id=$1", auction_id)
        return _auction_from_row(row) if row else None

    async def list_auctions(self) -> list[Auction]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM auctions ORDER BY start_time")
        return [_auction_from_row(row) for row in rows]

    async def list_due_auctions(self, now: datetime) -> list[Auction]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT * FROM auctions
                   WHERE (status='scheduled' AND start_time <= $1)
                      OR (status='active' AND end_time <= $1)
                   ORDER BY end_time""",
                now,
            )
        return [_auction_from_row(row) for row in rows]

    async def set_status(
        self,
        auction_id: str,
        expected: AuctionStatus,
        new: AuctionStatus,
        updates: dict[str, Any] | None = None,
    ) -> Auction | None:
        if not is_forward(expected, new):
            raise ValueError(f"status cannot move from {expected.value} to {new.value}")
        updates = dict(updates or {})
        unknown = set(updates) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"cannot update columns {sorted(unknown)}")
        assignments = ["status=$3"]
        params: list[Any] = [auction_id, expected.value, new.value]
        for column, value in updates.items():
            params.append(value)
            assignments.append(f"{column}=${len(params)}")
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""UPDATE auctions SET {', '.join(assignments)}
                    WHERE auction_id=$1 AND status=$2
                    RETURNING *""",
                *params,
            )
        return _auction_from_row(row) if row else None

    @asynccontextmanager
    async def lock_auction(self, auction_id: str) -> AsyncIterator[_PostgresTransaction]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT * FROM auctions WHERE auction_id=$1 FOR UPDATE",
                    auction_id,
                )
                if row is None:
                    raise AuctionNotFound(auction_id)
                winning = await conn.fetchrow(
                    "SELECT * FROM bids WHERE auction_id=$1 AND is_winning",
                    auction_id,
                )
                yield _PostgresTransaction(
                    conn,
                    _auction_from_row(row),
                    _bid_from_row(winning) if winning else None,
                )

    async def get_winning_bid(self, auction_id: str) -> Bid | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM bids WHERE auction_id=$1 AND is_winning",
                auction_id,
            )
        return _bid_from_row(row) if row else None

    async def list_bids(self, auction_id: str, *, limit: int, offset: int) -> tuple[list[Bid], int]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT * FROM bids WHERE auction_id=$1
                   ORDER BY amount DESC, bid_time ASC
                   LIMIT $2 OFFSET $3""",
                auction_id,
                limit,
                offset,
            )
            total = await conn.fetchval("SELECT COUNT(*) FROM bids WHERE auction_id=$1", auction_id)
        return [_bid_from_row(row) for row in rows], int(total)

    async def list_bids_by_bidder(self, auction_id: str, bidder_id: str) -> list[Bid]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT * FROM bids WHERE auction_id=$1 AND bidder_id=$2
                   ORDER BY bid_time DESC""",
                auction_id,
                bidder_id,
            )
        return [_bid_from_row(row) for row in rows]

    async def bidder_summary(self, auction_id: str) -> list[dict[str, Any]]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT bidder_id, MAX(amount) AS highest_bid, COUNT(*) AS bid_count
                   FROM bids WHERE auction_id=$1
                   GROUP BY bidder_id
                   ORDER BY MAX(amount) DESC""",
                auction_id,
            )
        return [dict(row) for row in rows]

    async def count_bids(self) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            return int(await conn.fetchval("SELECT COUNT(*) FROM bids"))

    async def create_notification(self, notification: Notification) -> Notification:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """INSERT INTO notifications(
                       notification_id, user_id, auction_id, type, title, message,
                       is_read, data, created_at)
                   VALUES($1, $2, $3, $4, $5, $6, $7, $8, $9)""",
                notification.notification_id,
                notification.user_id,
                notification.auction_id,
                notification.type.value,
                notification.title,
                notification.message,
                notification.is_read,
                self._encode(notification.data),
                notification.created_at,
            )
        return notification

    async def list_notifications(
        self, user_id: str, *, limit: int, offset: int
    ) -> tuple[list[Notification], int]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT * FROM notifications WHERE user_id=$1
                   ORDER BY created_at DESC LIMIT $2 OFFSET $3""",
                user_id,
                limit,
                offset,
            )
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM notifications WHERE user_id=$1", user_id
            )
        return [self._notification_from_row(row) for row in rows], int(total)

    async def count_unread(self, user_id: str) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM notifications WHERE user_id=$1 AND NOT is_read",
                user_id,
            )
        return int(count)

    async def mark_notification_read(self, notification_id: str, user_id: str) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE notifications SET is_read=TRUE WHERE notification_id=$1 AND user_id=$2",
                notification_id,
                user_id,
            )
        return result.endswith(" 1")

    async def upsert_user(self, user: User) -> User:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """INSERT INTO users(user_id, display_name, role, is_active)
                   VALUES($1, $2, $3, $4)
                   ON CONFLICT (user_id) DO UPDATE
                   SET display_name=EXCLUDED.display_name,
                       role=EXCLUDED.role,
                       is_active=EXCLUDED.is_active""",
                user.user_id,
                user.display_name,
                user.role,
                user.is_active,
            )
        return user

    async def get_user(self, user_id: str) -> User | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM users WHERE user_id=$1", user_id)
        if not row:
            return None
        return User(
            user_id=row["user_id"],
            display_name=row["display_name"],
            role=row["role"],
            is_active=row["is_active"],
        )

    async def set_user_active(self, user_id: str, active: bool) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE users SET is_active=$2 WHERE user_id=$1", user_id, active
            )
        return result.endswith(" 1")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
