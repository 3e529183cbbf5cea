"""Seed demo users and an auction into the configured durable store.

Only useful with a persistent backend (postgres); the in-memory store lives
inside the server process.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from livebid.auction.fsm import AuctionStatus
from livebid.auction.models import Auction, User, new_id
from livebid.config import get_server_config
from livebid.storage import build_store
from livebid.transport.timestamps import utcnow


async def seed() -> None:
    store = build_store(get_server_config())
    try:
        for user in (
            User("seller-1", "Demo Seller", role="seller"),
            User("buyer-1", "Alice"),
            User("buyer-2", "Bob"),
            User("admin-1", "Operator", role="admin"),
        ):
            await store.upsert_user(user)
        now = utcnow()
        auction = await store.create_auction(
            Auction(
                auction_id=new_id(),
                seller_id="seller-1",
                title="Vintage turntable",
                starting_price=Decimal("1000.00"),
                bid_increment=Decimal("100.00"),
                start_time=now + timedelta(seconds=30),
                end_time=now + timedelta(minutes=30),
                status=AuctionStatus.SCHEDULED,
            )
        )
        print(f"seeded auction {auction.auction_id}")
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(seed())
