"""Shared fixtures: in-memory stores, a controllable clock and wired services."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from livebid.auction.coordinator import BidCoordinator
from livebid.auction.fsm import AuctionStatus
from livebid.auction.models import Auction, User, new_id
from livebid.auction.sweeper import LifecycleSweeper
from livebid.auction.views import AuctionViews
from livebid.auth.service import Identity
from livebid.auth.tokens import generate_keypair
from livebid.cache import FastPathCache
from livebid.cache.in_memory import InMemoryCache
from livebid.handoff.client import EndedHandoff
from livebid.notifications.service import NotificationService
from livebid.realtime.hub import Connection, PresenceHub
from livebid.storage.in_memory import InMemoryStore
from livebid.transport.canonical_json import loads


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FakeSocket:
    """Stands in for a websocket: records sent frames and the close call."""

    def __init__(self) -> None:
        self.send_text = AsyncMock()
        self.close = AsyncMock()

    def frames(self) -> list[dict[str, Any]]:
        return [loads(call.args[0]) for call in self.send_text.await_args_list]

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames()]


USERS = (
    User("seller", "Sam Seller", role="seller"),
    User("x", "Xavier"),
    User("y", "Yolanda"),
    User("z", "Zed"),
    User("admin", "Operator", role="admin"),
)


def _identity(user_id: str) -> Identity:
    user = next(user for user in USERS if user.user_id == user_id)
    return Identity(user_id=user.user_id, role=user.role, display_name=user.display_name)


@pytest.fixture
def identity_of():
    return _identity


@pytest.fixture(scope="session")
def keypair() -> tuple[str, str]:
    return generate_keypair()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cache_backend() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def cache(cache_backend) -> FastPathCache:
    return FastPathCache(cache_backend, ttl_seconds=3600, write_timeout_seconds=0.25)


@pytest.fixture
def services(store, cache, clock) -> SimpleNamespace:
    views = AuctionViews(store, cache, clock=clock)
    hub = PresenceHub(cache, views)
    notifications = NotificationService(store, hub, clock=clock)
    coordinator = BidCoordinator(store, cache, hub, notifications, clock=clock)
    handoff = AsyncMock(spec=EndedHandoff)
    sweeper = LifecycleSweeper(store, views, hub, notifications, handoff, clock=clock)
    return SimpleNamespace(
        store=store,
        cache=cache,
        views=views,
        hub=hub,
        notifications=notifications,
        coordinator=coordinator,
        handoff=handoff,
        sweeper=sweeper,
    )


@pytest.fixture
def seed_auction(store, clock):
    """Returns a coroutine function creating the users and one auction.

    Defaults: active, started five minutes ago, ends in an hour,
    starting price 1000 with a 100 increment.
    """

    async def _seed(**overrides: Any) -> Auction:
        for user in USERS:
            await store.upsert_user(user)
        fields: dict[str, Any] = {
            "auction_id": new_id(),
            "seller_id": "seller",
            "title": "Vintage turntable",
            "starting_price": Decimal("1000.00"),
            "bid_increment": Decimal("100.00"),
            "start_time": clock.now - timedelta(minutes=5),
            "end_time": clock.now + timedelta(hours=1),
            "status": AuctionStatus.ACTIVE,
        }
        fields.update(overrides)
        return await store.create_auction(Auction(**fields))

    return _seed


@pytest.fixture
def connect(services):
    """Returns a factory registering a hub connection backed by a FakeSocket."""

    def _connect(user_id: str, *, queue_size: int = 100) -> tuple[Connection, FakeSocket]:
        socket = FakeSocket()
        connection = Connection(
            _identity(user_id), socket.send_text, socket.close, queue_size=queue_size
        )
        services.hub.register(connection)
        return connection, socket

    return _connect
