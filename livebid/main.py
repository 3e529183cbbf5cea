from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import uvicorn
from fastapi import Body, Depends, FastAPI, HTTPException, Query, WebSocket, status
from jsonschema import ValidationError

from .admin import config as admin_config
from .admin import health as admin_health
from .admin import lifecycle as admin_lifecycle
from .admin import stats as admin_stats
from .admin import users as admin_users
from .auction.coordinator import BidCoordinator, BidRejected, RejectionReason
from .auction.models import Bid
from .auction.sweeper import LifecycleSweeper
from .auction.views import AuctionViews
from .auth.service import AuthError, Identity, build_auth
from .cache import build_cache
from .config import ServerConfig, get_server_config
from .dependencies import (
    current_identity,
    get_bid_limiter,
    get_coordinator,
    get_schema_service,
    get_server_settings,
    get_store,
    get_views,
)
from .handoff.client import build_handoff
from .notifications.service import NotificationService
from .realtime.hub import PresenceHub
from .realtime.session import HANDSHAKE_REFUSED_CLOSE_CODE, PushSession, credential_from
from .storage import AuctionStore, build_store
from .transport.canonical_json import to_jsonable
from .transport.rate_limit import RateLimitExceeded, SlidingWindowLimiter
from .validation.validator import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    logging.getLogger("livebid").setLevel(server_config.log_level)
    schema_registry = get_schema_registry()
    store = build_store(server_config)
    cache = build_cache(server_config)
    auth = build_auth(server_config, store)
    views = AuctionViews(store, cache)
    hub = PresenceHub(cache, views)
    notifications = NotificationService(store, hub)
    coordinator = BidCoordinator(store, cache, hub, notifications)
    handoff = build_handoff(server_config)
    sweeper = LifecycleSweeper(
        store,
        views,
        hub,
        notifications,
        handoff,
        interval_seconds=server_config.lifecycle.sweep_interval_seconds,
    )
    bid_limiter = SlidingWindowLimiter(
        server_config.bidding.rate_limit.max_attempts,
        server_config.bidding.rate_limit.window_seconds,
        message="too many bids, please wait before bidding again",
    )

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.store = store
    app.state.cache = cache
    app.state.auth = auth
    app.state.views = views
    app.state.hub = hub
    app.state.notifications = notifications
    app.state.coordinator = coordinator
    app.state.handoff = handoff
    app.state.sweeper = sweeper
    app.state.bid_limiter = bid_limiter
    app.state.start_time = datetime.now(timezone.utc)

    if server_config.lifecycle.enabled:
        sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await handoff.close()
        await auth.close()
        await cache.close()
        await store.close()


app = FastAPI(
    title="Live Bidding Server",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)
app.include_router(admin_lifecycle.router)
app.include_router(admin_users.router)


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "livebid-server",
        "version": app.version,
        "storage_backend": settings.storage.backend,
        "cache_backend": settings.cache.backend,
        "bidding": {
            "commit_timeout_seconds": settings.bidding.commit_timeout_seconds,
            "rate_limit": {
                "max_attempts": settings.bidding.rate_limit.max_attempts,
                "window_seconds": settings.bidding.rate_limit.window_seconds,
            },
        },
    }


@app.get("/health", tags=["meta"])
async def health() -> dict[str, Any]:
    return {"status": "ok", "version": app.version}


@app.post("/api/bids/{auction_id}/place", tags=["bids"], status_code=status.HTTP_201_CREATED)
async def place_bid(
    auction_id: str,
    payload: dict[str, Any] = Body(...),
    identity: Identity = Depends(current_identity),
    coordinator: BidCoordinator = Depends(get_coordinator),
    schemas: SchemaRegistry = Depends(get_schema_service),
    limiter: SlidingWindowLimiter = Depends(get_bid_limiter),
    settings: ServerConfig = Depends(get_server_settings),
) -> dict[str, Any]:
    try:
        await limiter.hit(identity.user_id)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(math.ceil(exc.retry_after_seconds))},
        ) from exc
    try:
        schemas.validate("bid_request", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc.message)) from exc
    try:
        outcome = await coordinator.place_bid(
            auction_id,
            identity,
            payload["amount"],
            commit_timeout=settings.bidding.commit_timeout_seconds,
        )
    except BidRejected as exc:
        code = 404 if exc.reason is RejectionReason.AUCTION_NOT_FOUND else 400
        logger.debug("bid rejected auction=%s user=%s reason=%s", auction_id, identity.user_id, exc.reason.value)
        raise HTTPException(status_code=code, detail=to_jsonable(exc.as_dict())) from exc
    except asyncio.TimeoutError as exc:
        logger.warning("bid commit timed out auction=%s user=%s", auction_id, identity.user_id)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="bid placement timed out; check the bid history before retrying",
        ) from exc
    return to_jsonable(
        {
            "message": "bid placed successfully",
            "bid": _bid_view(outcome.bid, identity.display_name),
            "is_highest_bid": True,
            "minimum_next_bid": outcome.minimum_next_bid,
        }
    )


@app.get("/api/bids/{auction_id}", tags=["bids"])
async def bid_history(
    auction_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: AuctionStore = Depends(get_store),
) -> dict[str, Any]:
    if await store.get_auction(auction_id) is None:
        raise HTTPException(status_code=404, detail="auction not found")
    bids, total = await store.list_bids(auction_id, limit=limit, offset=(page - 1) * limit)
    names: dict[str, str | None] = {}
    for bidder_id in {bid.bidder_id for bid in bids}:
        user = await store.get_user(bidder_id)
        names[bidder_id] = user.display_name if user else None
    return to_jsonable(
        {
            "bids": [_bid_view(bid, names.get(bid.bidder_id)) for bid in bids],
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit),
                "total_bids": total,
                "has_next": page * limit < total,
                "has_prev": page > 1,
            },
        }
    )


@app.get("/api/bids/{auction_id}/user-history", tags=["bids"])
async def user_bid_history(
    auction_id: str,
    identity: Identity = Depends(current_identity),
    store: AuctionStore = Depends(get_store),
) -> dict[str, Any]:
    if await store.get_auction(auction_id) is None:
        raise HTTPException(status_code=404, detail="auction not found")
    bids = await store.list_bids_by_bidder(auction_id, identity.user_id)
    return to_jsonable(
        {
            "bids": [_bid_view(bid, identity.display_name) for bid in bids],
            "total_bids": len(bids),
            "highest_bid": max((bid.amount for bid in bids), default=None),
            "is_winning": any(bid.is_winning for bid in bids),
        }
    )


@app.get("/api/auctions/{auction_id}", tags=["auctions"])
async def auction_detail(
    auction_id: str,
    views: AuctionViews = Depends(get_views),
) -> dict[str, Any]:
    state = await views.auction_state(auction_id)
    if state is None:
        raise HTTPException(status_code=404, detail="auction not found")
    return to_jsonable(state)


@app.websocket("/ws")
async def push_channel(websocket: WebSocket) -> None:
    state = websocket.app.state
    try:
        identity = await state.auth.authenticate(credential_from(websocket))
    except AuthError as exc:
        logger.info("push handshake refused: %s", exc)
        await websocket.close(code=HANDSHAKE_REFUSED_CLOSE_CODE, reason=str(exc))
        return
    await websocket.accept()
    session = PushSession(
        websocket,
        identity,
        hub=state.hub,
        auth=state.auth,
        views=state.views,
        notifications=state.notifications,
        schemas=state.schema_registry,
        page_size=state.server_config.realtime.notifications_page_size,
        queue_size=state.server_config.realtime.send_queue_size,
    )
    await session.run()


def _bid_view(bid: Bid, bidder_display: str | None) -> dict[str, Any]:
    return {
        "bid_id": bid.bid_id,
        "auction_id": bid.auction_id,
        "amount": bid.amount,
        "bidder": {"id": bid.bidder_id, "display_name": bidder_display},
        "bid_time": bid.bid_time,
        "is_winning": bid.is_winning,
    }


def run() -> None:
    settings = get_server_config()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(
        "livebid.main:app",
        host=settings.listen.get("host", "0.0.0.0"),
        port=int(settings.listen.get("port", 8080)),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
