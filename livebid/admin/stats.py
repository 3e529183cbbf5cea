"""Operational stats endpoint."""

from __future__ import annotations

from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends

from ..auction.fsm import compute_status
from ..dependencies import get_hub, get_store, require_admin
from ..realtime.hub import PresenceHub
from ..storage import AuctionStore
from ..transport.timestamps import utcnow

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/stats")
async def stats(
    store: AuctionStore = Depends(get_store),
    hub: PresenceHub = Depends(get_hub),
) -> dict[str, Any]:
    auctions = await store.list_auctions()
    now = utcnow()
    stored_status: Counter[str] = Counter()
    effective_status: Counter[str] = Counter()
    for auction in auctions:
        stored_status[auction.status.value] += 1
        effective = compute_status(auction.status, auction.start_time, auction.end_time, now)
        effective_status[effective.value] += 1
    # A stored/effective mismatch means the sweeper has work pending.
    pending_transitions = sum(
        1
        for auction in auctions
        if compute_status(auction.status, auction.start_time, auction.end_time, now)
        is not auction.status
    )
    return {
        "total_auctions": len(auctions),
        "total_bids": await store.count_bids(),
        "auctions_with_bids": sum(1 for auction in auctions if auction.winner_id),
        "stored_status": dict(stored_status),
        "effective_status": dict(effective_status),
        "pending_transitions": pending_transitions,
        "presence": hub.stats(),
    }
