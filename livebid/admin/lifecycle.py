"""Manual lifecycle sweep and per-auction participant views."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..auction.sweeper import LifecycleSweeper
from ..dependencies import get_hub, get_store, get_sweeper, require_admin
from ..realtime.hub import PresenceHub
from ..storage import AuctionStore
from ..transport.canonical_json import to_jsonable

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/auctions/update-statuses")
async def update_statuses(sweeper: LifecycleSweeper = Depends(get_sweeper)) -> dict[str, Any]:
    counts = await sweeper.sweep()
    return {"message": "auction statuses updated", **counts}


@router.get("/auctions/{auction_id}/participants")
async def participants(
    auction_id: str,
    store: AuctionStore = Depends(get_store),
    hub: PresenceHub = Depends(get_hub),
) -> dict[str, Any]:
    if await store.get_auction(auction_id) is None:
        raise HTTPException(status_code=404, detail="auction not found")
    bidders = await store.bidder_summary(auction_id)
    for entry in bidders:
        user = await store.get_user(entry["bidder_id"])
        entry["display_name"] = user.display_name if user else None
    return to_jsonable(
        {
            "auction_id": auction_id,
            "bidders": bidders,
            "total_bidders": len(bidders),
            "live_participants": await hub.participant_count(auction_id),
        }
    )
