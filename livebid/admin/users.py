"""Account administration."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..auth.service import Identity
from ..dependencies import get_hub, get_store, require_admin
from ..realtime.hub import PresenceHub
from ..storage import AuctionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/users/{user_id}/deactivate")
async def deactivate_user(
    user_id: str,
    admin: Identity = Depends(require_admin),
    store: AuctionStore = Depends(get_store),
    hub: PresenceHub = Depends(get_hub),
) -> dict[str, Any]:
    if not await store.set_user_active(user_id, False):
        raise HTTPException(status_code=404, detail="user not found")
    closed = hub.revoke_user(user_id)
    logger.info("user %s deactivated by %s, closed %d session(s)", user_id, admin.user_id, closed)
    return {"user_id": user_id, "is_active": False, "closed_sessions": closed}
