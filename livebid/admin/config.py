"""Expose currently loaded server config for debugging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig
from ..dependencies import get_server_settings, require_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/config")
async def config(
    request: Request,
    config: ServerConfig = Depends(get_server_settings),
) -> dict:
    # Backend options are never echoed.
    return {
        "version": request.app.version,
        "log_level": config.log_level,
        "storage_backend": config.storage.backend,
        "cache_backend": config.cache.backend,
        "leading_bid_ttl_seconds": config.cache.leading_bid_ttl_seconds,
        "cache_write_timeout_seconds": config.cache.write_timeout_seconds,
        "commit_timeout_seconds": config.bidding.commit_timeout_seconds,
        "rate_limit": {
            "max_attempts": config.bidding.rate_limit.max_attempts,
            "window_seconds": config.bidding.rate_limit.window_seconds,
        },
        "lifecycle": {
            "enabled": config.lifecycle.enabled,
            "sweep_interval_seconds": config.lifecycle.sweep_interval_seconds,
        },
        "realtime": {
            "send_queue_size": config.realtime.send_queue_size,
            "notifications_page_size": config.realtime.notifications_page_size,
        },
        "auth_backend": config.auth.backend,
        "handoff_backend": config.handoff.backend,
    }
