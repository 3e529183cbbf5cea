"""FastAPI dependency helpers reading services off ``app.state``."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auction.coordinator import BidCoordinator
from .auction.sweeper import LifecycleSweeper
from .auction.views import AuctionViews
from .auth.service import AuthError, AuthService, Identity
from .cache import FastPathCache
from .config import ServerConfig
from .realtime.hub import PresenceHub
from .storage import AuctionStore
from .transport.rate_limit import SlidingWindowLimiter
from .validation.validator import SchemaRegistry

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_store(request: Request) -> AuctionStore:
    return request.app.state.store


def get_cache(request: Request) -> FastPathCache:
    return request.app.state.cache


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def get_views(request: Request) -> AuctionViews:
    return request.app.state.views


def get_hub(request: Request) -> PresenceHub:
    return request.app.state.hub


def get_coordinator(request: Request) -> BidCoordinator:
    return request.app.state.coordinator


def get_sweeper(request: Request) -> LifecycleSweeper:
    return request.app.state.sweeper


def get_bid_limiter(request: Request) -> SlidingWindowLimiter:
    return request.app.state.bid_limiter


async def current_identity(
    token: HTTPAuthorizationCredentials | None = Depends(security),
    auth: AuthService = Depends(get_auth_service),
) -> Identity:
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await auth.authenticate(token.credentials)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.is_admin:
        logger.warning("user %s attempted admin access with role %s", identity.user_id, identity.role)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin privileges required")
    return identity
