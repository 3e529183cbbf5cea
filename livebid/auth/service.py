"""Bearer credential verification against the auth collaborator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

import httpx

from ..config import ServerConfig
from ..storage import AuctionStore
from ..transport.timestamps import utcnow
from .tokens import TokenError, verify_token

logger = logging.getLogger(__name__)


class AuthError(ValueError):
    """Raised when a caller cannot be authenticated."""


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str
    display_name: str
    credential: str = field(default="", repr=False, compare=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def public(self) -> dict[str, Any]:
        return {"id": self.user_id, "display_name": self.display_name}


class AuthService(Protocol):
    async def authenticate(self, credential: str | None) -> Identity: ...

    async def is_active(self, identity: Identity) -> bool: ...

    async def close(self) -> None: ...


class LocalAuthService:
    """Verifies signed credentials locally and consults the user directory."""

    def __init__(
        self,
        store: AuctionStore,
        public_key_pem: str,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not public_key_pem:
            raise ValueError("auth.public_key is required for the local auth backend")
        self._store = store
        self._public_key = public_key_pem
        self._clock = clock

    async def authenticate(self, credential: str | None) -> Identity:
        try:
            claims = verify_token(credential or "", self._public_key, now=self._clock())
        except TokenError as exc:
            raise AuthError(str(exc)) from exc
        user = await self._store.get_user(claims["sub"])
        if user is None:
            raise AuthError("user not found")
        if not user.is_active:
            raise AuthError("user account is inactive")
        return Identity(
            user_id=user.user_id,
            role=user.role,
            display_name=user.display_name,
            credential=credential or "",
        )

    async def is_active(self, identity: Identity) -> bool:
        user = await self._store.get_user(identity.user_id)
        return bool(user and user.is_active)

    async def close(self) -> None:
        return None


class RemoteAuthService:
    """Delegates the verdict to the auth service's introspection endpoint."""

    def __init__(
        self,
        *,
        introspection_url: str,
        timeout_ms: int = 500,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not introspection_url:
            raise ValueError("introspection_url required for the remote auth backend")
        self._url = introspection_url
        self._timeout = timeout_ms / 1000
        self._client = client or httpx.AsyncClient()

    async def authenticate(self, credential: str | None) -> Identity:
        if not credential:
            raise AuthError("credential missing")
        try:
            response = await self._client.post(
                self._url,
                json={"token": credential},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("auth introspection failed: %s", exc)
            raise AuthError("auth service unavailable") from exc
        if not data.get("active"):
            raise AuthError("credential rejected by auth service")
        subject = data.get("sub")
        if not subject:
            raise AuthError("credential subject missing")
        return Identity(
            user_id=str(subject),
            role=str(data.get("role", "buyer")),
            display_name=str(data.get("name") or subject),
            credential=credential,
        )

    async def is_active(self, identity: Identity) -> bool:
        try:
            await self.authenticate(identity.credential)
        except AuthError:
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()


def build_auth(config: ServerConfig, store: AuctionStore) -> AuthService:
    backend = config.auth.backend
    if backend == "local":
        return LocalAuthService(store, config.auth.public_key)
    if backend == "remote":
        return RemoteAuthService(**dict(config.auth.options))
    raise ValueError(f"unknown auth backend {backend}")
