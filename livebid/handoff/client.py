"""Hand-off of closed auctions to the negotiation / email collaborator."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import ServerConfig
from ..transport.canonical_json import canonical_dumps

logger = logging.getLogger(__name__)


class _PublisherProtocol:
    async def publish(self, payload: dict[str, Any]) -> None:  # pragma: no cover - protocol
        raise NotImplementedError

    async def close(self) -> None:
        return None


class _LogPublisher(_PublisherProtocol):
    async def publish(self, payload: dict[str, Any]) -> None:
        logger.info(
            "[handoff] auction=%s closed winner=%s",
            payload.get("auction_id"),
            payload.get("winner_id"),
        )


class _WebhookPublisher(_PublisherProtocol):
    def __init__(self, options: dict[str, Any], client: httpx.AsyncClient | None = None) -> None:
        self._url = options.get("url")
        if not self._url:
            raise ValueError("webhook handoff requires url")
        self._timeout = options.get("timeout_ms", 2000) / 1000
        self._client = client or httpx.AsyncClient()

    async def publish(self, payload: dict[str, Any]) -> None:
        response = await self._client.post(
            self._url,
            content=canonical_dumps(payload),
            headers={"content-type": "application/json"},
            timeout=self._timeout,
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class EndedHandoff:
    def __init__(
        self,
        backend: str = "log",
        options: dict[str, Any] | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        options = options or {}
        self._publisher: _PublisherProtocol
        if backend == "webhook":
            self._publisher = _WebhookPublisher(options, client)
        elif backend == "log":
            self._publisher = _LogPublisher()
        else:
            raise ValueError(f"unknown handoff backend {backend}")

    async def auction_closed(self, payload: dict[str, Any]) -> bool:
        try:
            await self._publisher.publish(payload)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("handoff failed for auction=%s: %s", payload.get("auction_id"), exc)
            return False
        return True

    async def close(self) -> None:
        await self._publisher.close()


def build_handoff(config: ServerConfig) -> EndedHandoff:
    return EndedHandoff(config.handoff.backend, dict(config.handoff.options))
