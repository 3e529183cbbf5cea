from __future__ import annotations

from decimal import Decimal

import httpx
import orjson
import pytest

from livebid.handoff.client import EndedHandoff

PAYLOAD = {
    "auction_id": "a1",
    "seller_id": "seller",
    "winner_id": "z",
    "winning_bid": Decimal("1500.00"),
    "ended_at": "2026-03-01T13:00:00Z",
}


@pytest.mark.asyncio
async def test_log_backend(caplog):
    handoff = EndedHandoff()
    with caplog.at_level("INFO", logger="livebid.handoff.client"):
        assert await handoff.auction_closed(PAYLOAD) is True
    assert "auction=a1 closed winner=z" in caplog.text


@pytest.mark.asyncio
async def test_webhook_posts_canonical_json():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    handoff = EndedHandoff("webhook", {"url": "http://negotiation.test/closed"}, client=client)

    assert await handoff.auction_closed(PAYLOAD) is True
    body = orjson.loads(requests[0].content)
    assert body["winner_id"] == "z"
    assert body["winning_bid"] == 1500.0
    await handoff.close()


@pytest.mark.asyncio
async def test_webhook_failure_is_reported_not_raised():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    handoff = EndedHandoff("webhook", {"url": "http://negotiation.test/closed"}, client=client)
    assert await handoff.auction_closed(PAYLOAD) is False


def test_configuration_errors():
    with pytest.raises(ValueError):
        EndedHandoff("carrier-pigeon")
    with pytest.raises(ValueError):
        EndedHandoff("webhook", {})
