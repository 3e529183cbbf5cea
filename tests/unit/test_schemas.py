from __future__ import annotations

import pytest

from livebid.validation.validator import ValidationError, get_schema_registry


def test_registry_loads_every_schema():
    assert get_schema_registry().names == ["bid_request", "push_command"]


@pytest.mark.parametrize("payload", [{"amount": 1100}, {"amount": "1100.50"}])
def test_bid_request_accepts(payload):
    get_schema_registry().validate("bid_request", payload)


@pytest.mark.parametrize(
    "payload",
    [{}, {"amount": None}, {"amount": [1100]}, {"amount": 1100, "bidder_id": "x"}],
)
def test_bid_request_rejects(payload):
    with pytest.raises(ValidationError):
        get_schema_registry().validate("bid_request", payload)


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "joinAuction", "auction_id": "a1"},
        {"action": "getNotifications", "page": 2, "limit": 20},
        {"action": "markNotificationRead", "notification_id": "n1"},
        {"action": "getUnreadNotificationsCount"},
    ],
)
def test_push_command_accepts(payload):
    get_schema_registry().validate("push_command", payload)


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "placeBid", "auction_id": "a1"},
        {"action": "joinAuction"},
        {"action": "subscribeToTimer", "auction_id": ""},
        {"action": "markNotificationRead"},
        {"action": "getNotifications", "limit": 500},
    ],
)
def test_push_command_rejects(payload):
    with pytest.raises(ValidationError):
        get_schema_registry().validate("push_command", payload)


def test_unknown_schema():
    with pytest.raises(ValueError):
        get_schema_registry().validate("bid_reply", {})
