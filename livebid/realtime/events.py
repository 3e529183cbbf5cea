"""Push event names and payload builders shared by the hub and its publishers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from ..auction.models import Bid, LeadingBidSnapshot, Notification

AUCTION_JOINED = "auctionJoined"
AUCTION_UPDATE = "auctionUpdate"
NEW_BID = "newBid"
NOTIFICATION = "notification"
AUCTION_STARTED = "auctionStarted"
AUCTION_ENDED = "auctionEnded"
AUCTION_STATUS_CHANGED = "auctionStatusChanged"
PARTICIPANT_JOINED = "participantJoined"
PARTICIPANT_LEFT = "participantLeft"
NOTIFICATIONS = "notifications"
NOTIFICATION_MARKED_READ = "notificationMarkedRead"
UNREAD_NOTIFICATIONS_COUNT = "unreadNotificationsCount"
ERROR = "error"

LIFECYCLE_STARTED = "started"
LIFECYCLE_ENDED = "ended"

_ROOM_EVENTS = {
    LIFECYCLE_STARTED: AUCTION_STARTED,
    LIFECYCLE_ENDED: AUCTION_ENDED,
}


def room_event_for(kind: str) -> str:
    try:
        return _ROOM_EVENTS[kind]
    except KeyError as exc:
        raise ValueError(f"unknown lifecycle event kind {kind}") from exc


def snapshot_payload(snapshot: LeadingBidSnapshot | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {
        "bid_id": snapshot.bid_id,
        "amount": snapshot.amount,
        "bidder_id": snapshot.bidder_id,
        "bidder": {"id": snapshot.bidder_id, "display_name": snapshot.bidder_display},
        "bid_time": snapshot.bid_time,
    }


def bid_payload(
    bid: Bid,
    bidder_display: str | None,
    minimum_next_bid: Decimal,
) -> dict[str, Any]:
    return {
        "auction_id": bid.auction_id,
        "bid_id": bid.bid_id,
        "amount": bid.amount,
        "bidder": {"id": bid.bidder_id, "display_name": bidder_display},
        "bid_time": bid.bid_time,
        "minimum_next_bid": minimum_next_bid,
    }


def notification_payload(notification: Notification) -> dict[str, Any]:
    return {
        "notification_id": notification.notification_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "auction_id": notification.auction_id,
    }


def participant_payload(auction_id: str, user: dict[str, Any], count: int) -> dict[str, Any]:
    return {"auction_id": auction_id, "user": user, "count": count}
