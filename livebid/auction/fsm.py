"""Auction lifecycle finite state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum


class AuctionStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class LifecycleEvent(str, Enum):
    PUBLISH = "publish"
    START = "start"
    END = "end"
    CANCEL = "cancel"


_TRANSITIONS = {
    (AuctionStatus.DRAFT, LifecycleEvent.PUBLISH): AuctionStatus.SCHEDULED,
    (AuctionStatus.SCHEDULED, LifecycleEvent.START): AuctionStatus.ACTIVE,
    (AuctionStatus.ACTIVE, LifecycleEvent.END): AuctionStatus.ENDED,
    (AuctionStatus.DRAFT, LifecycleEvent.CANCEL): AuctionStatus.CANCELLED,
    (AuctionStatus.SCHEDULED, LifecycleEvent.CANCEL): AuctionStatus.CANCELLED,
    (AuctionStatus.ACTIVE, LifecycleEvent.CANCEL): AuctionStatus.CANCELLED,
}

_ORDER = {
    AuctionStatus.DRAFT: 0,
    AuctionStatus.SCHEDULED: 1,
    AuctionStatus.ACTIVE: 2,
    AuctionStatus.ENDED: 3,
}


def transition(current: AuctionStatus, event: LifecycleEvent) -> AuctionStatus:
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid transition from {current.value} via {event.value}") from exc


def compute_status(
    stored: AuctionStatus,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
) -> AuctionStatus:
    """Effective status of an auction at ``now``.

    Draft and cancelled auctions only move by explicit action, and a status
    never moves backwards even if the clock says it should.
    """
    if stored in (AuctionStatus.DRAFT, AuctionStatus.CANCELLED, AuctionStatus.ENDED):
        return stored
    if now >= end_time:
        return AuctionStatus.ENDED
    if now >= start_time:
        return AuctionStatus.ACTIVE
    return stored


def is_forward(current: AuctionStatus, new: AuctionStatus) -> bool:
    if new is AuctionStatus.CANCELLED:
        return current in (AuctionStatus.DRAFT, AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE)
    if current is AuctionStatus.CANCELLED:
        return False
    return _ORDER[new] > _ORDER[current]
