"""Shared auction data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from .fsm import AuctionStatus

ZERO = Decimal("0.00")


def new_id() -> str:
    return uuid4().hex


class AuctionNotFound(KeyError):
    """Raised when an auction id is not present in the registry."""


@dataclass
class Auction:
    auction_id: str
    seller_id: str
    starting_price: Decimal
    bid_increment: Decimal
    start_time: datetime
    end_time: datetime
    status: AuctionStatus = AuctionStatus.DRAFT
    title: str = ""
    description: str = ""
    category: str = "Other"
    current_highest_bid: Decimal = ZERO
    winner_id: str | None = None
    winning_bid: Decimal | None = None
    seller_decision: str = "pending"
    counter_offer_amount: Decimal | None = None
    counter_offer_status: str | None = None
    is_transaction_complete: bool = False

    def __post_init__(self) -> None:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.starting_price <= 0 or self.bid_increment <= 0:
            raise ValueError("starting_price and bid_increment must be positive")
        self.status = AuctionStatus(self.status)

    @property
    def leading_amount(self) -> Decimal:
        """Registry view of the amount the next bid has to beat."""
        if self.winner_id is not None and self.winning_bid is not None:
            return self.winning_bid
        return self.starting_price

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Bid:
    auction_id: str
    bidder_id: str
    amount: Decimal
    bid_time: datetime
    bid_id: str = field(default_factory=new_id)
    is_winning: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LeadingBidSnapshot:
    auction_id: str
    bid_id: str
    amount: Decimal
    bidder_id: str
    bidder_display: str | None
    bid_time: datetime

    @classmethod
    def from_bid(cls, bid: Bid, bidder_display: str | None) -> "LeadingBidSnapshot":
        return cls(
            auction_id=bid.auction_id,
            bid_id=bid.bid_id,
            amount=bid.amount,
            bidder_id=bid.bidder_id,
            bidder_display=bidder_display,
            bid_time=bid.bid_time,
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationType(str, Enum):
    NEW_BID = "new_bid"
    OUTBID = "outbid"
    AUCTION_WON = "auction_won"
    AUCTION_LOST = "auction_lost"
    AUCTION_ENDED = "auction_ended"
    BID_ACCEPTED = "bid_accepted"
    BID_REJECTED = "bid_rejected"
    COUNTER_OFFER = "counter_offer"
    COUNTER_OFFER_ACCEPTED = "counter_offer_accepted"
    COUNTER_OFFER_REJECTED = "counter_offer_rejected"
    AUCTION_STARTED = "auction_started"


@dataclass
class Notification:
    user_id: str
    type: NotificationType
    title: str
    message: str
    created_at: datetime
    auction_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    notification_id: str = field(default_factory=new_id)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class User:
    user_id: str
    display_name: str
    role: str = "buyer"
    is_active: bool = True
