"""Durable per-user notifications with live push delivery."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from ..auction.models import Auction, LeadingBidSnapshot, Notification, NotificationType
from ..auction.pricing import format_amount
from ..realtime.events import notification_payload
from ..realtime.hub import PresenceHub
from ..storage import AuctionStore
from ..transport.timestamps import utcnow

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        store: AuctionStore,
        hub: PresenceHub,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hub = hub
        self._clock = clock

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        *,
        auction_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        """Persist the notification, then push it to the user's live connections."""
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            created_at=self._clock(),
            auction_id=auction_id,
            data=data or {},
        )
        stored = await self._store.create_notification(notification)
        delivered = self._hub.publish_notification(user_id, notification_payload(stored))
        logger.debug(
            "notification %s type=%s user=%s pushed=%d",
            stored.notification_id,
            notification_type.value,
            user_id,
            delivered,
        )
        return stored

    async def page(self, user_id: str, page: int, limit: int) -> dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        items, total = await self._store.list_notifications(
            user_id, limit=limit, offset=(page - 1) * limit
        )
        return {
            "notifications": [item.as_dict() for item in items],
            "total_pages": -(-total // limit),
            "current_page": page,
            "total_items": total,
        }

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        return await self._store.mark_notification_read(notification_id, user_id)

    async def unread_count(self, user_id: str) -> int:
        return await self._store.count_unread(user_id)

    async def new_bid(self, auction: Auction, bidder_name: str, amount: Decimal) -> Notification:
        return await self.notify(
            auction.seller_id,
            NotificationType.NEW_BID,
            "New Bid on Your Auction",
            f'{bidder_name} placed a bid of {format_amount(amount)} on "{auction.title}"',
            auction_id=auction.auction_id,
            data={"amount": amount},
        )

    async def outbid(
        self,
        auction: Auction,
        user_id: str,
        previous_amount: Decimal,
        new_amount: Decimal,
    ) -> Notification:
        return await self.notify(
            user_id,
            NotificationType.OUTBID,
            "You Have Been Outbid",
            f'Your bid of {format_amount(previous_amount)} on "{auction.title}" has been '
            f"outbid. New highest bid: {format_amount(new_amount)}",
            auction_id=auction.auction_id,
            data={"previous_amount": previous_amount, "amount": new_amount},
        )

    async def auction_started(self, auction: Auction) -> Notification:
        return await self.notify(
            auction.seller_id,
            NotificationType.AUCTION_STARTED,
            "Auction Started",
            f'Your auction "{auction.title}" is now live',
            auction_id=auction.auction_id,
        )

    async def auction_closed(
        self,
        auction: Auction,
        final_bid: LeadingBidSnapshot | None,
        bidders: set[str],
    ) -> list[Notification]:
        """Won/lost/ended notifications for a freshly ended auction.

        Each recipient is notified independently; a failure is logged and the
        remaining recipients are still notified.
        """
        winner_id = final_bid.bidder_id if final_bid is not None else None
        amount = final_bid.amount if final_bid is not None else None
        pending: list[tuple[str, NotificationType, str, str, dict[str, Any]]] = []
        if winner_id is not None and amount is not None:
            pending.append(
                (
                    winner_id,
                    NotificationType.AUCTION_WON,
                    "Auction Won!",
                    f'Congratulations! You won the auction "{auction.title}" '
                    f"with a bid of {format_amount(amount)}",
                    {"amount": amount},
                )
            )
            for user_id in sorted(bidders - {winner_id}):
                pending.append(
                    (
                        user_id,
                        NotificationType.AUCTION_LOST,
                        "Auction Lost",
                        f'The auction "{auction.title}" has ended. '
                        f"The winning bid was {format_amount(amount)}",
                        {"amount": amount},
                    )
                )
        pending.append(
            (
                auction.seller_id,
                NotificationType.AUCTION_ENDED,
                "Auction Ended",
                f'Your auction "{auction.title}" has ended. '
                f"Highest bid: {format_amount(amount if amount is not None else Decimal(0))}",
                {"winner_id": winner_id, "amount": amount},
            )
        )

        sent = []
        for user_id, notification_type, title, message, data in pending:
            try:
                sent.append(
                    await self.notify(
                        user_id,
                        notification_type,
                        title,
                        message,
                        auction_id=auction.auction_id,
                        data=data,
                    )
                )
            except Exception:
                logger.exception(
                    "%s notification failed auction=%s user=%s",
                    notification_type.value,
                    auction.auction_id,
                    user_id,
                )
        return sent
