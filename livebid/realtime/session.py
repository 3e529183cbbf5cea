"""Per-connection command loop for the /ws push channel."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from ..auction.views import AuctionViews
from ..auth.service import AuthService, Identity
from ..notifications.service import NotificationService
from ..transport.canonical_json import loads
from ..validation.validator import SchemaRegistry, ValidationError
from . import events
from .hub import Connection, PresenceHub

logger = logging.getLogger(__name__)

HANDSHAKE_REFUSED_CLOSE_CODE = 4401

Handler = Callable[[Connection, dict[str, Any]], Awaitable[None]]


def credential_from(websocket: WebSocket) -> str | None:
    """Bearer credential from the ``token`` query parameter or Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    scheme, _, value = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


class PushSession:
    def __init__(
        self,
        websocket: WebSocket,
        identity: Identity,
        *,
        hub: PresenceHub,
        auth: AuthService,
        views: AuctionViews,
        notifications: NotificationService,
        schemas: SchemaRegistry,
        page_size: int = 10,
        queue_size: int = 100,
        close_timeout: float = 1.0,
    ) -> None:
        self._websocket = websocket
        self._identity = identity
        self._hub = hub
        self._auth = auth
        self._views = views
        self._notifications = notifications
        self._schemas = schemas
        self._page_size = page_size
        self._queue_size = queue_size
        self._close_timeout = close_timeout
        self._handlers: dict[str, Handler] = {
            "joinAuction": self._join_auction,
            "leaveAuction": self._leave_auction,
            "subscribeToTimer": self._subscribe_timer,
            "unsubscribeFromTimer": self._unsubscribe_timer,
            "requestAuctionUpdate": self._request_auction_update,
            "markNotificationRead": self._mark_notification_read,
            "getNotifications": self._get_notifications,
            "getUnreadNotificationsCount": self._get_unread_count,
        }

    async def run(self) -> None:
        connection = Connection(
            self._identity,
            self._websocket.send_text,
            self._close,
            queue_size=self._queue_size,
        )
        self._hub.register(connection)
        writer = asyncio.create_task(connection.pump())
        try:
            while not connection.revoked:
                raw = await self._websocket.receive_text()
                await self.handle(connection, raw)
        except WebSocketDisconnect as exc:
            logger.debug("push client disconnected user=%s code=%s", connection.user_id, exc.code)
        finally:
            await self._stop_writer(writer, drain=connection.revoked)
            await self._hub.unregister(connection)

    async def handle(self, connection: Connection, raw: str) -> None:
        if not await self._auth.is_active(self._identity):
            logger.info("closing push session of inactive user=%s", connection.user_id)
            connection.revoke("user account is inactive")
            return
        try:
            message = loads(raw)
            self._schemas.validate("push_command", message)
        except ValidationError as exc:
            connection.deliver(events.ERROR, {"message": f"invalid command: {exc.message}"})
            return
        except ValueError:
            connection.deliver(events.ERROR, {"message": "invalid command: not JSON"})
            return
        action = message["action"]
        try:
            await self._handlers[action](connection, message)
        except LookupError as exc:
            connection.deliver(events.ERROR, {"message": exc.args[0] if exc.args else "not found"})
        except Exception:
            logger.exception("push command %s failed for user=%s", action, connection.user_id)
            connection.deliver(events.ERROR, {"message": f"failed to process {action}"})

    async def _join_auction(self, connection: Connection, message: dict[str, Any]) -> None:
        joined = await self._hub.join(connection, message["auction_id"])
        connection.deliver(events.AUCTION_JOINED, joined)

    async def _leave_auction(self, connection: Connection, message: dict[str, Any]) -> None:
        await self._hub.leave(connection, message["auction_id"])

    async def _subscribe_timer(self, connection: Connection, message: dict[str, Any]) -> None:
        state = await self._auction_state(message["auction_id"])
        self._hub.subscribe_timer(connection, state["auction_id"])
        connection.deliver(
            events.AUCTION_STATUS_CHANGED,
            {
                "auction_id": state["auction_id"],
                "status": state["status"],
                "start_time": state["start_time"],
                "end_time": state["end_time"],
            },
        )

    async def _unsubscribe_timer(self, connection: Connection, message: dict[str, Any]) -> None:
        self._hub.unsubscribe_timer(connection, message["auction_id"])

    async def _request_auction_update(self, connection: Connection, message: dict[str, Any]) -> None:
        connection.deliver(events.AUCTION_UPDATE, await self._auction_state(message["auction_id"]))

    async def _mark_notification_read(self, connection: Connection, message: dict[str, Any]) -> None:
        notification_id = message["notification_id"]
        if not await self._notifications.mark_read(notification_id, connection.user_id):
            raise LookupError("notification not found")
        connection.deliver(events.NOTIFICATION_MARKED_READ, {"notification_id": notification_id})
        await self._get_unread_count(connection, message)

    async def _get_notifications(self, connection: Connection, message: dict[str, Any]) -> None:
        page = await self._notifications.page(
            connection.user_id,
            message.get("page", 1),
            message.get("limit", self._page_size),
        )
        connection.deliver(events.NOTIFICATIONS, page)

    async def _get_unread_count(self, connection: Connection, message: dict[str, Any]) -> None:
        count = await self._notifications.unread_count(connection.user_id)
        connection.deliver(events.UNREAD_NOTIFICATIONS_COUNT, {"count": count})

    async def _auction_state(self, auction_id: str) -> dict[str, Any]:
        state = await self._views.auction_state(auction_id)
        if state is None:
            raise LookupError("auction not found")
        return state

    async def _close(self, code: int, reason: str) -> None:
        await self._websocket.close(code=code, reason=reason)

    async def _stop_writer(self, writer: asyncio.Task[None], *, drain: bool) -> None:
        if not drain:
            writer.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.wait_for(writer, timeout=self._close_timeout)
        except (asyncio.TimeoutError, WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("push writer stopped: %r", exc)
