"""Presence hub: live auction rooms, per-user channels and push fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterable

from ..auction.models import new_id
from ..auction.views import AuctionViews
from ..auth.service import Identity
from ..cache import FastPathCache
from ..transport.canonical_json import encode_frame
from . import events

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]
CloseSocket = Callable[[int, str], Awaitable[None]]

REVOKED_CLOSE_CODE = 4403


class Connection:
    """One authenticated push connection with a bounded outbound queue.

    ``deliver`` never waits: when the queue is full the frame is dropped for
    this connection only. ``pump`` drains the queue onto the socket.
    """

    def __init__(
        self,
        identity: Identity,
        send_text: SendText,
        close: CloseSocket,
        *,
        queue_size: int = 100,
    ) -> None:
        self.connection_id = new_id()
        self.identity = identity
        self.auctions: set[str] = set()
        self.timers: set[str] = set()
        self.dropped = 0
        self.revoked = False
        self._send_text = send_text
        self._close = close
        self._queue: asyncio.Queue[str | tuple[int, str]] = asyncio.Queue(
            maxsize=max(queue_size, 2)
        )

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    def deliver(self, event: str, data: Any) -> bool:
        return self.deliver_frame(encode_frame(event, data))

    def deliver_frame(self, frame: str) -> bool:
        if self.revoked:
            return False
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "dropping push frame for slow connection=%s user=%s dropped=%d",
                self.connection_id,
                self.user_id,
                self.dropped,
            )
            return False
        return True

    def revoke(self, message: str, code: int = REVOKED_CLOSE_CODE) -> None:
        """Discard pending frames, send one error frame and close the socket."""
        if self.revoked:
            return
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(encode_frame(events.ERROR, {"message": message}))
        self._queue.put_nowait((code, message))
        self.revoked = True

    async def pump(self) -> None:
        while True:
            item = await self._queue.get()
            if not await self._write(item):
                return

    async def flush(self) -> None:
        while not self._queue.empty():
            if not await self._write(self._queue.get_nowait()):
                return

    async def _write(self, item: str | tuple[int, str]) -> bool:
        if isinstance(item, tuple):
            code, reason = item
            await self._close(code, reason)
            return False
        await self._send_text(item)
        return True


class PresenceHub:
    def __init__(self, cache: FastPathCache, views: AuctionViews) -> None:
        self._cache = cache
        self._views = views
        self._rooms: dict[str, set[Connection]] = defaultdict(set)
        self._timers: dict[str, set[Connection]] = defaultdict(set)
        self._users: dict[str, set[Connection]] = defaultdict(set)

    def register(self, connection: Connection) -> None:
        self._users[connection.user_id].add(connection)
        logger.info(
            "push connection opened user=%s connection=%s",
            connection.user_id,
            connection.connection_id,
        )

    async def unregister(self, connection: Connection) -> None:
        for auction_id in list(connection.auctions):
            await self.leave(connection, auction_id)
        for auction_id in list(connection.timers):
            self.unsubscribe_timer(connection, auction_id)
        channel = self._users.get(connection.user_id)
        if channel is not None:
            channel.discard(connection)
            if not channel:
                del self._users[connection.user_id]
        logger.info(
            "push connection closed user=%s connection=%s",
            connection.user_id,
            connection.connection_id,
        )

    async def join(self, connection: Connection, auction_id: str) -> dict[str, Any]:
        state = await self._views.auction_state(auction_id)
        if state is None:
            raise LookupError("auction not found")
        self._rooms[auction_id].add(connection)
        connection.auctions.add(auction_id)
        await self._cache.add_participant(auction_id, connection.user_id)
        count = await self.participant_count(auction_id)
        self._fan_out(
            self._rooms[auction_id],
            events.PARTICIPANT_JOINED,
            events.participant_payload(auction_id, connection.identity.public(), count),
            exclude=connection,
        )
        return {
            "auction_id": auction_id,
            "auction": state,
            "highest_bid": state["highest_bid"],
            "participant_count": count,
        }

    async def leave(self, connection: Connection, auction_id: str) -> None:
        connection.auctions.discard(auction_id)
        room = self._rooms.get(auction_id)
        if room is None or connection not in room:
            return
        room.discard(connection)
        if not any(other.user_id == connection.user_id for other in room):
            await self._cache.remove_participant(auction_id, connection.user_id)
        count = await self.participant_count(auction_id)
        self._fan_out(
            room,
            events.PARTICIPANT_LEFT,
            events.participant_payload(auction_id, connection.identity.public(), count),
        )
        if not room:
            del self._rooms[auction_id]

    def subscribe_timer(self, connection: Connection, auction_id: str) -> None:
        self._timers[auction_id].add(connection)
        connection.timers.add(auction_id)

    def unsubscribe_timer(self, connection: Connection, auction_id: str) -> None:
        connection.timers.discard(auction_id)
        subscribers = self._timers.get(auction_id)
        if subscribers is None:
            return
        subscribers.discard(connection)
        if not subscribers:
            del self._timers[auction_id]

    async def participant_count(self, auction_id: str) -> int:
        participants = await self._cache.list_participants(auction_id)
        participants.update(conn.user_id for conn in self._rooms.get(auction_id, ()))
        return len(participants)

    def publish_bid(self, auction_id: str, payload: dict[str, Any]) -> int:
        return self._fan_out(self._rooms.get(auction_id, ()), events.NEW_BID, payload)

    def publish_notification(self, user_id: str, payload: dict[str, Any]) -> int:
        return self._fan_out(self._users.get(user_id, ()), events.NOTIFICATION, payload)

    def publish_lifecycle_event(self, auction_id: str, kind: str, payload: dict[str, Any]) -> int:
        """Room event for ``kind`` plus a status change for timer subscribers.

        Timer subscribers outside the room get the same payload (times, final
        bid, winner) under ``auctionStatusChanged``.
        """
        room = self._rooms.get(auction_id, ())
        delivered = self._fan_out(room, events.room_event_for(kind), payload)
        watchers = [conn for conn in self._timers.get(auction_id, ()) if conn not in room]
        delivered += self._fan_out(
            watchers,
            events.AUCTION_STATUS_CHANGED,
            {**payload, "auction_id": auction_id, "status": payload.get("status", kind)},
        )
        return delivered

    def revoke_user(self, user_id: str, message: str = "user account is inactive") -> int:
        connections = list(self._users.get(user_id, ()))
        for connection in connections:
            connection.revoke(message)
        if connections:
            logger.info("revoked %d push connection(s) for user=%s", len(connections), user_id)
        return len(connections)

    def stats(self) -> dict[str, Any]:
        connections = {conn for channel in self._users.values() for conn in channel}
        return {
            "connections": len(connections),
            "users": len(self._users),
            "rooms": {auction_id: len(room) for auction_id, room in self._rooms.items()},
            "timer_subscriptions": sum(len(subs) for subs in self._timers.values()),
            "dropped_frames": sum(conn.dropped for conn in connections),
        }

    def _fan_out(
        self,
        connections: Iterable[Connection],
        event: str,
        payload: dict[str, Any],
        *,
        exclude: Connection | None = None,
    ) -> int:
        targets = [conn for conn in connections if conn is not exclude]
        if not targets:
            return 0
        frame = encode_frame(event, payload)
        return sum(1 for conn in targets if conn.deliver_frame(frame))
