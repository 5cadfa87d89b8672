"""Session Room Manager.

Maps room identifiers to the set of connected clients and fans events out
to them. A room is a live broadcast group, not a queue: events sent to a
room with no members are dropped.

All methods are synchronous and run on the event loop thread, so the
membership sets need no lock. A multi-threaded server must add one.
"""

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import Turn

logger = get_logger(__name__)


RECEIVE_MESSAGE_EVENT = "receive-message"
DEFAULT_MAX_PENDING = 1000


class ClientConnection:
    """
    One connected client.

    Outbound events are queued and written by the transport's writer task,
    so delivering never suspends the caller. A client that lets
    ``max_pending`` events pile up is closed; the writer sends what is
    already queued and then drops the socket.
    """

    def __init__(
        self,
        connection_id: Optional[str] = None,
        max_pending: int = DEFAULT_MAX_PENDING
    ) -> None:
        self.id = connection_id or str(uuid.uuid4())
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_pending)
        self.closed = False
        self.overflowed = False

    def deliver(self, event: str, data: Any) -> None:
        """Queue an event for this client; a no-op once closed."""
        if self.closed:
            return
        try:
            self.outbox.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning(
                "Slow client closed",
                connection_id=self.id,
                pending=self.outbox.qsize(),
                dropped_event=event
            )
            self.overflowed = True
            self.close()

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"ClientConnection(id={self.id!r})"


@dataclass
class Room:
    """A broadcast group. Membership is transient and rebuilt on reconnect."""
    id: str
    members: dict[str, ClientConnection] = field(default_factory=dict)


class RoomManager:
    """
    Owns room membership and event fan-out.

    Responsibilities:
    - Join and leave rooms (both idempotent)
    - Prune a connection from every room on disconnect
    - Deliver events to every current member of a room
    """

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}
        self._memberships: dict[str, set[str]] = defaultdict(set)

    def join(self, connection: ClientConnection, room_id: str) -> None:
        """Add ``connection`` to ``room_id``. Repeated joins are harmless."""
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(id=room_id)
            self._rooms[room_id] = room

        room.members[connection.id] = connection
        self._memberships[connection.id].add(room_id)

        logger.debug("Connection joined room", connection_id=connection.id, room_id=room_id)

    def leave(self, connection: ClientConnection, room_id: str) -> None:
        """Remove ``connection`` from ``room_id``. No error if absent."""
        room = self._rooms.get(room_id)
        if room is not None:
            room.members.pop(connection.id, None)
            if not room.members:
                del self._rooms[room_id]

        rooms = self._memberships.get(connection.id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._memberships[connection.id]

    def leave_all(self, connection: ClientConnection) -> list[str]:
        """Remove ``connection`` from every room it joined."""
        room_ids = sorted(self._memberships.get(connection.id, ()))
        for room_id in room_ids:
            self.leave(connection, room_id)

        if room_ids:
            logger.debug("Connection pruned", connection_id=connection.id, rooms=room_ids)
        return room_ids

    def members(self, room_id: str) -> list[ClientConnection]:
        """Current members of ``room_id``."""
        room = self._rooms.get(room_id)
        return list(room.members.values()) if room else []

    def rooms_of(self, connection: ClientConnection) -> set[str]:
        return set(self._memberships.get(connection.id, ()))

    def broadcast(self, room_id: str, event: str, data: Any) -> int:
        """
        Deliver an event to every member of ``room_id``.

        Returns:
            Number of connections the event was handed to; 0 for an empty
            or unknown room
        """
        delivered = 0
        for connection in self.members(room_id):
            try:
                connection.deliver(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Delivery failed",
                    connection_id=connection.id,
                    room_id=room_id,
                    event=event,
                    error=str(e)
                )
        return delivered

    def broadcast_turn(self, room_id: str, turn: Turn) -> int:
        """Deliver ``turn`` to the room as a ``receive-message`` event."""
        return self.broadcast(room_id, RECEIVE_MESSAGE_EVENT, turn.to_wire())

    def get_stats(self) -> dict[str, Any]:
        """Get room manager statistics."""
        return {
            "rooms": len(self._rooms),
            "connections": len(self._memberships),
        }
