"""Live connection bookkeeping.

Maps each user to the socket they are playing on and the room that socket
joined. The registry is an owned object: the application creates one on
startup, hands it to the broadcast fabric and the coordinator, and clears it
on shutdown. Nothing here touches the database.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Connection:
    """One live socket of a user inside a room."""

    user_id: int
    room_id: int
    socket: WebSocket


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: Dict[int, Connection] = {}

    def register(self, user_id: int, room_id: int, socket: WebSocket) -> Connection:
        """Record *socket* as the connection of *user_id*, replacing any previous one."""
        previous = self._connections.get(user_id)
        if previous is not None and previous.socket is not socket:
            logger.info(
                "User %s re-joined (room %s -> %s); replacing previous connection",
                user_id, previous.room_id, room_id,
            )
        connection = Connection(user_id=user_id, room_id=room_id, socket=socket)
        self._connections[user_id] = connection
        return connection

    def unregister(self, user_id: int, socket: Optional[WebSocket] = None) -> Optional[Connection]:
        """Drop the connection of *user_id*.

        When *socket* is given the entry is only removed if it still belongs to
        that socket, so a stale socket closing late cannot evict a newer join.
        """
        current = self._connections.get(user_id)
        if current is None:
            return None
        if socket is not None and current.socket is not socket:
            return None
        return self._connections.pop(user_id)

    def lookup(self, user_id: int) -> Optional[Connection]:
        return self._connections.get(user_id)

    def members_of(self, room_id: int) -> Set[Connection]:
        return {c for c in self._connections.values() if c.room_id == room_id}

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)


__all__ = ["Connection", "ConnectionRegistry"]
