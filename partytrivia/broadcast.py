"""Room-wide and unicast delivery of WebSocket messages."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Union

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from .exceptions import TransportError
from .registry import Connection, ConnectionRegistry
from .schemas import WireModel

logger = logging.getLogger(__name__)

Payload = Union[WireModel, Dict[str, Any]]


def _serialise(message: Payload) -> str:
    if isinstance(message, WireModel):
        return json.dumps(message.to_wire())
    return json.dumps(message)


def _is_open(socket: WebSocket) -> bool:
    try:
        return socket.client_state == WebSocketState.CONNECTED
    except Exception:
        # Broken sockets may fail on attribute access
        return False


class BroadcastFabric:
    """Fire-and-forget delivery on top of a :class:`ConnectionRegistry`."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def _send(self, socket: WebSocket, text: str) -> None:
        try:
            await socket.send_text(text)
        except Exception as exc:
            raise TransportError(str(exc)) from exc

    async def broadcast(self, room_id: int, message: Payload) -> int:
        """Send *message* to every open connection of *room_id*.

        Returns the number of sockets the frame was written to. A failing
        recipient is logged and skipped.
        """
        text = _serialise(message)
        delivered = 0
        for connection in list(self.registry.members_of(room_id)):
            if not _is_open(connection.socket):
                continue
            try:
                await self._send(connection.socket, text)
                delivered += 1
            except TransportError as exc:
                logger.warning(
                    "Dropping frame for user %s in room %s: %s",
                    connection.user_id, room_id, exc,
                )
        return delivered

    async def send_to_one(self, target: Union[Connection, WebSocket], message: Payload) -> bool:
        """Unicast *message*; returns False when the socket could not be written."""
        socket = target.socket if isinstance(target, Connection) else target
        if not _is_open(socket):
            return False
        try:
            await self._send(socket, _serialise(message))
        except TransportError as exc:
            logger.warning("Failed to deliver direct message: %s", exc)
            return False
        return True


__all__ = ["BroadcastFabric"]
