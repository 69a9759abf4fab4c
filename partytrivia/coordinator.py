"""Room session coordinator.

Single public entry point for everything a client sends over its WebSocket.
The coordinator decodes the frame, works out who sent it (registered
connection + persisted membership), hands the event to a handler and turns
handler errors into unicast ``error`` replies. Nothing raised while handling
one event is allowed to escape and take the socket (or the process) down.
"""
from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict

from fastapi import WebSocket
from pydantic import ValidationError

from .broadcast import BroadcastFabric
from .constants import MODE_SPIN, MODE_TEAMS, PLAYING_TEAMS, SPECTATOR
from .exceptions import AuthorizationError, EventValidationError, NotFoundError, TriviaError
from .registry import ConnectionRegistry
from .schemas import (
    AnswerQuestionEvent,
    ChatBroadcast,
    ChatEvent,
    ChatMessageOut,
    ErrorMessage,
    GameUpdate,
    InboundEvent,
    JoinRoomEvent,
    SelectPlayerEvent,
    SpinEvent,
    SpinQuestion,
    SpinResult,
    StartGameEvent,
    SubmitTeamQuestionEvent,
    TeamChangeEvent,
    WrongAnswerEvent,
    parse_event,
)
from .store import TortoiseStore
from .turns import TurnStateMachine, announce

logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    """State of one WebSocket as seen by the coordinator.

    ``user_id`` is the authenticated user; ``room_id`` is the room the
    socket was opened against.
    """

    user_id: int
    room_id: int
    socket: WebSocket


@dataclass(frozen=True)
class Sender:
    room_id: int
    user_id: int
    team: str


Handler = Callable[[Sender, InboundEvent], Awaitable[None]]


class RoomSessionCoordinator:
    def __init__(
        self,
        registry: ConnectionRegistry,
        fabric: BroadcastFabric,
        store: TortoiseStore,
        turns: TurnStateMachine,
    ) -> None:
        self.registry = registry
        self.fabric = fabric
        self.store = store
        self.turns = turns
        self._handlers: Dict[str, Handler] = {
            "chat": self.handle_chat,
            "team_change": self.handle_team_change,
            "spin": self.handle_spin,
            "start_game": self.handle_start_game,
            "submit_team_question": self.handle_submit_question,
            "select_player": self.handle_select_player,
            "answer_question": self.handle_answer_question,
            "wrong_answer": self.handle_wrong_answer,
        }

    # ------------------------------------------------------------------
    # Entry points used by the websocket router
    # ------------------------------------------------------------------

    async def handle_raw(self, session: ClientSession, raw: str) -> None:
        """Decode and dispatch one text frame; never raises."""
        try:
            payload = json.loads(raw)
            event = parse_event(payload)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Dropping malformed frame from user %s: %s", session.user_id, exc)
            return
        await self.handle_event(session, event)

    async def handle_event(self, session: ClientSession, event: InboundEvent) -> None:
        try:
            await self.dispatch(session, event)
        except EventValidationError as exc:
            logger.warning("Rejected %s from user %s: %s", event.type, session.user_id, exc.message)
        except AuthorizationError as exc:
            logger.info("Refused %s from user %s: %s", event.type, session.user_id, exc.message)
            await self.fabric.send_to_one(session.socket, ErrorMessage(message=exc.message))
        except NotFoundError as exc:
            logger.info("Aborted %s from user %s: %s", event.type, session.user_id, exc.message)
            await self.fabric.send_to_one(session.socket, ErrorMessage(message=exc.message))
        except TriviaError as exc:
            logger.warning("Failed %s from user %s: %s", event.type, session.user_id, exc.message)
        except Exception:
            logger.exception("Unhandled error while processing %s from user %s", event.type, session.user_id)

    async def disconnect(self, session: ClientSession) -> None:
        """Forget the socket. Team slot, pending question and countdown stay as they are."""
        if self.registry.unregister(session.user_id, session.socket) is not None:
            logger.info("User %s left room %s", session.user_id, session.room_id)

    async def shutdown(self) -> None:
        await self.turns.shutdown()
        self.registry.clear()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, session: ClientSession, event: InboundEvent) -> None:
        if isinstance(event, JoinRoomEvent):
            await self.handle_join(session, event)
            return

        connection = self.registry.lookup(session.user_id)
        if connection is None or connection.socket is not session.socket:
            logger.debug("Ignoring %s from unregistered socket of user %s", event.type, session.user_id)
            return

        event_room = getattr(event, "room_id", None)
        if event_room is not None and event_room != connection.room_id:
            raise EventValidationError(f"Event for room {event_room} on a connection to room {connection.room_id}")

        sender = await self._resolve(connection.room_id, connection.user_id)
        await self._handlers[event.type](sender, event)

    async def _resolve(self, room_id: int, user_id: int) -> Sender:
        member = await self.store.get_room_user(room_id, user_id)
        return Sender(room_id=room_id, user_id=user_id, team=member.team or SPECTATOR)

    async def _require_mode(self, room_id: int, mode: str) -> None:
        room = await self.store.get_room(room_id)
        if room.mode != mode:
            if mode == MODE_SPIN:
                raise AuthorizationError("Spin mode is not enabled for this room.")
            raise AuthorizationError("Team questions are disabled while the room is in spin mode.")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_join(self, session: ClientSession, event: JoinRoomEvent) -> None:
        if event.room_id != session.room_id:
            raise EventValidationError(f"join_room for room {event.room_id} on a socket for room {session.room_id}")
        if event.user_id is not None and event.user_id != session.user_id:
            raise AuthorizationError("You can only join as yourself.")
        await self.store.get_room(session.room_id)
        await self.store.get_room_user(session.room_id, session.user_id)

        connection = self.registry.register(session.user_id, session.room_id, session.socket)
        logger.info("User %s joined room %s", session.user_id, session.room_id)
        await self.fabric.broadcast(session.room_id, GameUpdate(room_id=session.room_id))

        current = self.turns.snapshot(session.room_id)
        if current is not None:
            await self.fabric.send_to_one(connection, current)

    async def handle_chat(self, sender: Sender, event: ChatEvent) -> None:
        if event.team is not None and event.team != sender.team:
            raise AuthorizationError("You can only chat with your own team.")
        message = await self.store.create_message(sender.room_id, sender.user_id, event.content, "chat", event.team)
        names = await self.store.usernames([sender.user_id])
        await self.fabric.broadcast(
            sender.room_id,
            ChatBroadcast(
                message=ChatMessageOut(
                    id=message.id,
                    room_id=sender.room_id,
                    user_id=sender.user_id,
                    username=names.get(sender.user_id, "Unknown"),
                    content=message.content,
                    type=message.type,
                    team=message.team,
                    created_at=message.created_at,
                )
            ),
        )

    async def handle_team_change(self, sender: Sender, event: TeamChangeEvent) -> None:
        await self.store.update_room_user(sender.room_id, sender.user_id, team=event.team)
        logger.info("User %s moved to %s in room %s", sender.user_id, event.team, sender.room_id)
        await self.fabric.broadcast(sender.room_id, GameUpdate(room_id=sender.room_id))

    async def handle_spin(self, sender: Sender, event: SpinEvent) -> None:
        await self._require_mode(sender.room_id, MODE_SPIN)
        members = await self.store.get_room_users(sender.room_id)
        eligible = [m for m in members if m.team in PLAYING_TEAMS]
        if not eligible:
            raise NotFoundError("Nobody is on a team yet.")
        selected = random.choice(eligible)
        question = await self.store.get_random_question()
        await self.fabric.broadcast(
            sender.room_id,
            SpinResult(
                user_id=selected.user_id,
                question=SpinQuestion(
                    id=question.id,
                    text=question.text,
                    answer=question.answer,
                    category=question.category,
                    difficulty=question.difficulty,
                ),
            ),
        )

    async def handle_start_game(self, sender: Sender, event: StartGameEvent) -> None:
        room = await self.store.get_room(sender.room_id)
        if room.host_id != sender.user_id:
            raise AuthorizationError("Only the host can start the game")
        if room.status == "playing":
            raise AuthorizationError("The game has already started.")
        await self.store.update_room(room.id, status="playing")
        logger.info("Room %s started by host %s", room.id, sender.user_id)
        await announce(self.store, self.fabric, room.id, "The game has started!")
        await self.fabric.broadcast(room.id, GameUpdate(room_id=room.id))

    async def handle_submit_question(self, sender: Sender, event: SubmitTeamQuestionEvent) -> None:
        await self._require_mode(sender.room_id, MODE_TEAMS)
        await self.turns.submit_question(sender.room_id, sender.team, event.question, event.answer)

    async def handle_select_player(self, sender: Sender, event: SelectPlayerEvent) -> None:
        await self._require_mode(sender.room_id, MODE_TEAMS)
        await self.turns.select_player(sender.room_id, sender.team, event.player_id)

    async def handle_answer_question(self, sender: Sender, event: AnswerQuestionEvent) -> None:
        await self._require_mode(sender.room_id, MODE_TEAMS)
        await self.turns.answer_question(sender.room_id, sender.team, sender.user_id, event.answer)

    async def handle_wrong_answer(self, sender: Sender, event: WrongAnswerEvent) -> None:
        await self.turns.wrong_answer(sender.room_id, sender.team, sender.user_id)


__all__ = ["ClientSession", "Sender", "RoomSessionCoordinator"]
