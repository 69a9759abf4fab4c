"""Durable storage for rooms, memberships, messages and questions.

Thin async wrapper over the Tortoise ORM models. Lookups that must succeed
raise :class:`~partytrivia.exceptions.NotFoundError` instead of returning
``None`` so callers can abort an operation with a single ``except``.
"""
from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from .constants import DEFAULT_QUESTIONS, PLAYING_TEAMS, ROOM_CODE_ALPHABET, SPECTATOR, SYSTEM_USER_ID
from .exceptions import NotFoundError
from .models import Message, Question, Room, RoomUser, User

logger = logging.getLogger(__name__)

SYSTEM_USERNAME = "System"


class TortoiseStore:
    """Persistence collaborator used by the coordinator and HTTP routers."""

    def __init__(self, code_length: int = 6) -> None:
        self.code_length = code_length

    # -------------------- Rooms -------------------- #

    async def _generate_code(self) -> str:
        while True:
            code = "".join(random.choices(ROOM_CODE_ALPHABET, k=self.code_length))
            if not await Room.filter(code=code).exists():
                return code

    async def create_room(self, host_id: int) -> Room:
        """Create a lobby room and the host's membership."""
        code = await self._generate_code()
        async with in_transaction():
            room = await Room.create(code=code, host_id=host_id)
            await RoomUser.create(room_id=room.id, user_id=host_id, is_host=True)
        logger.info("Room %s created by user %s (code %s)", room.id, host_id, code)
        return room

    async def get_room(self, room_id: int) -> Room:
        room = await Room.get_or_none(id=room_id)
        if room is None:
            raise NotFoundError("Room not found")
        return room

    async def get_room_by_code(self, code: str) -> Room:
        room = await Room.get_or_none(code=code.strip().upper())
        if room is None:
            raise NotFoundError("Room not found")
        return room

    async def update_room(self, room_id: int, **changes: Any) -> Room:
        room = await self.get_room(room_id)
        if changes:
            room.update_from_dict(changes)
            await room.save(update_fields=list(changes))
        return room

    async def increment_score(self, room_id: int, team: str) -> Room:
        """Atomically add one point to *team*'s score."""
        if team not in PLAYING_TEAMS:
            raise ValueError(f"Cannot score for team {team!r}")
        field = f"{team}_score"
        updated = await Room.filter(id=room_id).update(**{field: F(field) + 1})
        if not updated:
            raise NotFoundError("Room not found")
        return await self.get_room(room_id)

    # -------------------- Memberships -------------------- #

    async def add_user_to_room(self, room_id: int, user_id: int, is_host: bool = False) -> RoomUser:
        existing = await RoomUser.get_or_none(room_id=room_id, user_id=user_id)
        if existing is not None:
            return existing
        return await RoomUser.create(room_id=room_id, user_id=user_id, is_host=is_host, team=SPECTATOR)

    async def get_room_users(self, room_id: int) -> List[RoomUser]:
        return await RoomUser.filter(room_id=room_id).prefetch_related("user").order_by("id")

    async def get_room_user(self, room_id: int, user_id: int) -> RoomUser:
        member = await RoomUser.get_or_none(room_id=room_id, user_id=user_id)
        if member is None:
            raise NotFoundError("You are not a member of this room")
        return member

    async def update_room_user(self, room_id: int, user_id: int, **changes: Any) -> RoomUser:
        member = await self.get_room_user(room_id, user_id)
        if changes:
            member.update_from_dict(changes)
            await member.save(update_fields=list(changes))
        return member

    # -------------------- Messages -------------------- #

    async def create_message(
        self,
        room_id: int,
        user_id: int,
        content: str,
        type: str = "chat",
        team: Optional[str] = None,
    ) -> Message:
        return await Message.create(room_id=room_id, user_id=user_id, content=content, type=type, team=team)

    async def usernames(self, user_ids: List[int]) -> Dict[int, str]:
        names = {SYSTEM_USER_ID: SYSTEM_USERNAME}
        wanted = {uid for uid in user_ids if uid != SYSTEM_USER_ID}
        if wanted:
            for user in await User.filter(id__in=wanted):
                names[user.id] = user.username
        return names

    async def get_room_messages(self, room_id: int) -> List[Dict[str, Any]]:
        """Return the room's messages in creation order, each with its author's username."""
        messages = await Message.filter(room_id=room_id).order_by("created_at", "id")
        names = await self.usernames([m.user_id for m in messages])
        return [
            {
                "id": m.id,
                "room_id": m.room_id,
                "user_id": m.user_id,
                "username": names.get(m.user_id, "Unknown"),
                "content": m.content,
                "type": m.type,
                "team": m.team,
                "created_at": m.created_at,
            }
            for m in messages
        ]

    # -------------------- Questions -------------------- #

    async def get_questions(self) -> List[Question]:
        return await Question.filter(room_id__isnull=True).order_by("id")

    async def create_question(
        self, text: str, answer: str, category: str = "general", difficulty: str = "medium"
    ) -> Question:
        return await Question.create(text=text, answer=answer, category=category, difficulty=difficulty)

    async def get_random_question(self) -> Question:
        bank = Question.filter(room_id__isnull=True)
        count = await bank.count()
        if not count:
            raise NotFoundError("No questions available")
        question = await Question.filter(room_id__isnull=True).order_by("id").offset(random.randrange(count)).first()
        if question is None:
            raise NotFoundError("No questions available")
        return question

    async def create_team_question(self, room_id: int, text: str, answer: str, author_team: str) -> Question:
        """Store *text*/*answer* as the room's pending question, replacing any earlier one."""
        async with in_transaction():
            await Question.filter(room_id=room_id).delete()
            return await Question.create(room_id=room_id, text=text, answer=answer, author_team=author_team)

    async def get_team_question_for_room(self, room_id: int) -> Question:
        question = await Question.get_or_none(room_id=room_id)
        if question is None:
            raise NotFoundError("There is no question to answer.")
        return question

    async def clear_team_question_for_room(self, room_id: int, question_id: Optional[int] = None) -> int:
        """Delete the room's pending question (only *question_id* when given)."""
        pending = Question.filter(room_id=room_id)
        if question_id is not None:
            pending = pending.filter(id=question_id)
        return await pending.delete()

    async def seed_questions(self) -> int:
        """Populate an empty question bank with the default questions."""
        if await Question.filter(room_id__isnull=True).exists():
            return 0
        for entry in DEFAULT_QUESTIONS:
            await self.create_question(entry["text"], entry["answer"])
        logger.info("Seeded %d default questions", len(DEFAULT_QUESTIONS))
        return len(DEFAULT_QUESTIONS)


__all__ = ["TortoiseStore", "SYSTEM_USERNAME"]
