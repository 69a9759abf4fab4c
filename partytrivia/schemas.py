"""Pydantic data schemas used across the backend service.

This module centralises all models so that other packages can import
from a single location instead of sprinkling the definitions across
multiple files. WebSocket payloads use camelCase on the wire; Python code
uses snake_case attribute names.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

Team = Literal["red", "blue", "spectator"]
PlayingTeam = Literal["red", "blue"]
RoomStatus = Literal["lobby", "playing", "finished"]
RoomMode = Literal["teams", "spin"]


class WireModel(BaseModel):
    """Base for WebSocket payloads (camelCase aliases, snake_case attributes)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# -----------------------------
# Inbound WebSocket events
# -----------------------------

class JoinRoomEvent(WireModel):
    type: Literal["join_room"]
    room_id: int
    user_id: Optional[int] = None


class ChatEvent(WireModel):
    type: Literal["chat"]
    content: str = Field(min_length=1, max_length=2000)
    team: Optional[PlayingTeam] = None  # None for global chat


class TeamChangeEvent(WireModel):
    type: Literal["team_change"]
    team: Team


class SpinEvent(WireModel):
    type: Literal["spin"]


class StartGameEvent(WireModel):
    type: Literal["start_game"]
    room_id: Optional[int] = None


class SubmitTeamQuestionEvent(WireModel):
    type: Literal["submit_team_question"]
    room_id: Optional[int] = None
    question: str
    answer: str

    @field_validator("question", "answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SelectPlayerEvent(WireModel):
    type: Literal["select_player"]
    room_id: Optional[int] = None
    player_id: int


class AnswerQuestionEvent(WireModel):
    type: Literal["answer_question"]
    room_id: Optional[int] = None
    answer: str


class WrongAnswerEvent(WireModel):
    type: Literal["wrong_answer"]


InboundEvent = Annotated[
    Union[
        JoinRoomEvent,
        ChatEvent,
        TeamChangeEvent,
        SpinEvent,
        StartGameEvent,
        SubmitTeamQuestionEvent,
        SelectPlayerEvent,
        AnswerQuestionEvent,
        WrongAnswerEvent,
    ],
    Field(discriminator="type"),
]

inbound_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_event(payload: Any) -> InboundEvent:
    """Validate a decoded JSON payload into one of the inbound event models.

    Raises ``pydantic.ValidationError`` for unknown types or bad fields.
    """
    return inbound_event_adapter.validate_python(payload)


# -----------------------------
# Outbound WebSocket messages
# -----------------------------

class GameUpdate(WireModel):
    """Tells clients to refetch the room snapshot over HTTP."""

    type: Literal["game_update"] = "game_update"
    room_id: int


class ChatMessageOut(WireModel):
    id: int
    room_id: int
    user_id: int
    username: str
    content: str
    type: str
    team: Optional[str] = None
    created_at: Optional[datetime] = None


class ChatBroadcast(WireModel):
    type: Literal["chat"] = "chat"
    message: ChatMessageOut


class SpinQuestion(WireModel):
    id: int
    text: str
    answer: str
    category: str
    difficulty: str


class SpinResult(WireModel):
    type: Literal["spin_result"] = "spin_result"
    user_id: int
    question: SpinQuestion


class QuestionState(WireModel):
    type: Literal["question_state"] = "question_state"
    room_id: int
    question: str
    author_team: PlayingTeam
    can_answer: bool
    selected_player_id: Optional[int] = None
    time_left: Optional[int] = None


class AnswerResult(WireModel):
    type: Literal["answer_result"] = "answer_result"
    room_id: int
    correct: bool
    answering_team: PlayingTeam
    question: str
    answer: Optional[str] = None  # only revealed on a correct answer


class WrongAnswer(WireModel):
    type: Literal["wrong_answer"] = "wrong_answer"
    team: PlayingTeam
    user_id: Union[int, str]  # "system" on timeout


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    message: str


# -----------------------------
# REST request / response models
# -----------------------------

class SignupRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=4, max_length=72)


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    wins: int = 0
    total_games: int = 0
    created_at: Optional[datetime] = None


class UpdateProfileRequest(BaseModel):
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


class RoomOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    host_id: int
    status: RoomStatus
    mode: RoomMode
    red_score: int
    blue_score: int
    red_name: str
    blue_name: str
    created_at: Optional[datetime] = None


class MemberOut(BaseModel):
    id: int
    room_id: int
    user_id: int
    team: Team
    is_host: bool
    user: UserOut


class RoomSnapshot(RoomOut):
    users: List[MemberOut] = []


class JoinRoomRequest(BaseModel):
    code: str = Field(min_length=1, max_length=12)


class UpdateRoomRequest(BaseModel):
    status: Optional[RoomStatus] = None
    mode: Optional[RoomMode] = None
    red_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    blue_name: Optional[str] = Field(default=None, min_length=1, max_length=50)


class MessageOut(BaseModel):
    id: int
    room_id: int
    user_id: int
    username: str
    content: str
    type: str
    team: Optional[str] = None
    created_at: Optional[datetime] = None


__all__ = [
    # inbound
    "JoinRoomEvent",
    "ChatEvent",
    "TeamChangeEvent",
    "SpinEvent",
    "StartGameEvent",
    "SubmitTeamQuestionEvent",
    "SelectPlayerEvent",
    "AnswerQuestionEvent",
    "WrongAnswerEvent",
    "InboundEvent",
    "parse_event",
    # outbound
    "GameUpdate",
    "ChatMessageOut",
    "ChatBroadcast",
    "SpinQuestion",
    "SpinResult",
    "QuestionState",
    "AnswerResult",
    "WrongAnswer",
    "ErrorMessage",
    # rest
    "SignupRequest",
    "LoginRequest",
    "UserOut",
    "UpdateProfileRequest",
    "RoomOut",
    "MemberOut",
    "RoomSnapshot",
    "JoinRoomRequest",
    "UpdateRoomRequest",
    "MessageOut",
]
