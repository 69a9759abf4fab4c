"""Per-room round state: pending question, answerer selection and countdown.

A room is always in exactly one of three phases::

    Idle --submit--> AwaitingSelection --select--> AwaitingAnswer --correct/timeout--> Idle

The phase is stored as a tagged variant (``Idle``, ``AwaitingSelection``,
``AwaitingAnswer``) so a selected player or a countdown cannot exist without
a question. Each room owns at most one :class:`AnswerTimer`; every path that
starts a countdown goes through ``_replace_timer`` which cancels the previous
one first.

All methods run on the application's single event loop. Because awaits on
the store can interleave with other events, state is re-checked by identity
after every await that precedes a mutation.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Dict, Optional, Union

from .broadcast import BroadcastFabric
from .constants import PLAYING_TEAMS, SYSTEM_ACTOR, SYSTEM_USER_ID, opposing_team
from .exceptions import AuthorizationError, EventValidationError, NotFoundError
from .schemas import AnswerResult, ChatBroadcast, ChatMessageOut, GameUpdate, QuestionState, WrongAnswer
from .store import SYSTEM_USERNAME, TortoiseStore

logger = logging.getLogger(__name__)

ANSWER_SECONDS = 20
TICK_SECONDS = 1.0

OPPOSING_TEAM_SELECTS = "Only the opposing team can select a player to answer."
NOT_YOUR_TURN = "It's not your team's turn to answer!"
NO_QUESTION = "There is no question to answer."


class RoundPhase(str, Enum):
    IDLE = "idle"
    AWAITING_SELECTION = "awaiting_selection"
    AWAITING_ANSWER = "awaiting_answer"


def normalise_answer(text: str) -> str:
    return text.strip().casefold()


@dataclass(frozen=True)
class PendingQuestion:
    room_id: int
    text: str
    answer: str
    author_team: str
    question_id: Optional[int] = None

    @property
    def answering_team(self) -> str:
        return opposing_team(self.author_team)

    def is_correct(self, submitted: str) -> bool:
        return normalise_answer(submitted) == normalise_answer(self.answer)


@dataclass(frozen=True)
class Idle:
    phase: ClassVar[RoundPhase] = RoundPhase.IDLE


@dataclass(frozen=True)
class AwaitingSelection:
    question: PendingQuestion
    phase: ClassVar[RoundPhase] = RoundPhase.AWAITING_SELECTION


@dataclass(eq=False)
class AwaitingAnswer:
    question: PendingQuestion
    selected_player_id: int
    time_left: int
    phase: ClassVar[RoundPhase] = RoundPhase.AWAITING_ANSWER


RoundState = Union[Idle, AwaitingSelection, AwaitingAnswer]

IDLE = Idle()


class AnswerTimer:
    """Handle on one running countdown task."""

    def __init__(self, room_id: int, task: "asyncio.Task[None]") -> None:
        self.room_id = room_id
        self.task = task

    def cancel(self) -> bool:
        return self.task.cancel()

    @property
    def done(self) -> bool:
        return self.task.done()


async def announce(store: TortoiseStore, fabric: BroadcastFabric, room_id: int, content: str) -> None:
    """Persist a system message and push it to the room's chat."""
    message = await store.create_message(room_id, SYSTEM_USER_ID, content, type="system")
    await fabric.broadcast(
        room_id,
        ChatBroadcast(
            message=ChatMessageOut(
                id=message.id,
                room_id=room_id,
                user_id=SYSTEM_USER_ID,
                username=SYSTEM_USERNAME,
                content=message.content,
                type=message.type,
                team=None,
                created_at=message.created_at,
            )
        ),
    )


class TurnStateMachine:
    def __init__(
        self,
        store: TortoiseStore,
        fabric: BroadcastFabric,
        answer_seconds: int = ANSWER_SECONDS,
        tick_seconds: float = TICK_SECONDS,
    ) -> None:
        self.store = store
        self.fabric = fabric
        self.answer_seconds = answer_seconds
        self.tick_seconds = tick_seconds
        self._rounds: Dict[int, RoundState] = {}
        self._timers: Dict[int, AnswerTimer] = {}

    # ---------------------------------------------------------------------
    # Introspection
    # ---------------------------------------------------------------------

    def state_of(self, room_id: int) -> RoundState:
        return self._rounds.get(room_id, IDLE)

    def timer_of(self, room_id: int) -> Optional[AnswerTimer]:
        return self._timers.get(room_id)

    def snapshot(self, room_id: int) -> Optional[QuestionState]:
        """Current ``question_state`` of the room, or None when no round is running."""
        state = self.state_of(room_id)
        if isinstance(state, (AwaitingSelection, AwaitingAnswer)):
            return self._question_state(state)
        return None

    @staticmethod
    def _question_state(state: Union[AwaitingSelection, AwaitingAnswer]) -> QuestionState:
        question = state.question
        if isinstance(state, AwaitingAnswer):
            return QuestionState(
                room_id=question.room_id,
                question=question.text,
                author_team=question.author_team,
                can_answer=True,
                selected_player_id=state.selected_player_id,
                time_left=state.time_left,
            )
        return QuestionState(
            room_id=question.room_id,
            question=question.text,
            author_team=question.author_team,
            can_answer=False,
        )

    # ---------------------------------------------------------------------
    # Timer ownership
    # ---------------------------------------------------------------------

    def _take_timer(self, room_id: int) -> Optional[AnswerTimer]:
        return self._timers.pop(room_id, None)

    def _cancel_timer(self, room_id: int) -> None:
        timer = self._take_timer(room_id)
        if timer is not None and not timer.done:
            timer.cancel()
            logger.debug("Cancelled countdown for room %s", room_id)

    def _replace_timer(self, room_id: int, state: AwaitingAnswer) -> AnswerTimer:
        self._cancel_timer(room_id)
        task = asyncio.create_task(self._run_countdown(room_id, state), name=f"answer-timer-{room_id}")
        timer = AnswerTimer(room_id, task)
        self._timers[room_id] = timer
        return timer

    # ---------------------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------------------

    async def submit_question(self, room_id: int, asker_team: str, text: str, answer: str) -> PendingQuestion:
        if asker_team not in PLAYING_TEAMS:
            raise AuthorizationError("Spectators cannot submit questions.")
        text, answer = text.strip(), answer.strip()
        if not text or not answer:
            raise EventValidationError("Both a question and an answer are required.")

        previous = self.state_of(room_id)
        if previous is not IDLE:
            logger.info("Room %s: replacing pending question (%s)", room_id, previous.phase.value)
        self._cancel_timer(room_id)
        self._rounds.pop(room_id, None)

        record = await self.store.create_team_question(room_id, text, answer, asker_team)
        question = PendingQuestion(
            room_id=room_id,
            text=text,
            answer=answer,
            author_team=asker_team,
            question_id=record.id,
        )
        state = AwaitingSelection(question)
        self._rounds[room_id] = state
        logger.info("Room %s: %s team submitted a question", room_id, asker_team)
        await self.fabric.broadcast(room_id, self._question_state(state))
        return question

    async def select_player(self, room_id: int, selector_team: str, player_id: int) -> AwaitingAnswer:
        state = self.state_of(room_id)
        if not isinstance(state, AwaitingSelection) or selector_team != state.question.answering_team:
            raise AuthorizationError(OPPOSING_TEAM_SELECTS)

        try:
            player = await self.store.get_room_user(room_id, player_id)
        except NotFoundError:
            raise AuthorizationError("The selected player is not on your team.") from None
        if player.team != selector_team:
            raise AuthorizationError("The selected player is not on your team.")
        if self.state_of(room_id) is not state:
            raise AuthorizationError(OPPOSING_TEAM_SELECTS)

        answering = AwaitingAnswer(
            question=state.question,
            selected_player_id=player_id,
            time_left=self.answer_seconds,
        )
        self._rounds[room_id] = answering
        self._replace_timer(room_id, answering)
        logger.info("Room %s: %s team selected player %s", room_id, selector_team, player_id)
        await self.fabric.broadcast(room_id, self._question_state(answering))
        return answering

    async def answer_question(self, room_id: int, answerer_team: str, user_id: int, text: str) -> bool:
        """Judge *text* against the pending question; returns True when correct."""
        state = self.state_of(room_id)
        if isinstance(state, Idle):
            raise NotFoundError(NO_QUESTION)
        if answerer_team != state.question.answering_team or not isinstance(state, AwaitingAnswer):
            raise AuthorizationError(NOT_YOUR_TURN)
        if state.time_left <= 0:
            raise NotFoundError(NO_QUESTION)

        record = await self.store.get_team_question_for_room(room_id)
        # The countdown may have run out while the record was loading
        if self.state_of(room_id) is not state or state.time_left <= 0 or record.id != state.question.question_id:
            raise NotFoundError(NO_QUESTION)

        question = state.question
        if not question.is_correct(text):
            # The round stays open; the running countdown bounds further attempts.
            logger.info("Room %s: wrong answer from user %s", room_id, user_id)
            await self.fabric.broadcast(
                room_id,
                AnswerResult(
                    room_id=room_id,
                    correct=False,
                    answering_team=answerer_team,
                    question=question.text,
                ),
            )
            await self.fabric.broadcast(room_id, WrongAnswer(team=answerer_team, user_id=user_id))
            return False

        self._cancel_timer(room_id)
        self._rounds.pop(room_id, None)
        room = await self.store.increment_score(room_id, answerer_team)
        await self.store.clear_team_question_for_room(room_id, question_id=question.question_id)
        logger.info(
            "Room %s: %s team answered correctly (red=%s blue=%s)",
            room_id, answerer_team, room.red_score, room.blue_score,
        )
        await self.fabric.broadcast(
            room_id,
            AnswerResult(
                room_id=room_id,
                correct=True,
                answering_team=answerer_team,
                question=question.text,
                answer=question.answer,
            ),
        )
        team_name = room.red_name if answerer_team == "red" else room.blue_name
        await announce(self.store, self.fabric, room_id, f"{team_name} answered correctly: {question.answer}")
        await self.fabric.broadcast(room_id, GameUpdate(room_id=room_id))
        return True

    async def wrong_answer(self, room_id: int, team: str, user_id: int) -> None:
        """Relay a client-side miss so every client plays the animation."""
        if team not in PLAYING_TEAMS:
            raise AuthorizationError("Spectators cannot do that.")
        await self.fabric.broadcast(room_id, WrongAnswer(team=team, user_id=user_id))

    # ---------------------------------------------------------------------
    # Countdown
    # ---------------------------------------------------------------------

    async def _run_countdown(self, room_id: int, state: AwaitingAnswer) -> None:
        try:
            while state.time_left > 0:
                await asyncio.sleep(self.tick_seconds)
                if self.state_of(room_id) is not state:
                    return
                state.time_left -= 1
                await self.fabric.broadcast(room_id, self._question_state(state))
            await self._expire(room_id, state)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Countdown for room %s failed", room_id)

    async def _expire(self, room_id: int, state: AwaitingAnswer) -> None:
        # The timer is this task; drop the handle without cancelling ourselves.
        timer = self._timers.get(room_id)
        if timer is not None and timer.task is asyncio.current_task():
            self._take_timer(room_id)
        if self.state_of(room_id) is not state:
            return
        self._rounds.pop(room_id, None)

        question = state.question
        team = question.answering_team
        logger.info("Room %s: time ran out for the %s team", room_id, team)
        await self.fabric.broadcast(
            room_id,
            AnswerResult(room_id=room_id, correct=False, answering_team=team, question=question.text),
        )
        await self.fabric.broadcast(room_id, WrongAnswer(team=team, user_id=SYSTEM_ACTOR))
        await self.store.clear_team_question_for_room(room_id, question_id=question.question_id)
        await announce(self.store, self.fabric, room_id, "Time's up! Nobody answered in time.")

    # ---------------------------------------------------------------------
    # Teardown
    # ---------------------------------------------------------------------

    def forget_room(self, room_id: int) -> None:
        self._cancel_timer(room_id)
        self._rounds.pop(room_id, None)

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        for room_id in list(self._timers):
            self._cancel_timer(room_id)
        self._rounds.clear()
        for timer in timers:
            try:
                await timer.task
            except asyncio.CancelledError:
                pass


__all__ = [
    "ANSWER_SECONDS",
    "TICK_SECONDS",
    "RoundPhase",
    "PendingQuestion",
    "Idle",
    "AwaitingSelection",
    "AwaitingAnswer",
    "RoundState",
    "AnswerTimer",
    "TurnStateMachine",
    "announce",
    "normalise_answer",
]
