"""
Unit tests for turns.py: question submission, answerer selection, judging
and the per-room answer countdown.
"""
import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from conftest import ANSWER_SECONDS, FAST_TICK_SECONDS, MockWebSocket, make_user, wait_for

from partytrivia.exceptions import AuthorizationError, EventValidationError, NotFoundError
from partytrivia.models import Message, Question, Room, RoomUser
from partytrivia.turns import (
    IDLE,
    NOT_YOUR_TURN,
    OPPOSING_TEAM_SELECTS,
    AwaitingAnswer,
    AwaitingSelection,
    PendingQuestion,
    RoundPhase,
    normalise_answer,
)


@pytest_asyncio.fixture
async def table(db, registry, turns):
    """Room with red (ruth, rita), blue (ben, bea) and a spectator, all connected."""
    room = await Room.create(code="TURNS1", host_id=0)
    members = {"ruth": "red", "rita": "red", "ben": "blue", "bea": "blue", "sid": "spectator"}
    users, sockets = {}, {}
    for name, team in members.items():
        user = await make_user(name)
        await RoomUser.create(room_id=room.id, user_id=user.id, team=team)
        ws = MockWebSocket()
        registry.register(user.id, room.id, ws)
        users[name], sockets[name] = user, ws
    return SimpleNamespace(room=room, users=users, sockets=sockets, turns=turns)


async def ask_and_select(table, answerer="ben"):
    await table.turns.submit_question(table.room.id, "red", "Capital of France?", "Paris")
    return await table.turns.select_player(table.room.id, "blue", table.users[answerer].id)


def clear_all(table):
    for ws in table.sockets.values():
        ws.clear()


# ---------------------------------------------------------------------------
# Judging helpers
# ---------------------------------------------------------------------------

def test_normalise_answer_trims_and_ignores_case():
    assert normalise_answer("  PaRiS \n") == "paris"


def test_pending_question_judging_and_answering_team():
    question = PendingQuestion(room_id=1, text="Capital of France?", answer="Paris", author_team="red")
    assert question.answering_team == "blue"
    assert question.is_correct("paris")
    assert question.is_correct("  PARIS ")
    assert not question.is_correct("Lyon")
    assert not question.is_correct("")


# ---------------------------------------------------------------------------
# submit_question
# ---------------------------------------------------------------------------

async def test_submit_question_enters_awaiting_selection(table):
    question = await table.turns.submit_question(table.room.id, "red", " Capital of France? ", " Paris ")

    state = table.turns.state_of(table.room.id)
    assert isinstance(state, AwaitingSelection)
    assert state.phase is RoundPhase.AWAITING_SELECTION
    assert question.text == "Capital of France?"
    assert question.answer == "Paris"

    stored = await Question.get(room_id=table.room.id)
    assert stored.id == question.question_id
    assert stored.author_team == "red"

    for ws in table.sockets.values():
        assert ws.last("question_state") == {
            "type": "question_state",
            "roomId": table.room.id,
            "question": "Capital of France?",
            "authorTeam": "red",
            "canAnswer": False,
        }


async def test_spectator_cannot_submit(table):
    with pytest.raises(AuthorizationError):
        await table.turns.submit_question(table.room.id, "spectator", "Q?", "A")
    assert table.turns.state_of(table.room.id) is IDLE
    assert not await Question.filter(room_id=table.room.id).exists()


async def test_blank_question_is_rejected(table):
    with pytest.raises(EventValidationError):
        await table.turns.submit_question(table.room.id, "red", "   ", "A")
    with pytest.raises(EventValidationError):
        await table.turns.submit_question(table.room.id, "red", "Q?", "  ")
    assert table.turns.state_of(table.room.id) is IDLE


async def test_second_submit_replaces_pending_question(table):
    first = await table.turns.submit_question(table.room.id, "red", "First?", "one")
    second = await table.turns.submit_question(table.room.id, "blue", "Second?", "two")

    state = table.turns.state_of(table.room.id)
    assert state.question == second
    assert state.question.answering_team == "red"
    rows = await Question.filter(room_id=table.room.id)
    assert [q.id for q in rows] == [second.question_id]
    assert first.question_id != second.question_id


# ---------------------------------------------------------------------------
# select_player
# ---------------------------------------------------------------------------

async def test_select_player_starts_countdown(table):
    await table.turns.submit_question(table.room.id, "red", "Capital of France?", "Paris")
    clear_all(table)

    state = await table.turns.select_player(table.room.id, "blue", table.users["ben"].id)

    assert isinstance(state, AwaitingAnswer)
    assert table.turns.state_of(table.room.id) is state
    assert state.time_left == ANSWER_SECONDS
    timer = table.turns.timer_of(table.room.id)
    assert timer is not None and not timer.done

    msg = table.sockets["ruth"].last("question_state")
    assert msg["canAnswer"] is True
    assert msg["selectedPlayerId"] == table.users["ben"].id
    assert msg["timeLeft"] == ANSWER_SECONDS


async def test_author_team_cannot_select(table):
    await table.turns.submit_question(table.room.id, "red", "Capital of France?", "Paris")
    clear_all(table)

    with pytest.raises(AuthorizationError) as exc:
        await table.turns.select_player(table.room.id, "red", table.users["rita"].id)

    assert exc.value.message == OPPOSING_TEAM_SELECTS
    assert isinstance(table.turns.state_of(table.room.id), AwaitingSelection)
    assert table.turns.timer_of(table.room.id) is None
    assert all(ws.sent_messages == [] for ws in table.sockets.values())


async def test_select_without_question_fails(table):
    with pytest.raises(AuthorizationError) as exc:
        await table.turns.select_player(table.room.id, "blue", table.users["ben"].id)
    assert exc.value.message == OPPOSING_TEAM_SELECTS
    assert table.turns.state_of(table.room.id) is IDLE


async def test_select_player_from_other_team_fails(table):
    await table.turns.submit_question(table.room.id, "red", "Capital of France?", "Paris")
    with pytest.raises(AuthorizationError):
        await table.turns.select_player(table.room.id, "blue", table.users["ruth"].id)
    with pytest.raises(AuthorizationError):
        await table.turns.select_player(table.room.id, "blue", 9999)
    assert isinstance(table.turns.state_of(table.room.id), AwaitingSelection)


async def test_select_twice_fails(table):
    await ask_and_select(table)
    with pytest.raises(AuthorizationError) as exc:
        await table.turns.select_player(table.room.id, "blue", table.users["bea"].id)
    assert exc.value.message == OPPOSING_TEAM_SELECTS
    assert table.turns.state_of(table.room.id).selected_player_id == table.users["ben"].id


# ---------------------------------------------------------------------------
# answer_question
# ---------------------------------------------------------------------------

async def test_correct_answer_scores_once_and_resets(table):
    await ask_and_select(table)
    timer = table.turns.timer_of(table.room.id)
    clear_all(table)

    correct = await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "  paris ")

    assert correct is True
    room = await Room.get(id=table.room.id)
    assert (room.red_score, room.blue_score) == (0, 1)
    assert table.turns.state_of(table.room.id) is IDLE
    assert table.turns.timer_of(table.room.id) is None
    assert await wait_for(lambda: timer.done)
    assert timer.task.cancelled()
    assert not await Question.filter(room_id=table.room.id).exists()

    ws = table.sockets["sid"]
    assert ws.types() == ["answer_result", "chat", "game_update"]
    result = ws.last("answer_result")
    assert result["correct"] is True
    assert result["answeringTeam"] == "blue"
    assert result["answer"] == "Paris"
    chat = ws.last("chat")["message"]
    assert chat["type"] == "system"
    assert chat["userId"] == 0
    assert chat["content"] == "Blue Team answered correctly: Paris"


async def test_wrong_answer_keeps_round_open(table):
    state = await ask_and_select(table)
    timer = table.turns.timer_of(table.room.id)
    clear_all(table)

    correct = await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "Lyon")

    assert correct is False
    assert table.turns.state_of(table.room.id) is state
    assert table.turns.timer_of(table.room.id) is timer and not timer.done
    assert await Question.filter(room_id=table.room.id).exists()
    room = await Room.get(id=table.room.id)
    assert (room.red_score, room.blue_score) == (0, 0)

    ws = table.sockets["ruth"]
    assert ws.types() == ["answer_result", "wrong_answer"]
    result = ws.last("answer_result")
    assert result["correct"] is False
    assert "answer" not in result
    assert ws.last("wrong_answer") == {"type": "wrong_answer", "team": "blue", "userId": table.users["ben"].id}

    # Another attempt inside the same countdown still counts
    assert await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "PARIS") is True
    room = await Room.get(id=table.room.id)
    assert room.blue_score == 1


async def test_author_team_cannot_answer(table):
    await ask_and_select(table)
    with pytest.raises(AuthorizationError) as exc:
        await table.turns.answer_question(table.room.id, "red", table.users["ruth"].id, "Paris")
    assert exc.value.message == NOT_YOUR_TURN
    room = await Room.get(id=table.room.id)
    assert (room.red_score, room.blue_score) == (0, 0)


async def test_answer_before_selection_is_refused(table):
    await table.turns.submit_question(table.room.id, "red", "Capital of France?", "Paris")
    with pytest.raises(AuthorizationError):
        await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "Paris")


async def test_answer_without_question_fails(table):
    with pytest.raises(NotFoundError):
        await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "Paris")


async def test_answer_after_question_row_vanished_fails(table):
    await ask_and_select(table)
    await Question.filter(room_id=table.room.id).delete()
    with pytest.raises(NotFoundError):
        await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "Paris")


# ---------------------------------------------------------------------------
# Countdown
# ---------------------------------------------------------------------------

async def test_timeout_ends_round_without_scoring(table):
    table.turns.tick_seconds = FAST_TICK_SECONDS
    await ask_and_select(table)
    ws = table.sockets["bea"]

    assert await wait_for(lambda: ws.last("chat") is not None)

    ticks = [m["timeLeft"] for m in ws.all("question_state") if m.get("canAnswer")]
    assert ticks == [ANSWER_SECONDS, 2, 1, 0]
    tail = ws.types()[-3:]
    assert tail == ["answer_result", "wrong_answer", "chat"]
    assert ws.last("answer_result")["correct"] is False
    assert ws.last("wrong_answer") == {"type": "wrong_answer", "team": "blue", "userId": "system"}
    assert ws.last("chat")["message"]["content"] == "Time's up! Nobody answered in time."

    assert table.turns.state_of(table.room.id) is IDLE
    assert table.turns.timer_of(table.room.id) is None
    assert not await Question.filter(room_id=table.room.id).exists()
    room = await Room.get(id=table.room.id)
    assert (room.red_score, room.blue_score) == (0, 0)
    assert await Message.filter(room_id=table.room.id, type="system").count() == 1


class SlowWebSocket(MockWebSocket):
    """Socket whose writes take a while, so every broadcast yields to other tasks."""

    async def send_text(self, data: str):
        await asyncio.sleep(0.1)
        await super().send_text(data)


async def test_answer_after_countdown_hits_zero_is_refused(table, registry):
    watcher = await make_user("watcher")
    await RoomUser.create(room_id=table.room.id, user_id=watcher.id, team="spectator")
    slow = SlowWebSocket()
    registry.register(watcher.id, table.room.id, slow)
    table.turns.answer_seconds = 1
    table.turns.tick_seconds = FAST_TICK_SECONDS

    state = await ask_and_select(table)
    assert await wait_for(lambda: state.time_left == 0)

    with pytest.raises(NotFoundError):
        await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "Paris")

    assert await wait_for(lambda: slow.last("chat") is not None, timeout=3.0)
    assert slow.last("wrong_answer")["userId"] == "system"
    room = await Room.get(id=table.room.id)
    assert (room.red_score, room.blue_score) == (0, 0)


async def test_finished_rounds_release_room_state(table):
    await ask_and_select(table)
    await table.turns.answer_question(table.room.id, "blue", table.users["ben"].id, "Paris")
    assert table.room.id not in table.turns._rounds

    table.turns.tick_seconds = FAST_TICK_SECONDS
    await ask_and_select(table)
    assert await wait_for(lambda: table.turns.state_of(table.room.id) is IDLE)
    assert table.room.id not in table.turns._rounds


async def test_new_question_cancels_running_countdown(table):
    await ask_and_select(table)
    first_timer = table.turns.timer_of(table.room.id)

    await table.turns.submit_question(table.room.id, "blue", "Largest planet?", "Jupiter")

    assert await wait_for(lambda: first_timer.done)
    assert first_timer.task.cancelled()
    assert table.turns.timer_of(table.room.id) is None
    assert isinstance(table.turns.state_of(table.room.id), AwaitingSelection)

    await table.turns.select_player(table.room.id, "red", table.users["rita"].id)
    second_timer = table.turns.timer_of(table.room.id)
    assert second_timer is not first_timer and not second_timer.done


async def test_replaced_countdown_never_fires(table):
    table.turns.tick_seconds = FAST_TICK_SECONDS
    await ask_and_select(table)
    await table.turns.submit_question(table.room.id, "blue", "Largest planet?", "Jupiter")
    await asyncio.sleep(FAST_TICK_SECONDS * (ANSWER_SECONDS + 3))

    ws = table.sockets["ruth"]
    assert ws.all("answer_result") == []
    assert ws.all("wrong_answer") == []
    assert isinstance(table.turns.state_of(table.room.id), AwaitingSelection)
    assert await Question.filter(room_id=table.room.id).count() == 1


async def test_snapshot_reflects_round(table):
    assert table.turns.snapshot(table.room.id) is None
    await table.turns.submit_question(table.room.id, "red", "Capital of France?", "Paris")
    assert table.turns.snapshot(table.room.id).can_answer is False
    await table.turns.select_player(table.room.id, "blue", table.users["bea"].id)
    snap = table.turns.snapshot(table.room.id)
    assert snap.can_answer is True
    assert snap.selected_player_id == table.users["bea"].id
    assert snap.time_left == ANSWER_SECONDS


async def test_forget_room_cancels_countdown(table):
    await ask_and_select(table)
    timer = table.turns.timer_of(table.room.id)
    table.turns.forget_room(table.room.id)
    assert await wait_for(lambda: timer.done)
    assert table.turns.state_of(table.room.id) is IDLE


async def test_shutdown_cancels_all_countdowns(table):
    await ask_and_select(table)
    timer = table.turns.timer_of(table.room.id)
    await table.turns.shutdown()
    assert timer.done
    assert table.turns.timer_of(table.room.id) is None
    assert table.turns.state_of(table.room.id) is IDLE


# ---------------------------------------------------------------------------
# wrong_answer relay
# ---------------------------------------------------------------------------

async def test_wrong_answer_relay(table):
    await table.turns.wrong_answer(table.room.id, "red", table.users["rita"].id)
    assert table.sockets["ben"].last("wrong_answer") == {
        "type": "wrong_answer",
        "team": "red",
        "userId": table.users["rita"].id,
    }


async def test_spectator_cannot_relay_wrong_answer(table):
    with pytest.raises(AuthorizationError):
        await table.turns.wrong_answer(table.room.id, "spectator", table.users["sid"].id)
    assert table.sockets["ben"].sent_messages == []
