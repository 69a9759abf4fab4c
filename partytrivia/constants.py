RED = "red"
BLUE = "blue"
SPECTATOR = "spectator"

PLAYING_TEAMS = {RED, BLUE}

MODE_TEAMS = "teams"
MODE_SPIN = "spin"

ROOM_CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Author id used for messages and events emitted by the server itself
SYSTEM_USER_ID = 0
SYSTEM_ACTOR = "system"

DEFAULT_QUESTIONS: list[dict[str, str]] = [
    {"text": "What is the capital of France?", "answer": "Paris"},
    {"text": "What has keys but can't open locks?", "answer": "Piano"},
    {
        "text": "What comes once in a minute, twice in a moment, but never in a thousand years?",
        "answer": "The letter M",
    },
    {
        "text": "I speak without a mouth and hear without ears. I have no body, but I come alive with wind. What am I?",
        "answer": "Echo",
    },
]


def opposing_team(team: str) -> str:
    """Return the team that answers questions authored by *team*."""
    if team == RED:
        return BLUE
    if team == BLUE:
        return RED
    raise ValueError(f"{team!r} has no opposing team")


__all__ = [
    "RED",
    "BLUE",
    "SPECTATOR",
    "PLAYING_TEAMS",
    "MODE_TEAMS",
    "MODE_SPIN",
    "ROOM_CODE_ALPHABET",
    "SYSTEM_USER_ID",
    "SYSTEM_ACTOR",
    "DEFAULT_QUESTIONS",
    "opposing_team",
]
