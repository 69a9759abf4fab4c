"""Party trivia exception classes."""


class TriviaError(Exception):
    """Base exception for all game errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class EventValidationError(TriviaError):
    """Raised when an inbound event is malformed or inconsistent with its connection."""
    pass


class AuthorizationError(TriviaError):
    """Raised when the sender is not allowed to perform the action (wrong team, not host)."""
    pass


class NotFoundError(TriviaError):
    """Raised when a room, membership or pending question is missing."""
    pass


class TransportError(TriviaError):
    """Raised when a frame cannot be written to a socket."""
    pass
