"""Typed domain exceptions for rejected game commands.

The lifecycle and round engines raise subclasses of GameError instead of
returning sentinel values. The HTTP layer catches GameError at the
boundary and converts it to a response; the class tells the caller
whether to surface, retry, or ignore the rejection.
"""

from songguess.logic.enums import ErrorCode


class GameError(Exception):
    """Base exception for every rejected game command.

    Attributes:
        code: Machine-readable reason sent to clients.
        message: Human-readable explanation.

    """

    default_code: ErrorCode = ErrorCode.GAME_NOT_IN_STATUS

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        self.code = code or self.default_code
        self.message = message
        super().__init__(message)


class NotFoundError(GameError):
    """Referenced game or round does not exist (expired, mistyped, never created)."""

    default_code = ErrorCode.GAME_NOT_FOUND


class UnknownPlayerError(NotFoundError):
    """Player id is not on the game's roster."""

    default_code = ErrorCode.PLAYER_NOT_FOUND


class InvalidStateError(GameError):
    """Command is not allowed from the game's or round's current status."""

    default_code = ErrorCode.GAME_NOT_IN_STATUS


class AlreadyAppliedError(InvalidStateError):
    """The transition was already applied by another trigger.

    Callers treat this as benign: someone else already ended the round,
    advanced the game, or the same player already guessed or hearted.
    """

    default_code = ErrorCode.ROUND_ALREADY_ENDED


class InsufficientContentError(GameError):
    """The song pool came back empty at start time."""

    default_code = ErrorCode.NO_PLAYABLE_SONGS


class UnauthorizedError(GameError):
    """A host-only command was attempted by another player."""

    default_code = ErrorCode.NOT_HOST


class InvalidRequestError(GameError):
    """Command arguments are well-formed but not acceptable, such as an unsupported round count."""

    default_code = ErrorCode.INVALID_ROUND_COUNT
