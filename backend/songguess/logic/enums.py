"""
String enum definitions for game and round lifecycle concepts.
"""

from enum import StrEnum


class GameStatus(StrEnum):
    """Game lifecycle. Transitions are strictly forward: lobby -> playing -> finished."""

    LOBBY = "lobby"
    PLAYING = "playing"
    FINISHED = "finished"


class RoundStatus(StrEnum):
    """Round lifecycle. Transitions are strictly forward."""

    WAITING = "waiting"
    PLAYING = "playing"
    REVEALING = "revealing"
    COMPLETE = "complete"


class TimeRange(StrEnum):
    """Listening-history window used when fetching a player's ranked tracks."""

    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"


TIME_RANGE_LABELS: dict[TimeRange, str] = {
    TimeRange.SHORT_TERM: "Last 4 Weeks",
    TimeRange.MEDIUM_TERM: "Last 6 Months",
    TimeRange.LONG_TERM: "All Time",
}


class ErrorCode(StrEnum):
    """Error codes returned to clients when a command is rejected."""

    GAME_NOT_FOUND = "game_not_found"
    ROUND_NOT_FOUND = "round_not_found"
    PLAYER_NOT_FOUND = "player_not_found"
    GAME_NOT_IN_STATUS = "game_not_in_status"
    ROUND_NOT_IN_STATUS = "round_not_in_status"
    NOT_ENOUGH_PLAYERS = "not_enough_players"
    ROUND_ALREADY_ENDED = "round_already_ended"
    ROUND_ADVANCED = "round_advanced"
    GAME_ALREADY_FINISHED = "game_already_finished"
    ALREADY_GUESSED = "already_guessed"
    ALREADY_HEARTED = "already_hearted"
    NO_PLAYABLE_SONGS = "no_playable_songs"
    NOT_HOST = "not_host"
    INVALID_ROUND_COUNT = "invalid_round_count"
