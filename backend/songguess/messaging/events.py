"""
Broadcast event names and their minimal payload models.

Payloads are built from the full GameState/Round but never serialize the
aggregate itself: track libraries, the song pool, ISRCs and the owner of
an unrevealed round are always stripped. Wire field names are camelCase.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from songguess.logic.enums import TIME_RANGE_LABELS, GameStatus, RoundStatus, TimeRange

if TYPE_CHECKING:
    from songguess.logic.state import GameState, Player, Round, Track
    from songguess.logic.types import RoundEndResult


class EventName(StrEnum):
    PLAYER_JOINED = "player-joined"
    PLAYER_LEFT = "player-left"
    GAME_STARTED = "game-started"
    ROUND_START = "round-start"
    PLAYER_GUESSED = "player-guessed"
    PLAYER_HEARTED = "player-hearted"
    ROUND_END = "round-end"
    TIMER_EXPIRED = "timer-expired"
    GAME_OVER = "game-over"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Public views
# ---------------------------------------------------------------------------


class PublicTrack(WireModel):
    id: str
    name: str
    artists: list[str]
    album: str
    image_url: str | None = None
    preview_url: str | None = None


class PublicPlayer(WireModel):
    id: str
    name: str
    image: str | None = None
    is_host: bool
    is_connected: bool


class PublicRoundSong(WireModel):
    track: PublicTrack
    owner_id: str | None = None
    owner_name: str | None = None


class PublicRound(WireModel):
    number: int
    status: RoundStatus
    started_at: int | None = None
    song: PublicRoundSong
    guesses: dict[str, str] = Field(default_factory=dict)
    guess_timestamps: dict[str, int] = Field(default_factory=dict)
    hearts: list[str] = Field(default_factory=list)


class PublicGame(WireModel):
    code: str
    host_id: str
    status: GameStatus
    players: list[PublicPlayer]
    current_round: int
    total_rounds: int
    scores: dict[str, int]
    heart_totals: dict[str, int]
    created_at: int
    time_range: TimeRange
    time_range_label: str
    round_duration_seconds: int
    round: PublicRound | None = None


def public_track(track: Track) -> PublicTrack:
    return PublicTrack(
        id=track.id,
        name=track.name,
        artists=list(track.artists),
        album=track.album,
        image_url=track.image_url,
        preview_url=track.preview_url,
    )


def public_player(player: Player) -> PublicPlayer:
    return PublicPlayer(
        id=player.id,
        name=player.name,
        image=player.image,
        is_host=player.is_host,
        is_connected=player.is_connected,
    )


def public_round(game_round: Round) -> PublicRound:
    """A round as clients may see it: guesses and owner only once revealed."""
    revealed = game_round.status in (RoundStatus.REVEALING, RoundStatus.COMPLETE)
    song = game_round.song
    return PublicRound(
        number=game_round.number,
        status=game_round.status,
        started_at=game_round.started_at,
        song=PublicRoundSong(
            track=public_track(song.track),
            owner_id=song.owner_id if revealed else None,
            owner_name=song.owner_name if revealed else None,
        ),
        guesses=dict(game_round.guesses) if revealed else {},
        guess_timestamps=dict(game_round.guess_timestamps) if revealed else {},
        hearts=list(game_round.hearts),
    )


def public_game(game: GameState) -> PublicGame:
    active = game.active_round
    return PublicGame(
        code=game.code,
        host_id=game.host_id,
        status=game.status,
        players=[public_player(p) for p in game.players],
        current_round=game.current_round,
        total_rounds=game.total_rounds,
        scores=dict(game.scores),
        heart_totals=dict(game.heart_totals),
        created_at=game.created_at,
        time_range=game.config.time_range,
        time_range_label=TIME_RANGE_LABELS[game.config.time_range],
        round_duration_seconds=game.config.round_duration_seconds,
        round=public_round(active) if active is not None else None,
    )


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------


class PlayerJoinedPayload(WireModel):
    player: PublicPlayer


class PlayerLeftPayload(WireModel):
    player_id: str


class GameStartedPayload(WireModel):
    game: PublicGame


class RoundStartPayload(WireModel):
    round: PublicRound


class PlayerGuessedPayload(WireModel):
    player_id: str
    has_guessed: bool = True


class PlayerHeartedPayload(WireModel):
    player_id: str
    visible_heart_count: int


class RoundEndPayload(WireModel):
    round: PublicRound
    scores: dict[str, int]
    round_scores: dict[str, int]
    heart_totals: dict[str, int]


class TimerExpiredPayload(WireModel):
    round_number: int


class GameOverPayload(WireModel):
    final_scores: dict[str, int]
    heart_totals: dict[str, int]


def round_end_payload(result: RoundEndResult) -> RoundEndPayload:
    return RoundEndPayload(
        round=public_round(result.round),
        scores=result.scores,
        round_scores=result.round_scores,
        heart_totals=result.heart_totals,
    )


def game_over_payload(game: GameState) -> GameOverPayload:
    return GameOverPayload(final_scores=dict(game.scores), heart_totals=dict(game.heart_totals))
