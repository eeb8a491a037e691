"""
Round engine: guesses, hearts, and round end with time-decayed scoring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from songguess.logic.enums import ErrorCode, GameStatus, RoundStatus
from songguess.logic.exceptions import (
    AlreadyAppliedError,
    InvalidStateError,
    NotFoundError,
    UnknownPlayerError,
)
from songguess.logic.repository import now_ms
from songguess.logic.scoring import score_round
from songguess.logic.types import GuessResult, HeartResult, RoundEndResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from songguess.logic.repository import GameRepository
    from songguess.logic.state import GameState, Round

logger = structlog.get_logger()


class RoundEngine:
    """Mutates the current round of a playing game."""

    def __init__(self, repository: GameRepository, *, clock: Callable[[], int] = now_ms) -> None:
        self._repo = repository
        self._clock = clock

    async def _load_current_round(self, code: str) -> tuple[GameState, Round]:
        game = await self._repo.load(code)
        if game.status != GameStatus.PLAYING:
            raise InvalidStateError(f"Game {game.code} is not in progress")
        current = game.active_round
        if current is None:
            raise NotFoundError(f"Game {game.code} has no current round", code=ErrorCode.ROUND_NOT_FOUND)
        return game, current

    @staticmethod
    def _require_player(game: GameState, player_id: str) -> None:
        if game.get_player(player_id) is None:
            raise UnknownPlayerError(f"Player {player_id} is not in game {game.code}")

    @staticmethod
    def _require_playing(current: Round) -> None:
        if current.status != RoundStatus.PLAYING:
            raise InvalidStateError(
                f"Round {current.number} is {current.status}, not playing",
                code=ErrorCode.ROUND_NOT_IN_STATUS,
            )

    async def submit_guess(self, code: str, guesser_id: str, guessed_owner_id: str) -> GuessResult:
        """
        Record a player's guess of who owns the current song.

        The first guess per player per round wins; a second one raises
        AlreadyAppliedError and leaves the original timestamp intact.
        `all_guessed` considers connected players only.
        """
        game, current = await self._load_current_round(code)
        self._require_player(game, guesser_id)
        self._require_player(game, guessed_owner_id)
        self._require_playing(current)
        if guesser_id in current.guesses:
            raise AlreadyAppliedError(
                f"Player {guesser_id} already guessed in round {current.number}",
                code=ErrorCode.ALREADY_GUESSED,
            )

        current.guesses[guesser_id] = guessed_owner_id
        current.guess_timestamps[guesser_id] = self._clock()
        all_guessed = all(p.id in current.guesses for p in game.connected_players)

        await self._repo.save(game)
        return GuessResult(round=current, all_guessed=all_guessed)

    async def submit_heart(self, code: str, player_id: str) -> HeartResult:
        """
        Record appreciation for the current song.

        The owner hearting their own song is acknowledged but never counted.
        Anyone else may heart once per round.
        """
        game, current = await self._load_current_round(code)
        self._require_player(game, player_id)
        self._require_playing(current)

        owner_id = current.song.owner_id
        if player_id == owner_id:
            return HeartResult(accepted=True, visible_count=len(current.hearts), is_owner_noop=True)
        if player_id in current.hearts:
            raise AlreadyAppliedError(
                f"Player {player_id} already hearted round {current.number}",
                code=ErrorCode.ALREADY_HEARTED,
            )

        current.hearts.append(player_id)
        game.heart_totals[owner_id] = game.heart_totals.get(owner_id, 0) + 1
        await self._repo.save(game)
        return HeartResult(accepted=True, visible_count=len(current.hearts))

    async def end_round(self, code: str, expected_round_number: int | None = None) -> RoundEndResult:
        """
        Reveal the owner and score the current round.

        Scoring is applied once: ending a round that is already revealed or
        complete raises AlreadyAppliedError, as does an `expected_round_number`
        that no longer matches the current round (a stale timer).
        """
        game, current = await self._load_current_round(code)
        if expected_round_number is not None and current.number != expected_round_number:
            raise AlreadyAppliedError(
                f"Round {expected_round_number} is no longer current",
                code=ErrorCode.ROUND_ADVANCED,
            )
        if current.status in (RoundStatus.REVEALING, RoundStatus.COMPLETE):
            raise AlreadyAppliedError(f"Round {current.number} has already ended", code=ErrorCode.ROUND_ALREADY_ENDED)
        self._require_playing(current)

        current.status = RoundStatus.REVEALING
        round_scores = score_round(current, game.players, game.config.round_duration_seconds, self._clock())
        for player_id, points in round_scores.items():
            game.scores[player_id] = game.scores.get(player_id, 0) + points
        current.status = RoundStatus.COMPLETE

        await self._repo.save(game)
        logger.info("round ended", code=game.code, round_number=current.number, round_scores=round_scores)
        return RoundEndResult(
            round=current,
            scores=dict(game.scores),
            round_scores=round_scores,
            heart_totals=dict(game.heart_totals),
        )
