"""
Game lifecycle: creation, roster changes, start, and round progression.

Every operation is a single read-modify-write of one GameState record.
There is no compare-and-swap, so each transition is guarded by the
persisted status fields: repeating an already-applied transition raises
AlreadyAppliedError instead of corrupting state.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

import structlog

from songguess.logic.codes import generate_game_code
from songguess.logic.enums import ErrorCode, GameStatus, RoundStatus
from songguess.logic.exceptions import (
    AlreadyAppliedError,
    InsufficientContentError,
    InvalidStateError,
    NotFoundError,
    UnknownPlayerError,
)
from songguess.logic.repository import now_ms
from songguess.logic.song_pool import build_song_pool
from songguess.logic.state import GameConfig, GameState, Player, Round

if TYPE_CHECKING:
    from collections.abc import Callable

    from songguess.logic.repository import GameRepository

logger = structlog.get_logger()


class GameLifecycle:
    """Owns game creation, joins and leaves, start, and round advancement."""

    def __init__(
        self,
        repository: GameRepository,
        *,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
        code_generator: Callable[[], str] = generate_game_code,
    ) -> None:
        self._repo = repository
        self._clock = clock
        self._rng = rng or random.Random()  # noqa: S311
        self._code_generator = code_generator

    async def get_game(self, code: str) -> GameState:
        return await self._repo.load(code)

    async def create_game(self, host: Player, config: GameConfig | None = None) -> GameState:
        """Create a lobby with `host` as its only player under a fresh unused code."""
        config = config or GameConfig()
        code = self._code_generator()
        while await self._repo.exists(code):
            code = self._code_generator()

        host.is_host = True
        host.is_connected = True
        game = GameState(
            code=code,
            host_id=host.id,
            players=[host],
            total_rounds=config.requested_rounds,
            scores={host.id: 0},
            heart_totals={host.id: 0},
            created_at=self._clock(),
            config=config,
        )
        await self._repo.save(game)
        logger.info("game created", code=code, host_id=host.id, requested_rounds=config.requested_rounds)
        return game

    async def add_player_to_game(self, code: str, player: Player) -> GameState:
        """
        Add a player to a lobby, or refresh them if their external id is already present.

        Rejoining marks the existing entry connected and replaces its track
        list; the roster never gains a duplicate.
        """
        game = await self._repo.load(code)
        if game.status != GameStatus.LOBBY:
            raise InvalidStateError(f"Game {game.code} has already started")

        existing = game.find_by_external_id(player.external_id)
        if existing is not None:
            existing.is_connected = True
            existing.ranked_tracks = player.ranked_tracks
            logger.info("player rejoined", code=game.code, player_id=existing.id)
        else:
            player.is_host = False
            player.is_connected = True
            game.players.append(player)
            game.scores[player.id] = 0
            game.heart_totals[player.id] = 0
            logger.info("player joined", code=game.code, player_id=player.id, tracks=len(player.ranked_tracks))

        await self._repo.save(game)
        return game

    async def remove_player_from_game(self, code: str, player_id: str) -> GameState:
        """Mark a player disconnected. Players, guesses and scores are never deleted."""
        game = await self._repo.load(code)
        player = game.get_player(player_id)
        if player is None:
            raise UnknownPlayerError(f"Player {player_id} is not in game {game.code}")
        player.is_connected = False
        await self._repo.save(game)
        logger.info("player left", code=game.code, player_id=player_id)
        return game

    async def start_game(self, code: str) -> GameState:
        """
        Build the song pool and move the game from lobby to playing.

        total_rounds is clamped to the pool size. The first round is appended
        in `waiting` status. An empty pool leaves the game in the lobby.
        """
        game = await self._repo.load(code)
        if game.status != GameStatus.LOBBY:
            raise InvalidStateError(f"Game {game.code} is not in the lobby")

        pool = build_song_pool(game.players, game.total_rounds, self._rng)
        if not pool:
            raise InsufficientContentError(f"No playable songs available for game {game.code}")

        game.song_pool = pool
        game.total_rounds = min(game.total_rounds, len(pool))
        game.status = GameStatus.PLAYING
        game.current_round = 0
        game.heart_totals = {p.id: 0 for p in game.players}
        game.rounds.append(Round(number=1, song=pool[0]))

        await self._repo.save(game)
        logger.info("game started", code=game.code, total_rounds=game.total_rounds, players=len(game.players))
        return game

    async def start_round(self, code: str) -> Round:
        """
        Open the current round for guessing and stamp its scoring epoch.

        Calling again while the round is already playing returns it untouched,
        so a duplicate trigger cannot reset the clock.
        """
        game = await self._repo.load(code)
        if game.status != GameStatus.PLAYING:
            raise InvalidStateError(f"Game {game.code} is not in progress")
        current = game.active_round
        if current is None:
            raise NotFoundError(f"Game {game.code} has no current round", code=ErrorCode.ROUND_NOT_FOUND)

        if current.status == RoundStatus.PLAYING:
            return current
        if current.status != RoundStatus.WAITING:
            raise AlreadyAppliedError(
                f"Round {current.number} has already ended",
                code=ErrorCode.ROUND_ALREADY_ENDED,
            )

        current.status = RoundStatus.PLAYING
        current.started_at = self._clock()
        await self._repo.save(game)
        logger.info("round started", code=game.code, round_number=current.number)
        return current

    async def next_round(self, code: str, expected_round_number: int | None = None) -> Round | None:
        """
        Advance to the next song, or finish the game after the last one.

        Returns the new `waiting` round, or None when the game just finished.
        When `expected_round_number` is given (the 1-indexed round the caller
        believes is current) and the game has already moved past it, the call
        raises AlreadyAppliedError instead of skipping a round. The current
        round must have ended; advancing out of a waiting or playing round
        raises InvalidStateError.
        """
        game = await self._repo.load(code)
        if game.status == GameStatus.FINISHED:
            raise AlreadyAppliedError(f"Game {game.code} is already finished", code=ErrorCode.GAME_ALREADY_FINISHED)
        if game.status != GameStatus.PLAYING:
            raise InvalidStateError(f"Game {game.code} is not in progress")
        if expected_round_number is not None and game.current_round + 1 != expected_round_number:
            raise AlreadyAppliedError(
                f"Game {game.code} is already on round {game.current_round + 1}",
                code=ErrorCode.ROUND_ADVANCED,
            )
        current = game.active_round
        if current is None or current.status != RoundStatus.COMPLETE:
            status = current.status if current is not None else "missing"
            raise InvalidStateError(
                f"Round {game.current_round + 1} is {status}, not complete",
                code=ErrorCode.ROUND_NOT_IN_STATUS,
            )

        game.current_round += 1
        if game.current_round >= game.total_rounds:
            game.status = GameStatus.FINISHED
            await self._repo.save(game)
            logger.info("game finished", code=game.code, scores=game.scores)
            return None

        new_round = Round(number=game.current_round + 1, song=game.song_pool[game.current_round])
        game.rounds.append(new_round)
        await self._repo.save(game)
        return new_round
