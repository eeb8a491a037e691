"""
Command orchestration for game sessions.

GameSessionManager is the only entry point the HTTP layer talks to. It
prepares player tracks, runs the lifecycle and round engines, and
publishes the matching broadcast events once state has been persisted.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from shared.logging import bind_game_context
from songguess.logic.codes import normalize_game_code
from songguess.logic.enums import TIME_RANGE_LABELS, ErrorCode, GameStatus, RoundStatus, TimeRange
from songguess.logic.exceptions import (
    AlreadyAppliedError,
    InvalidRequestError,
    InvalidStateError,
    UnauthorizedError,
)
from songguess.logic.state import GameConfig, Player
from songguess.logic.types import NextRoundResult
from songguess.messaging.broadcaster import publish_safely
from songguess.messaging.events import (
    EventName,
    GameStartedPayload,
    PlayerGuessedPayload,
    PlayerHeartedPayload,
    PlayerJoinedPayload,
    PlayerLeftPayload,
    PublicGame,
    RoundStartPayload,
    TimerExpiredPayload,
    game_over_payload,
    public_game,
    public_player,
    public_round,
    round_end_payload,
)
from songguess.tracks.source import MAX_TRACKS_PER_PLAYER, PassthroughPreviewResolver, StaticTrackSource, prepare_tracks

if TYPE_CHECKING:
    import random
    from collections.abc import Callable, Sequence

    from songguess.logic.lifecycle import GameLifecycle
    from songguess.logic.rounds import RoundEngine
    from songguess.logic.state import GameState, Round, Track
    from songguess.logic.types import GuessResult, HeartResult, RoundEndResult
    from songguess.messaging.broadcaster import EventBroadcaster
    from songguess.messaging.events import WireModel
    from songguess.tracks.source import PreviewResolver, TrackSource

logger = structlog.get_logger()

DEFAULT_ROUND_OPTIONS = (10, 25, 35, 50)


def _new_player_id() -> str:
    return str(uuid4())


class GameSessionManager:
    def __init__(  # noqa: PLR0913
        self,
        lifecycle: GameLifecycle,
        rounds: RoundEngine,
        broadcaster: EventBroadcaster,
        *,
        track_source: TrackSource | None = None,
        preview_resolver: PreviewResolver | None = None,
        round_options: Sequence[int] = DEFAULT_ROUND_OPTIONS,
        default_total_rounds: int | None = None,
        round_duration_seconds: int = 30,
        max_tracks_per_player: int = MAX_TRACKS_PER_PLAYER,
        min_players_to_start: int = 2,
        require_preview: bool = False,
        rng: random.Random | None = None,
        id_factory: Callable[[], str] = _new_player_id,
    ) -> None:
        self._lifecycle = lifecycle
        self._rounds = rounds
        self._broadcaster = broadcaster
        self._track_source = track_source or StaticTrackSource()
        self._preview_resolver = preview_resolver or PassthroughPreviewResolver()
        self._round_options = tuple(round_options)
        self._default_total_rounds = default_total_rounds or self._round_options[0]
        self._round_duration_seconds = round_duration_seconds
        self._max_tracks_per_player = max_tracks_per_player
        self._min_players_to_start = min_players_to_start
        self._require_preview = require_preview
        self._rng = rng
        self._id_factory = id_factory
        # code -> Lock; an entry lives only while some command holds or awaits it.
        self._game_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, code: str) -> asyncio.Lock:
        """Per-game lock serializing read-modify-write commands within this process."""
        return self._game_locks.setdefault(normalize_game_code(code), asyncio.Lock())

    async def _publish(self, code: str, event: EventName, payload: WireModel) -> None:
        await publish_safely(self._broadcaster, code, event, payload)

    async def _prepare_player(
        self,
        name: str,
        external_id: str,
        image: str | None,
        tracks: Sequence[Track] | None,
        time_range: TimeRange,
    ) -> Player:
        if tracks is None:
            tracks = await self._track_source.fetch(external_id, time_range)
            logger.info(
                "tracks fetched",
                external_id=external_id,
                count=len(tracks),
                time_range=TIME_RANGE_LABELS[time_range],
            )
        prepared = await prepare_tracks(
            tracks,
            self._preview_resolver,
            max_tracks=self._max_tracks_per_player,
            require_preview=self._require_preview,
            rng=self._rng,
        )
        return Player(
            id=self._id_factory(),
            name=name,
            external_id=external_id,
            image=image,
            ranked_tracks=prepared,
        )

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def create_game(  # noqa: PLR0913
        self,
        host_name: str,
        external_id: str,
        *,
        image: str | None = None,
        tracks: Sequence[Track] | None = None,
        total_rounds: int | None = None,
        time_range: TimeRange = TimeRange.MEDIUM_TERM,
    ) -> GameState:
        requested = total_rounds if total_rounds is not None else self._default_total_rounds
        if requested not in self._round_options:
            options = ", ".join(str(o) for o in self._round_options)
            raise InvalidRequestError(f"Round count must be one of {options}")

        host = await self._prepare_player(host_name, external_id, image, tracks, time_range)
        config = GameConfig(
            requested_rounds=requested,
            time_range=time_range,
            round_duration_seconds=self._round_duration_seconds,
        )
        game = await self._lifecycle.create_game(host, config)
        bind_game_context(game.code, player_id=host.id)
        return game

    async def join_game(
        self,
        code: str,
        name: str,
        external_id: str,
        *,
        image: str | None = None,
        tracks: Sequence[Track] | None = None,
    ) -> tuple[GameState, Player]:
        """Join a lobby, or rejoin it under the same external id. Returns the game and the joined player."""
        game = await self._lifecycle.get_game(code)
        player = await self._prepare_player(name, external_id, image, tracks, game.config.time_range)

        async with self._lock(game.code):
            game = await self._lifecycle.add_player_to_game(game.code, player)
        joined = game.find_by_external_id(external_id) or player
        bind_game_context(game.code, player_id=joined.id)

        await self._publish(game.code, EventName.PLAYER_JOINED, PlayerJoinedPayload(player=public_player(joined)))
        return game, joined

    async def leave_game(self, code: str, player_id: str) -> GameState:
        async with self._lock(code):
            game = await self._lifecycle.remove_player_from_game(code, player_id)
        await self._publish(game.code, EventName.PLAYER_LEFT, PlayerLeftPayload(player_id=player_id))
        return game

    async def start_game(self, code: str, host_id: str) -> GameState:
        """
        Host-only: build the pool, start the game, and open round 1.

        Publishes `game-started` followed by `round-start`.
        """
        async with self._lock(code):
            game = await self._lifecycle.get_game(code)
            if game.host_id != host_id:
                raise UnauthorizedError(f"Only the host can start game {game.code}")
            if game.status != GameStatus.LOBBY:
                raise InvalidStateError(f"Game {game.code} is not in the lobby")
            connected = len(game.connected_players)
            if connected < self._min_players_to_start:
                raise InvalidStateError(
                    f"Need at least {self._min_players_to_start} players to start, have {connected}",
                    code=ErrorCode.NOT_ENOUGH_PLAYERS,
                )

            game = await self._lifecycle.start_game(game.code)
            await self._publish(game.code, EventName.GAME_STARTED, GameStartedPayload(game=public_game(game)))

            first_round = await self._lifecycle.start_round(game.code)
            await self._publish(game.code, EventName.ROUND_START, RoundStartPayload(round=public_round(first_round)))
            return await self._lifecycle.get_game(game.code)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _end_round(self, code: str, expected_round_number: int | None = None) -> RoundEndResult:
        result = await self._rounds.end_round(code, expected_round_number)
        await self._publish(code, EventName.ROUND_END, round_end_payload(result))
        return result

    async def submit_guess(self, code: str, player_id: str, guessed_player_id: str) -> GuessResult:
        """Record a guess; ends the round once every connected player has guessed."""
        async with self._lock(code):
            result = await self._rounds.submit_guess(code, player_id, guessed_player_id)
            code = normalize_game_code(code)
            await self._publish(code, EventName.PLAYER_GUESSED, PlayerGuessedPayload(player_id=player_id))
            if result.all_guessed:
                try:
                    await self._end_round(code, result.round.number)
                except AlreadyAppliedError as e:
                    logger.info("round already ended", code=code, reason=e.code)
            return result

    async def submit_heart(self, code: str, player_id: str) -> HeartResult:
        async with self._lock(code):
            result = await self._rounds.submit_heart(code, player_id)
        if not result.is_owner_noop:
            await self._publish(
                normalize_game_code(code),
                EventName.PLAYER_HEARTED,
                PlayerHeartedPayload(player_id=player_id, visible_heart_count=result.visible_count),
            )
        return result

    async def timer_expired(self, code: str, round_number: int) -> RoundEndResult:
        """
        End the round when its countdown runs out.

        Raises AlreadyAppliedError when `round_number` is stale or the round
        already ended through guesses or another client's timer.
        """
        async with self._lock(code):
            game = await self._lifecycle.get_game(code)
            current = game.active_round
            if current is None or current.number != round_number:
                raise AlreadyAppliedError(f"Round {round_number} is no longer current", code=ErrorCode.ROUND_ADVANCED)
            if current.status != RoundStatus.PLAYING:
                raise AlreadyAppliedError(f"Round {round_number} is not playing", code=ErrorCode.ROUND_ALREADY_ENDED)

            result = await self._rounds.end_round(game.code, round_number)
            await self._publish(game.code, EventName.TIMER_EXPIRED, TimerExpiredPayload(round_number=round_number))
            await self._publish(game.code, EventName.ROUND_END, round_end_payload(result))
            return result

    async def _republish_round_start(self, game: GameState) -> Round | None:
        current = game.active_round
        if current is not None:
            await self._publish(game.code, EventName.ROUND_START, RoundStartPayload(round=public_round(current)))
        return current

    async def _game_over(self, game: GameState) -> NextRoundResult:
        await self._publish(game.code, EventName.GAME_OVER, game_over_payload(game))
        return NextRoundResult(
            game_over=True,
            final_scores=dict(game.scores),
            heart_totals=dict(game.heart_totals),
        )

    async def advance_round(self, code: str, current_round_number: int) -> NextRoundResult:
        """
        Move past `current_round_number` (1-indexed) and start the next round.

        Late or repeated requests never skip a round: when the game has
        already moved on, the current `round-start` (or `game-over`) is
        re-published for the caller and nothing else changes.
        """
        async with self._lock(code):
            game = await self._lifecycle.get_game(code)
            if game.status == GameStatus.FINISHED:
                return await self._game_over(game)
            if game.status == GameStatus.PLAYING and game.current_round + 1 > current_round_number:
                current = await self._republish_round_start(game)
                return NextRoundResult(round=current, already_advanced=True)

            new_round = await self._lifecycle.next_round(game.code, current_round_number)
            if new_round is None:
                return await self._game_over(await self._lifecycle.get_game(game.code))

            started = await self._lifecycle.start_round(game.code)
            await self._publish(game.code, EventName.ROUND_START, RoundStartPayload(round=public_round(started)))
            return NextRoundResult(round=started)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_game(self, code: str) -> PublicGame:
        """Sanitized view: no track lists, no pool, no owner of an unrevealed round."""
        return public_game(await self._lifecycle.get_game(code))
