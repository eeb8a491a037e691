from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from shared.logging import setup_logging
from shared.storage import InMemoryStore, SqliteStore, StoreUnavailableError
from songguess.logic.exceptions import GameError
from songguess.logic.lifecycle import GameLifecycle
from songguess.logic.repository import GameRepository
from songguess.logic.rounds import RoundEngine
from songguess.messaging.broadcaster import (
    ChannelBroadcaster,
    FanoutBroadcaster,
    RetryingBroadcaster,
    WebhookBroadcaster,
)
from songguess.server.handlers import (
    InvalidBodyError,
    create_game,
    game_error_handler,
    get_game,
    invalid_body_handler,
    join_game,
    leave_game,
    next_round,
    start_game,
    store_unavailable_handler,
    submit_guess,
    submit_heart,
    timer_expired,
)
from songguess.server.settings import GameServerSettings, StoreBackend
from songguess.server.websocket import websocket_endpoint
from songguess.session.manager import GameSessionManager
from songguess.tracks.deezer import DeezerPreviewResolver

logger = structlog.get_logger()

if TYPE_CHECKING:
    import random
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

    from shared.storage import KeyValueStore
    from songguess.messaging.broadcaster import EventBroadcaster
    from songguess.tracks.source import PreviewResolver, TrackSource


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def _build_broadcaster(settings: GameServerSettings, channels: ChannelBroadcaster) -> EventBroadcaster:
    if not settings.webhook_url:
        return channels
    webhook = RetryingBroadcaster(
        WebhookBroadcaster(settings.webhook_url),
        max_retries=settings.broadcast_max_retries,
    )
    return FanoutBroadcaster(channels, webhook)


def create_app(  # noqa: PLR0913
    settings: GameServerSettings | None = None,
    store: KeyValueStore | None = None,
    track_source: TrackSource | None = None,
    preview_resolver: PreviewResolver | None = None,
    rng: random.Random | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = GameServerSettings()

    # When the app creates its own store, it owns the store lifecycle.
    owned_store: InMemoryStore | SqliteStore | None = None
    if store is None:
        if settings.store_backend == StoreBackend.SQLITE:
            sqlite_store = SqliteStore(settings.store_path)
            sqlite_store.connect()
            owned_store = store = sqlite_store
        else:
            owned_store = store = InMemoryStore()

    channels = ChannelBroadcaster()
    repository = GameRepository(store, ttl_seconds=settings.game_ttl_seconds)
    session_manager = GameSessionManager(
        GameLifecycle(repository, rng=rng),
        RoundEngine(repository),
        _build_broadcaster(settings, channels),
        track_source=track_source,
        preview_resolver=preview_resolver or DeezerPreviewResolver(settings.deezer_api_base),
        round_options=settings.round_options,
        default_total_rounds=settings.default_total_rounds,
        round_duration_seconds=settings.round_duration_seconds,
        max_tracks_per_player=settings.max_tracks_per_player,
        min_players_to_start=settings.min_players_to_start,
        require_preview=settings.require_preview,
        rng=rng,
    )

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, channels)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/games", create_game, methods=["POST"]),
        Route("/games/{code}", get_game, methods=["GET"]),
        Route("/games/{code}/join", join_game, methods=["POST"]),
        Route("/games/{code}/leave", leave_game, methods=["POST"]),
        Route("/games/{code}/start", start_game, methods=["POST"]),
        Route("/games/{code}/guess", submit_guess, methods=["POST"]),
        Route("/games/{code}/heart", submit_heart, methods=["POST"]),
        Route("/games/{code}/timer-expired", timer_expired, methods=["POST"]),
        Route("/games/{code}/next-round", next_round, methods=["POST"]),
        WebSocketRoute("/ws/games/{code}", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        if isinstance(owned_store, InMemoryStore):
            owned_store.start_cleanup()
        yield
        if isinstance(owned_store, InMemoryStore):
            await owned_store.stop_cleanup()
        elif isinstance(owned_store, SqliteStore):
            owned_store.close()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            GameError: game_error_handler,
            InvalidBodyError: invalid_body_handler,
            StoreUnavailableError: store_unavailable_handler,
        },
    )
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.session_manager = session_manager
    app.state.channels = channels

    logger.info("game server ready", store_backend=settings.store_backend)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for uvicorn --factory songguess.server.app:get_app."""
    settings = GameServerSettings()
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings)
