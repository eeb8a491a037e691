"""HTTP endpoints for game commands and the domain error mapping."""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import TYPE_CHECKING, TypeVar, cast

import structlog
from pydantic import ValidationError
from starlette.responses import JSONResponse

from shared.storage import StoreUnavailableError
from songguess.logic.exceptions import (
    AlreadyAppliedError,
    GameError,
    InsufficientContentError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from songguess.messaging.events import public_game, public_round
from songguess.server.types import (
    CreateGameRequest,
    GuessRequest,
    JoinGameRequest,
    NextRoundRequest,
    PlayerActionRequest,
    RequestModel,
    TimerExpiredRequest,
)

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from songguess.session.manager import GameSessionManager

logger = structlog.get_logger()

_MAX_REQUEST_BODY_SIZE = 256 * 1024

RequestT = TypeVar("RequestT", bound=RequestModel)

# Checked in order: subclasses before their parents.
_ERROR_STATUS: tuple[tuple[type[GameError], HTTPStatus], ...] = (
    (NotFoundError, HTTPStatus.NOT_FOUND),
    (UnauthorizedError, HTTPStatus.FORBIDDEN),
    (InsufficientContentError, HTTPStatus.UNPROCESSABLE_ENTITY),
    (InvalidRequestError, HTTPStatus.UNPROCESSABLE_ENTITY),
    (InvalidStateError, HTTPStatus.CONFLICT),
)


class InvalidBodyError(Exception):
    """The request body is not valid JSON or does not match the request model."""


def _manager(request: Request) -> GameSessionManager:
    return request.app.state.session_manager


async def _parse_body(request: Request, model: type[RequestT]) -> RequestT:
    raw_body = await request.body()
    if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
        raise InvalidBodyError("Request body too large")
    try:
        body = json.loads(raw_body) if raw_body.strip() else {}
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidBodyError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise InvalidBodyError("Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise InvalidBodyError(str(e)) from e


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def game_error_handler(_request: Request, exc: Exception) -> Response:
    """Convert a rejected game command into a JSON response.

    AlreadyAppliedError is a benign no-op: another trigger already applied
    the transition, so the caller gets a success flagged as skipped.
    """
    error = cast("GameError", exc)
    if isinstance(error, AlreadyAppliedError):
        return JSONResponse({"success": True, "skipped": True, "reason": error.code})
    status = next((s for cls, s in _ERROR_STATUS if isinstance(error, cls)), HTTPStatus.BAD_REQUEST)
    return JSONResponse({"error": error.message, "code": error.code}, status_code=status)


async def invalid_body_handler(_request: Request, exc: Exception) -> Response:
    return JSONResponse({"error": str(exc)}, status_code=HTTPStatus.UNPROCESSABLE_ENTITY)


async def store_unavailable_handler(_request: Request, exc: Exception) -> Response:
    logger.error("game store unavailable", error=str(exc))
    return JSONResponse({"error": "Game store unavailable"}, status_code=HTTPStatus.SERVICE_UNAVAILABLE)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


async def create_game(request: Request) -> JSONResponse:
    req = await _parse_body(request, CreateGameRequest)
    game = await _manager(request).create_game(
        req.name,
        req.external_id,
        image=req.image,
        tracks=req.to_tracks(),
        total_rounds=req.total_rounds,
        time_range=req.time_range,
    )
    return JSONResponse(
        {"code": game.code, "playerId": game.host_id, "game": public_game(game).to_wire()},
        status_code=HTTPStatus.CREATED,
    )


async def get_game(request: Request) -> JSONResponse:
    view = await _manager(request).get_game(request.path_params["code"])
    return JSONResponse(view.to_wire())


async def join_game(request: Request) -> JSONResponse:
    req = await _parse_body(request, JoinGameRequest)
    game, player = await _manager(request).join_game(
        request.path_params["code"],
        req.name,
        req.external_id,
        image=req.image,
        tracks=req.to_tracks(),
    )
    return JSONResponse({"code": game.code, "playerId": player.id, "game": public_game(game).to_wire()})


async def leave_game(request: Request) -> JSONResponse:
    req = await _parse_body(request, PlayerActionRequest)
    await _manager(request).leave_game(request.path_params["code"], req.player_id)
    return JSONResponse({"success": True})


async def start_game(request: Request) -> JSONResponse:
    req = await _parse_body(request, PlayerActionRequest)
    game = await _manager(request).start_game(request.path_params["code"], req.player_id)
    return JSONResponse({"success": True, "game": public_game(game).to_wire()})


async def submit_guess(request: Request) -> JSONResponse:
    req = await _parse_body(request, GuessRequest)
    result = await _manager(request).submit_guess(request.path_params["code"], req.player_id, req.guessed_player_id)
    return JSONResponse({"success": True, "allGuessed": result.all_guessed})


async def submit_heart(request: Request) -> JSONResponse:
    req = await _parse_body(request, PlayerActionRequest)
    result = await _manager(request).submit_heart(request.path_params["code"], req.player_id)
    return JSONResponse(
        {"success": True, "counted": not result.is_owner_noop, "visibleHeartCount": result.visible_count},
    )


async def timer_expired(request: Request) -> JSONResponse:
    req = await _parse_body(request, TimerExpiredRequest)
    result = await _manager(request).timer_expired(request.path_params["code"], req.round_number)
    return JSONResponse({"success": True, "roundScores": result.round_scores, "scores": result.scores})


async def next_round(request: Request) -> JSONResponse:
    req = await _parse_body(request, NextRoundRequest)
    result = await _manager(request).advance_round(request.path_params["code"], req.current_round_number)
    if result.game_over:
        return JSONResponse(
            {
                "success": True,
                "gameOver": True,
                "finalScores": result.final_scores,
                "heartTotals": result.heart_totals,
            },
        )
    return JSONResponse(
        {
            "success": True,
            "gameOver": False,
            "alreadyAdvanced": result.already_advanced,
            "round": public_round(result.round).to_wire() if result.round is not None else None,
        },
    )
