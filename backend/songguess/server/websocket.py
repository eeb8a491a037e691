"""Event subscription over WebSocket: one channel per game code."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from songguess.logic.codes import is_valid_game_code, normalize_game_code

logger = structlog.get_logger()

if TYPE_CHECKING:
    from songguess.messaging.broadcaster import ChannelBroadcaster

_PING = "ping"
_PONG = "pong"


async def websocket_endpoint(websocket: WebSocket, channels: ChannelBroadcaster) -> None:
    """Subscribe the socket to a game's events until it disconnects.

    Clients only listen; commands go through the HTTP API. The one inbound
    message understood is a text "ping", answered with "pong".
    """
    code = normalize_game_code(websocket.path_params["code"])
    if not is_valid_game_code(code):
        await websocket.close(code=4000, reason="invalid_game_code")
        return

    await websocket.accept()
    connection_id = str(uuid4())
    channels.subscribe(code, connection_id, websocket)
    logger.info("websocket subscribed", code=code, connection_id=connection_id)

    try:
        while True:
            message = await websocket.receive_text()
            if message.strip() == _PING:
                await websocket.send_text(_PONG)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):  # fmt: skip
        pass
    finally:
        channels.unsubscribe(connection_id)
        logger.info("websocket unsubscribed", code=code, connection_id=connection_id)
        structlog.contextvars.clear_contextvars()
