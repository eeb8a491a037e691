"""
Event broadcasting to everyone watching a game.

Broadcasts are best-effort: game state is already persisted when an event
is published, so a failed delivery is logged and never undoes the mutation.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import random
from typing import TYPE_CHECKING, Protocol

import httpx
import structlog

if TYPE_CHECKING:
    from starlette.websockets import WebSocket

    from songguess.messaging.events import EventName, WireModel

logger = structlog.get_logger()

CHANNEL_PREFIX = "presence-game-"


def channel_name(code: str) -> str:
    return f"{CHANNEL_PREFIX}{code}"


class EventBroadcaster(Protocol):
    async def publish(self, code: str, event: EventName, payload: dict) -> None: ...


class ChannelBroadcaster:
    """Fan events out to the WebSocket subscribers of each game channel."""

    def __init__(self) -> None:
        self._subscribers: dict[str, dict[str, WebSocket]] = {}  # code -> {conn_id -> ws}
        self._subscriber_games: dict[str, str] = {}  # conn_id -> code

    def subscribe(self, code: str, connection_id: str, websocket: WebSocket) -> None:
        self._subscribers.setdefault(code, {})[connection_id] = websocket
        self._subscriber_games[connection_id] = code

    def unsubscribe(self, connection_id: str) -> str | None:
        """Drop a subscriber and return the game code it watched, or None."""
        code = self._subscriber_games.pop(connection_id, None)
        if code is not None and code in self._subscribers:
            self._subscribers[code].pop(connection_id, None)
            if not self._subscribers[code]:
                del self._subscribers[code]
        return code

    def subscriber_count(self, code: str) -> int:
        return len(self._subscribers.get(code, {}))

    async def publish(self, code: str, event: EventName, payload: dict) -> None:
        message = json.dumps({"channel": channel_name(code), "event": str(event), "data": payload})
        for ws in list(self._subscribers.get(code, {}).values()):
            with contextlib.suppress(ConnectionError, RuntimeError):
                await ws.send_text(message)


class WebhookBroadcaster:
    """POST each event to an external realtime relay."""

    def __init__(self, url: str, *, timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._timeout = timeout
        self._client = client

    async def publish(self, code: str, event: EventName, payload: dict) -> None:
        body = {"channel": channel_name(code), "event": str(event), "data": payload}
        if self._client is not None:
            response = await self._client.post(self._url, json=body, timeout=self._timeout)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, json=body)
            response.raise_for_status()


class FanoutBroadcaster:
    """Publish to several broadcasters in order; the first failure propagates."""

    def __init__(self, *targets: EventBroadcaster) -> None:
        self._targets = targets

    async def publish(self, code: str, event: EventName, payload: dict) -> None:
        for target in self._targets:
            await target.publish(code, event, payload)


class RetryingBroadcaster:
    """
    Retry a broadcaster with exponential backoff and jitter.

    After `max_retries` extra attempts the last error is re-raised.
    """

    def __init__(
        self,
        inner: EventBroadcaster,
        *,
        max_retries: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 2.0,
    ) -> None:
        self._inner = inner
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay

    def _delay(self, attempt: int) -> float:
        delay = min(self._base_delay * 2**attempt, self._max_delay)
        return delay * random.uniform(0.5, 1.0)  # noqa: S311

    async def publish(self, code: str, event: EventName, payload: dict) -> None:
        for attempt in range(self._max_retries + 1):
            try:
                await self._inner.publish(code, event, payload)
            except (httpx.HTTPError, ConnectionError, OSError) as e:
                if attempt >= self._max_retries:
                    raise
                delay = self._delay(attempt)
                logger.warning(
                    "broadcast failed, retrying",
                    code=code,
                    event=str(event),
                    attempt=attempt + 1,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await asyncio.sleep(delay)
            else:
                return


async def publish_safely(broadcaster: EventBroadcaster, code: str, event: EventName, payload: WireModel) -> bool:
    """Publish an event, logging instead of raising on failure. Returns True on delivery."""
    try:
        await broadcaster.publish(code, event, payload.to_wire())
    except Exception:
        logger.exception("broadcast failed", code=code, event=str(event))
        return False
    return True
