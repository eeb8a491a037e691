"""Game record persistence on top of a key-value store.

Each game is one JSON blob under `game:<CODE>`. Records are always read
and written whole; there is no field-level update.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from songguess.logic.codes import normalize_game_code
from songguess.logic.exceptions import NotFoundError
from songguess.logic.state import GameState

if TYPE_CHECKING:
    from shared.storage import KeyValueStore

GAME_KEY_PREFIX = "game:"
DEFAULT_GAME_TTL_SECONDS = 60 * 60 * 4


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def game_key(code: str) -> str:
    return f"{GAME_KEY_PREFIX}{normalize_game_code(code)}"


class GameRepository:
    """Load and save GameState records with a fixed TTL."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_GAME_TTL_SECONDS) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds

    async def find(self, code: str) -> GameState | None:
        raw = await self._store.get(game_key(code))
        if raw is None:
            return None
        return GameState.model_validate_json(raw)

    async def load(self, code: str) -> GameState:
        """Return the game or raise NotFoundError."""
        game = await self.find(code)
        if game is None:
            raise NotFoundError(f"Game {normalize_game_code(code)} not found")
        return game

    async def save(self, game: GameState) -> None:
        await self._store.set(game_key(game.code), game.model_dump_json(), self._ttl_seconds)

    async def delete(self, code: str) -> None:
        await self._store.delete(game_key(code))

    async def exists(self, code: str) -> bool:
        return await self._store.exists(game_key(code))
