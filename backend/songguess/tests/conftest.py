from __future__ import annotations

import random
from typing import TYPE_CHECKING

import pytest

from shared.storage import InMemoryStore
from songguess.logic.lifecycle import GameLifecycle
from songguess.logic.repository import GameRepository
from songguess.logic.rounds import RoundEngine
from songguess.logic.state import Player, Track

if TYPE_CHECKING:
    from collections.abc import Sequence

START_MS = 1_700_000_000_000


# ============================================================================
# Builders
# ============================================================================


def make_track(track_id: str, *, playable: bool = True, isrc: str | None = None) -> Track:
    return Track(
        id=track_id,
        name=f"Song {track_id}",
        artists=[f"Artist {track_id}"],
        isrc=isrc,
        preview_url=f"https://cdn.example/{track_id}.mp3" if playable else None,
    )


def make_player(
    player_id: str,
    track_ids: Sequence[str] = (),
    *,
    name: str | None = None,
    external_id: str | None = None,
    is_connected: bool = True,
) -> Player:
    return Player(
        id=player_id,
        name=name or player_id.capitalize(),
        external_id=external_id or f"ext-{player_id}",
        is_connected=is_connected,
        ranked_tracks=[make_track(t) for t in track_ids],
    )


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repository(store: InMemoryStore) -> GameRepository:
    return GameRepository(store)


@pytest.fixture
def lifecycle(repository: GameRepository, clock: FakeClock, rng: random.Random) -> GameLifecycle:
    return GameLifecycle(repository, clock=clock, rng=rng)


@pytest.fixture
def engine(repository: GameRepository, clock: FakeClock) -> RoundEngine:
    return RoundEngine(repository, clock=clock)
