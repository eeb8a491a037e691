"""Track source and preview resolver contracts, plus track preparation."""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING, Protocol

import structlog

if TYPE_CHECKING:
    from collections.abc import Sequence

    from songguess.logic.enums import TimeRange
    from songguess.logic.state import Track

logger = structlog.get_logger()

MAX_TRACKS_PER_PLAYER = 25
_RESOLVE_CONCURRENCY = 8


class TrackSource(Protocol):
    """Supplies a player's tracks ordered by preference (index 0 = favourite)."""

    async def fetch(self, external_id: str, time_range: TimeRange) -> list[Track]: ...


class PreviewResolver(Protocol):
    """Finds a playable audio locator for a track, or None."""

    async def resolve(self, track: Track) -> str | None: ...


class StaticTrackSource:
    """Serves fixed per-account libraries. Used for local play and tests."""

    def __init__(self, libraries: dict[str, list[Track]] | None = None) -> None:
        self._libraries = libraries or {}

    async def fetch(self, external_id: str, time_range: TimeRange) -> list[Track]:  # noqa: ARG002
        return [t.model_copy() for t in self._libraries.get(external_id, [])]


class PassthroughPreviewResolver:
    """Keeps whatever preview the track already carries."""

    async def resolve(self, track: Track) -> str | None:
        return track.preview_url


def dedupe_tracks(tracks: Sequence[Track]) -> list[Track]:
    """Drop repeated track ids, keeping the best-ranked occurrence."""
    seen: set[str] = set()
    unique: list[Track] = []
    for track in tracks:
        if track.id in seen:
            continue
        seen.add(track.id)
        unique.append(track)
    return unique


def select_tracks(tracks: Sequence[Track], max_tracks: int, rng: random.Random | None = None) -> list[Track]:
    """Randomly keep `max_tracks` of `tracks`, preserving their relative order."""
    if len(tracks) <= max_tracks:
        return list(tracks)
    rng = rng or random.Random()  # noqa: S311
    keep = sorted(rng.sample(range(len(tracks)), max_tracks))
    return [tracks[i] for i in keep]


async def prepare_tracks(
    tracks: Sequence[Track],
    resolver: PreviewResolver,
    *,
    max_tracks: int = MAX_TRACKS_PER_PLAYER,
    require_preview: bool = False,
    rng: random.Random | None = None,
) -> list[Track]:
    """
    Turn a raw ranked list into the list stored on a Player.

    Duplicates are removed, then at most `max_tracks` entries are sampled at
    random. The sample keeps its original rank order. Previews are resolved
    concurrently; tracks without one are kept unless `require_preview` is set.
    """
    selected = select_tracks(dedupe_tracks(tracks), max_tracks, rng)
    semaphore = asyncio.Semaphore(_RESOLVE_CONCURRENCY)

    async def _resolve(track: Track) -> Track:
        if track.preview_url is not None:
            return track
        async with semaphore:
            preview = await resolver.resolve(track)
        return track.model_copy(update={"preview_url": preview})

    resolved = list(await asyncio.gather(*(_resolve(t) for t in selected)))
    playable = sum(1 for t in resolved if t.is_playable)
    logger.info("tracks prepared", total=len(resolved), playable=playable)

    if require_preview:
        return [t for t in resolved if t.is_playable]
    return resolved
