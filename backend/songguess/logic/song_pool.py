"""
Song pool construction: ownership resolution, even distribution, and
anti-streak ordering.

Pure functions over the player roster. Randomness comes from an injectable
random.Random so tests and replays can be made deterministic.
"""

from __future__ import annotations

import random
from collections import Counter
from typing import TYPE_CHECKING

import structlog

from songguess.logic.state import RoundSong

if TYPE_CHECKING:
    from collections.abc import Sequence

    from songguess.logic.state import Player

logger = structlog.get_logger()

# An owner may appear at most this many times in a row in the final pool.
MAX_CONSECUTIVE_OWNER = 2


def claim_tracks(players: Sequence[Player]) -> dict[str, list[RoundSong]]:
    """
    Assign every distinct track id to exactly one player.

    Tracks are scanned tier by tier (rank 0 of every player, then rank 1, ...),
    so a track goes to whoever ranks it highest. Ties at the same rank go to
    the player who joined first. Returns player id -> claimed songs in rank order.
    """
    claimed: dict[str, list[RoundSong]] = {p.id: [] for p in players}
    seen: set[str] = set()
    deepest = max((len(p.ranked_tracks) for p in players), default=0)

    for rank in range(deepest):
        for player in players:
            if rank >= len(player.ranked_tracks):
                continue
            track = player.ranked_tracks[rank]
            if track.id in seen:
                continue
            seen.add(track.id)
            claimed[player.id].append(RoundSong(track=track, owner_id=player.id, owner_name=player.name))
    return claimed


def contribution_targets(contributor_ids: Sequence[str], total_rounds: int) -> dict[str, int]:
    """
    Split total_rounds as evenly as possible across contributors.

    The first `total_rounds % n` contributors (roster order) take one extra song.
    """
    if not contributor_ids:
        return {}
    base, remainder = divmod(total_rounds, len(contributor_ids))
    return {pid: base + (1 if index < remainder else 0) for index, pid in enumerate(contributor_ids)}


def build_song_pool(
    players: Sequence[Player],
    total_rounds: int,
    rng: random.Random | None = None,
) -> list[RoundSong]:
    """
    Build the ordered song sequence for a whole game.

    1. Resolve ownership of duplicate tracks (see claim_tracks).
    2. Shuffle each player's claimed songs.
    3. Take each contributor's even share; players without any claimed
       song are not counted, so they do not shrink anyone else's share.
    4. Backfill any shortfall round-robin from players with leftovers.
    5. Shuffle the pool, then break up runs of the same owner.

    The result holds min(total_rounds, number of claimed tracks) songs.
    """
    rng = rng or random.Random()  # noqa: S311
    if not players or total_rounds <= 0:
        return []

    claimed = claim_tracks(players)
    for songs in claimed.values():
        rng.shuffle(songs)

    contributors = [p.id for p in players if claimed[p.id]]
    targets = contribution_targets(contributors, total_rounds)

    pool: list[RoundSong] = []
    leftovers: dict[str, list[RoundSong]] = {}
    contributions: dict[str, int] = {}
    for player in players:
        songs = claimed[player.id]
        take = min(targets.get(player.id, 0), len(songs))
        pool.extend(songs[:take])
        leftovers[player.id] = songs[take:]
        contributions[player.id] = take

    while len(pool) < total_rounds:
        added = False
        for player in players:
            if len(pool) >= total_rounds:
                break
            remaining = leftovers[player.id]
            if remaining:
                pool.append(remaining.pop(0))
                contributions[player.id] += 1
                added = True
        if not added:
            break

    rng.shuffle(pool)
    pool = spread_owners(pool)

    logger.info(
        "song pool built",
        size=len(pool),
        requested=total_rounds,
        distribution={p.name: contributions[p.id] for p in players},
    )
    return pool


def _tail_run(songs: Sequence[RoundSong]) -> tuple[str | None, int]:
    """Owner of the last song and how many times in a row it closes the sequence."""
    if not songs:
        return None, 0
    owner = songs[-1].owner_id
    length = 0
    for song in reversed(songs):
        if song.owner_id != owner:
            break
        length += 1
    return owner, length


def _can_finish(remaining: Counter[str], tail_owner: str | None, tail_length: int) -> bool:
    """
    True if `remaining` can still be laid out after the current tail without a run.

    An owner with `c` songs needs the other songs to split them into groups of
    at most MAX_CONSECUTIVE_OWNER; the first group is shortened by a tail
    run of that same owner.
    """
    total = sum(remaining.values())
    for owner, count in remaining.items():
        capacity = MAX_CONSECUTIVE_OWNER * (total - count + 1)
        if owner == tail_owner:
            capacity -= tail_length
        if count > capacity:
            return False
    return True


def spread_owners(pool: Sequence[RoundSong]) -> list[RoundSong]:
    """
    Reorder so no owner appears more than MAX_CONSECUTIVE_OWNER times in a row.

    Rebuilds the sequence one slot at a time, taking the earliest remaining
    song whose owner neither extends a run nor leaves the rest impossible to
    arrange. A pool that already satisfies the limit comes back unchanged.
    Pools where the limit cannot be met (e.g. one owner) are ordered best
    effort, still avoiding runs wherever a choice exists.
    """
    remaining = list(pool)
    counts = Counter(song.owner_id for song in remaining)
    result: list[RoundSong] = []

    while remaining:
        tail_owner, tail_length = _tail_run(result)
        feasible = _can_finish(counts, tail_owner, tail_length)
        fallback: int | None = None
        choice: int | None = None
        for index, song in enumerate(remaining):
            owner = song.owner_id
            if owner == tail_owner and tail_length >= MAX_CONSECUTIVE_OWNER:
                continue
            if fallback is None:
                fallback = index
            if not feasible:
                break
            counts[owner] -= 1
            next_length = tail_length + 1 if owner == tail_owner else 1
            fits = _can_finish(+counts, owner, next_length)
            counts[owner] += 1
            if fits:
                choice = index
                break

        if choice is None:
            choice = fallback if fallback is not None else 0
        song = remaining.pop(choice)
        counts[song.owner_id] -= 1
        result.append(song)
    return result
