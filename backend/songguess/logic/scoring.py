"""
Time-decayed scoring for correct guesses.

A correct guess is worth BASE_POINTS at the start of the round and loses
PENALTY_PER_SECOND for every whole second elapsed, never dropping below the
floor reached at the end of the round. Wrong guesses and missing guesses
score zero.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from songguess.logic.state import Player, Round

BASE_POINTS = 100
PENALTY_PER_SECOND = 2
DEFAULT_ROUND_DURATION_SECONDS = 30


def min_points(round_duration_seconds: int = DEFAULT_ROUND_DURATION_SECONDS) -> int:
    """Floor score: what a correct guess earns in the last second (40 for 30s rounds)."""
    return max(0, BASE_POINTS - round_duration_seconds * PENALTY_PER_SECOND)


def calculate_time_based_score(
    round_started_at: int,
    guess_timestamp: int,
    round_duration_seconds: int = DEFAULT_ROUND_DURATION_SECONDS,
) -> int:
    """Points for a correct guess made at `guess_timestamp` (both epoch ms)."""
    elapsed_seconds = max(0, guess_timestamp - round_started_at) // 1000
    score = BASE_POINTS - elapsed_seconds * PENALTY_PER_SECOND
    return min(BASE_POINTS, max(min_points(round_duration_seconds), score))


def score_round(
    game_round: Round,
    players: list[Player],
    round_duration_seconds: int,
    now: int,
) -> dict[str, int]:
    """
    Compute per-player points for one round.

    Every roster member gets an entry; only correct guessers score above zero.
    A round never stamped as started, or a guess without a timestamp, is timed at `now`.
    """
    started_at = game_round.started_at if game_round.started_at is not None else now
    owner_id = game_round.song.owner_id

    round_scores = {p.id: 0 for p in players}
    for guesser_id, guessed_id in game_round.guesses.items():
        if guessed_id != owner_id:
            round_scores[guesser_id] = 0
            continue
        guessed_at = game_round.guess_timestamps.get(guesser_id, now)
        round_scores[guesser_id] = calculate_time_based_score(started_at, guessed_at, round_duration_seconds)
    return round_scores
