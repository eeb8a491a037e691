"""
Result models returned by the lifecycle and round engines.
"""

from pydantic import BaseModel

from songguess.logic.state import Round


class GuessResult(BaseModel):
    """Outcome of a recorded guess."""

    round: Round
    all_guessed: bool


class HeartResult(BaseModel):
    """Outcome of a heart submission.

    `is_owner_noop` is True when the song owner hearted their own song:
    acknowledged, but nothing was recorded.
    """

    accepted: bool
    visible_count: int
    is_owner_noop: bool = False


class RoundEndResult(BaseModel):
    """Scores after a round was ended and revealed."""

    round: Round
    scores: dict[str, int]
    round_scores: dict[str, int]
    heart_totals: dict[str, int]


class NextRoundResult(BaseModel):
    """Outcome of advancing past a round.

    Exactly one of `round` (the newly started round) or `game_over` applies.
    `already_advanced` marks a repeated request that changed nothing.
    """

    round: Round | None = None
    game_over: bool = False
    already_advanced: bool = False
    final_scores: dict[str, int] | None = None
    heart_totals: dict[str, int] | None = None
