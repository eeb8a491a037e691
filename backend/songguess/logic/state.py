"""
Pydantic models for the persisted game record.

One GameState per game code is read in full, mutated in memory and written
back in full. The models are intentionally mutable for that reason.
"""

from pydantic import BaseModel, Field

from songguess.logic.enums import GameStatus, RoundStatus, TimeRange


class Track(BaseModel):
    """A candidate song as supplied by a track source.

    `id` is the stable de-duplication key. `preview_url` is the playable
    audio locator, or None when no preview could be resolved.
    """

    id: str = Field(min_length=1)
    name: str
    artists: list[str] = Field(default_factory=list)
    album: str = ""
    image_url: str | None = None
    isrc: str | None = None
    preview_url: str | None = None

    @property
    def is_playable(self) -> bool:
        return self.preview_url is not None


class Player(BaseModel):
    """A participant, unique per external account id within one game."""

    id: str
    name: str
    external_id: str
    image: str | None = None
    is_host: bool = False
    is_connected: bool = True
    ranked_tracks: list[Track] = Field(default_factory=list)  # rank 0 = most preferred


class RoundSong(BaseModel):
    """A track paired with exactly one owning player."""

    track: Track
    owner_id: str
    owner_name: str


class Round(BaseModel):
    """One guessing round. Timestamps are epoch milliseconds."""

    number: int = Field(ge=1)
    song: RoundSong
    guesses: dict[str, str] = Field(default_factory=dict)  # guesser id -> guessed owner id
    guess_timestamps: dict[str, int] = Field(default_factory=dict)  # guesser id -> ms
    hearts: list[str] = Field(default_factory=list)
    status: RoundStatus = RoundStatus.WAITING
    started_at: int | None = None


class GameConfig(BaseModel):
    """Settings captured at creation time. Immutable afterwards."""

    requested_rounds: int = Field(default=10, ge=1)
    time_range: TimeRange = TimeRange.MEDIUM_TERM
    round_duration_seconds: int = Field(default=30, ge=1)


class GameState(BaseModel):
    """Root aggregate for one game, keyed by its shareable code."""

    code: str
    host_id: str
    status: GameStatus = GameStatus.LOBBY
    players: list[Player] = Field(default_factory=list)
    rounds: list[Round] = Field(default_factory=list)
    current_round: int = 0
    total_rounds: int
    scores: dict[str, int] = Field(default_factory=dict)
    heart_totals: dict[str, int] = Field(default_factory=dict)
    song_pool: list[RoundSong] = Field(default_factory=list)
    created_at: int
    config: GameConfig = Field(default_factory=GameConfig)

    def get_player(self, player_id: str) -> Player | None:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def find_by_external_id(self, external_id: str) -> Player | None:
        for player in self.players:
            if player.external_id == external_id:
                return player
        return None

    @property
    def connected_players(self) -> list[Player]:
        return [p for p in self.players if p.is_connected]

    @property
    def active_round(self) -> Round | None:
        """The round at `current_round`, or None before start / after the last round."""
        if 0 <= self.current_round < len(self.rounds):
            return self.rounds[self.current_round]
        return None
