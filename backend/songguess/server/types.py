"""Request bodies for the game HTTP API.

Fields accept both snake_case and camelCase keys. Unknown keys are rejected.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from songguess.logic.enums import TimeRange
from songguess.logic.state import Track

_MAX_SUBMITTED_TRACKS = 200


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class TrackBody(RequestModel):
    id: str = Field(min_length=1, max_length=200)
    name: str = Field(min_length=1, max_length=500)
    artists: list[str] = Field(default_factory=list, max_length=20)
    album: str = Field(default="", max_length=500)
    image_url: str | None = Field(default=None, max_length=2000)
    isrc: str | None = Field(default=None, max_length=20)
    preview_url: str | None = Field(default=None, max_length=2000)

    def to_track(self) -> Track:
        return Track(**self.model_dump())


class PlayerBody(RequestModel):
    """A player's identity plus, optionally, their ranked tracks (favourite first).

    When `tracks` is omitted the server asks its track source for them.
    """

    name: str = Field(min_length=1, max_length=50)
    external_id: str = Field(min_length=1, max_length=100)
    image: str | None = Field(default=None, max_length=2000)
    tracks: list[TrackBody] | None = Field(default=None, max_length=_MAX_SUBMITTED_TRACKS)

    def to_tracks(self) -> list[Track] | None:
        if self.tracks is None:
            return None
        return [t.to_track() for t in self.tracks]


class CreateGameRequest(PlayerBody):
    total_rounds: int | None = Field(default=None, ge=1, strict=True)
    time_range: TimeRange = TimeRange.MEDIUM_TERM


class JoinGameRequest(PlayerBody):
    pass


class PlayerActionRequest(RequestModel):
    """Body for leave, start and heart: just the acting player."""

    player_id: str = Field(min_length=1, max_length=100)


class GuessRequest(RequestModel):
    player_id: str = Field(min_length=1, max_length=100)
    guessed_player_id: str = Field(min_length=1, max_length=100)


class TimerExpiredRequest(RequestModel):
    round_number: int = Field(ge=1, strict=True)


class NextRoundRequest(RequestModel):
    current_round_number: int = Field(ge=1, strict=True)
