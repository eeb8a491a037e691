"""Game server configuration via environment variables."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from shared.validators import ListEnvSettingsSource, parse_int_list, parse_string_list
from songguess.logic.repository import DEFAULT_GAME_TTL_SECONDS
from songguess.logic.scoring import DEFAULT_ROUND_DURATION_SECONDS
from songguess.tracks.deezer import DEEZER_API_BASE
from songguess.tracks.source import MAX_TRACKS_PER_PLAYER

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class StoreBackend(StrEnum):
    MEMORY = "memory"
    SQLITE = "sqlite"


class GameServerSettings(BaseSettings):
    model_config = {"env_prefix": "SONGGUESS_"}

    round_duration_seconds: int = Field(default=DEFAULT_ROUND_DURATION_SECONDS, ge=5)
    default_total_rounds: int = Field(default=10, ge=1)
    round_options: list[int] = [10, 25, 35, 50]
    game_ttl_seconds: int = Field(default=DEFAULT_GAME_TTL_SECONDS, ge=60)
    max_tracks_per_player: int = Field(default=MAX_TRACKS_PER_PLAYER, ge=1)
    min_players_to_start: int = Field(default=2, ge=1)
    require_preview: bool = False

    store_backend: StoreBackend = StoreBackend.MEMORY
    store_path: str = Field(default="backend/data/songguess.db", min_length=1)
    log_dir: str = Field(default="backend/logs/songguess", min_length=1)
    cors_origins: list[str] = ["http://localhost:3000"]

    # Optional realtime relay. Events always fan out over /ws/games/{code} as well.
    webhook_url: str | None = None
    deezer_api_base: str = DEEZER_API_BASE
    broadcast_max_retries: int = Field(default=3, ge=0)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    @field_validator("round_options", mode="before")
    @classmethod
    def validate_round_options(cls, v: str | list[int]) -> list[int]:
        return parse_int_list(v)

    @field_validator("webhook_url", mode="before")
    @classmethod
    def validate_webhook_url(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _validate_default_rounds(self) -> Self:
        if self.default_total_rounds not in self.round_options:
            raise ValueError(f"default_total_rounds {self.default_total_rounds} is not one of {self.round_options}")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, ListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
