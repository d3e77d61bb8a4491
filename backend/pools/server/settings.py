"""Pool server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from pools.logic.retry import RetryPolicy
from pools.logic.rng import (
    DEFAULT_INVITE_CODE_ATTEMPTS,
    DEFAULT_INVITE_CODE_LENGTH,
    MAX_INVITE_CODE_LENGTH,
    MIN_INVITE_CODE_LENGTH,
)
from shared.validators import StringListEnvSettingsSource, parse_string_list, validate_database_path

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class PoolServerSettings(BaseSettings):
    model_config = {"env_prefix": "POOLS_"}

    database_path: str = Field(default="backend/data/pools.db", min_length=1)
    log_dir: str = Field(default="backend/logs/pools", min_length=1)
    cors_origins: list[str] = ["http://localhost:5173"]

    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    operation_timeout_seconds: float = Field(default=60.0, gt=0)

    invite_code_length: int = Field(
        default=DEFAULT_INVITE_CODE_LENGTH,
        ge=MIN_INVITE_CODE_LENGTH,
        le=MAX_INVITE_CODE_LENGTH,
    )
    invite_code_max_attempts: int = Field(default=DEFAULT_INVITE_CODE_ATTEMPTS, ge=1)
    max_request_body_bytes: int = Field(default=16384, ge=1024)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @field_validator("database_path")
    @classmethod
    def _validate_database_path(cls, v: str) -> str:
        return validate_database_path(v)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.retry_max_attempts, base_delay_seconds=self.retry_base_delay_seconds)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
