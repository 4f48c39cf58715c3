"""Configuration management for mergewatch."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MergeWatchSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    gh_path: str | None = Field(default=None, validation_alias="MERGEWATCH_GH_PATH")
    repo: str | None = Field(default=None, validation_alias="MERGEWATCH_REPO")
    branch: str | None = Field(default=None, validation_alias="MERGEWATCH_BRANCH")
    workflow: str | None = Field(default=None, validation_alias="MERGEWATCH_WORKFLOW")

    initial_delay: float = Field(default=2.0, validation_alias="MERGEWATCH_INITIAL_DELAY")
    min_delay: float = Field(default=2.0, validation_alias="MERGEWATCH_MIN_DELAY")
    max_delay: float = Field(default=120.0, validation_alias="MERGEWATCH_MAX_DELAY")
    backoff_multiplier: float = Field(default=1.4, validation_alias="MERGEWATCH_BACKOFF_MULTIPLIER")
    speed_up_factor: float = Field(default=0.7, validation_alias="MERGEWATCH_SPEED_UP_FACTOR")
    learned_weight: float = Field(default=0.5, validation_alias="MERGEWATCH_LEARNED_WEIGHT")
    max_watch_time: float = Field(default=600.0, validation_alias="MERGEWATCH_MAX_WATCH_TIME")
    max_consecutive_errors: int | None = Field(
        default=None, validation_alias="MERGEWATCH_MAX_CONSECUTIVE_ERRORS"
    )

    auto_merge: bool = Field(default=True, validation_alias="MERGEWATCH_AUTO_MERGE")
    require_reviews: bool = Field(default=True, validation_alias="MERGEWATCH_REQUIRE_REVIEWS")
    dry_run: bool = Field(default=False, validation_alias="MERGEWATCH_DRY_RUN")
    policy_path: Path | None = Field(default=None, validation_alias="MERGEWATCH_POLICY_PATH")

    pattern_path: Path = Field(
        default=Path(".mergewatch/patterns.json"), validation_alias="MERGEWATCH_PATTERN_PATH"
    )
    history_path: Path = Field(
        default=Path(".mergewatch/history"), validation_alias="MERGEWATCH_HISTORY_PATH"
    )
    failure_history_limit: int = Field(
        default=50, validation_alias="MERGEWATCH_FAILURE_HISTORY_LIMIT"
    )
    notify_command: str | None = Field(default=None, validation_alias="MERGEWATCH_NOTIFY_COMMAND")
    log_level: str = Field(default="INFO", validation_alias="MERGEWATCH_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "MERGEWATCH_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("initial_delay", "min_delay", "max_delay", "max_watch_time")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("delays and watch time must be > 0")
        return value

    @field_validator("backoff_multiplier")
    @classmethod
    def _validate_backoff(cls, value: float) -> float:
        if value < 1:
            raise ValueError("MERGEWATCH_BACKOFF_MULTIPLIER must be >= 1")
        return value

    @field_validator("speed_up_factor")
    @classmethod
    def _validate_speed_up(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("MERGEWATCH_SPEED_UP_FACTOR must be in (0, 1]")
        return value

    @field_validator("learned_weight")
    @classmethod
    def _validate_learned_weight(cls, value: float) -> float:
        if not 0 <= value <= 1:
            raise ValueError("MERGEWATCH_LEARNED_WEIGHT must be in [0, 1]")
        return value

    @field_validator("max_consecutive_errors", mode="before")
    @classmethod
    def _parse_error_limit(cls, value):
        if value is None or value == "":
            return None
        return value

    @field_validator("max_consecutive_errors")
    @classmethod
    def _validate_error_limit(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("MERGEWATCH_MAX_CONSECUTIVE_ERRORS must be >= 1")
        return value

    @field_validator("failure_history_limit")
    @classmethod
    def _validate_failure_history_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("MERGEWATCH_FAILURE_HISTORY_LIMIT must be >= 1")
        return value

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "MergeWatchSettings":
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        return self


@lru_cache(maxsize=1)
def get_settings() -> MergeWatchSettings:
    """Return cached settings instance."""

    settings = MergeWatchSettings()
    settings.pattern_path = settings.pattern_path.expanduser()
    settings.history_path = settings.history_path.expanduser()
    if settings.policy_path is not None:
        settings.policy_path = settings.policy_path.expanduser()
    return settings


__all__ = ["MergeWatchSettings", "get_settings"]
