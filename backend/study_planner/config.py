import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="STUDY_PLANNER_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDY_PLANNER_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDY_PLANNER_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDY_PLANNER_DATABASE_ECHO")
    persistence_mode: Literal["database", "memory"] = Field(
        "database",
        alias="STUDY_PLANNER_PERSISTENCE_MODE",
    )
    grid_open: str = Field("07:00", alias="STUDY_PLANNER_GRID_OPEN")
    grid_close: str = Field("24:00", alias="STUDY_PLANNER_GRID_CLOSE")
    grid_step_minutes: int = Field(30, ge=5, le=120, alias="STUDY_PLANNER_GRID_STEP_MINUTES")
    history_capacity: int = Field(30, ge=1, alias="STUDY_PLANNER_HISTORY_CAPACITY")
    planner_iteration_guard: int = Field(200, ge=1, alias="STUDY_PLANNER_ITERATION_GUARD")
    suggestion_limit: int = Field(3, ge=1, alias="STUDY_PLANNER_SUGGESTION_LIMIT")
    review_horizon_days: int = Field(7, ge=1, alias="STUDY_PLANNER_REVIEW_HORIZON_DAYS")
    weekly_low_minutes: int = Field(5 * 60, ge=0, alias="STUDY_PLANNER_WEEKLY_LOW_MINUTES")
    weekly_high_minutes: int = Field(10 * 60, ge=0, alias="STUDY_PLANNER_WEEKLY_HIGH_MINUTES")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("grid_open", "grid_close")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        hours, _, minutes = value.partition(":")
        if not (hours.isdigit() and minutes.isdigit()) or len(minutes) != 2:
            raise ValueError(f"Expected HH:MM clock time, got {value!r}")
        if int(minutes) >= 60 or int(hours) * 60 + int(minutes) > 24 * 60:
            raise ValueError(f"Clock time out of range: {value!r}")
        return value


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
