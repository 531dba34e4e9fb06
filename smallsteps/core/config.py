"""Application configuration managed via environment variables."""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "SmallSteps Planner"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///./smallsteps.db"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    decomposition_max_attempts: int = 2
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "smallsteps"
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    rollover_hour: int = 0
    rollover_minute: int = 5
    default_capacity_minutes: int = 240
    min_slices: int = 3
    max_slices: int = 6
    max_heavy_per_day: int = 1
    heavy_threshold_minutes: int = 90
    default_target_count: int = 3
    min_target_count: int = 2
    max_target_count: int = 7
    min_daily_minutes: int = 120
    max_daily_minutes: int = 360
    max_daily_workload_minutes: int = 300


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()


@dataclass(frozen=True)
class PlannerConfig:
    """Planner tunables handed explicitly to the scheduling functions."""

    default_capacity_minutes: int = 240
    min_slices: int = 3
    max_slices: int = 6
    max_heavy_per_day: int = 1
    heavy_threshold_minutes: int = 90
    default_target_count: int = 3
    min_target_count: int = 2
    max_target_count: int = 7
    min_daily_minutes: int = 120
    max_daily_minutes: int = 360
    max_daily_workload_minutes: int = 300
    decomposition_max_attempts: int = 2

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "PlannerConfig":
        source = source or get_settings()
        return cls(
            default_capacity_minutes=source.default_capacity_minutes,
            min_slices=source.min_slices,
            max_slices=source.max_slices,
            max_heavy_per_day=source.max_heavy_per_day,
            heavy_threshold_minutes=source.heavy_threshold_minutes,
            default_target_count=source.default_target_count,
            min_target_count=source.min_target_count,
            max_target_count=source.max_target_count,
            min_daily_minutes=source.min_daily_minutes,
            max_daily_minutes=source.max_daily_minutes,
            max_daily_workload_minutes=source.max_daily_workload_minutes,
            decomposition_max_attempts=max(1, source.decomposition_max_attempts),
        )
