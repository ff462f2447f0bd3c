"""Application settings.

Hey future me - ALL tunables live here, grouped into sections. Every section can be
overridden through environment variables using the GROUPCHARTS_ prefix and a double
underscore for nesting, e.g.:

    GROUPCHARTS_DATABASE__URL=postgresql+asyncpg://...
    GROUPCHARTS_CHARTS__SHARED_LISTENING_EXPONENT=1.5
    GROUPCHARTS_COMPATIBILITY__ARTIST_WEIGHT=0.5

The vibe score constants and the compatibility weights are deliberately settings and
not module constants - they are tuning knobs, and tests pin behaviour through
monotonicity checks instead of exact numbers.
"""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite+aiosqlite:///./groupcharts.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")
    pool_pre_ping: bool = Field(default=True)
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600, ge=-1)


class ChartSettings(BaseModel):
    """Chart generation and scoring settings."""

    default_chart_size: int = Field(default=10)
    allowed_chart_sizes: tuple[int, ...] = Field(default=(10, 20, 50, 100))
    # vs = playcount * distinct_contributors ** shared_listening_exponent
    shared_listening_exponent: float = Field(default=2.0, gt=0)
    # vs_weighted = vs_weight * vs + (1 - vs_weight) * playcount
    vs_weight: float = Field(default=0.5, ge=0, le=1)
    streak_threshold: int = Field(default=10, ge=1)
    streak_lookback_weeks: int = Field(default=52, ge=1)
    initial_weeks: int = Field(default=5, ge=1)
    spotlight_min_members: int = Field(default=3, ge=1)
    max_fun_facts: int = Field(default=10, ge=1)

    @model_validator(mode="after")
    def _default_size_allowed(self) -> "ChartSettings":
        if self.default_chart_size not in self.allowed_chart_sizes:
            raise ValueError(
                f"default_chart_size {self.default_chart_size} not in "
                f"allowed_chart_sizes {self.allowed_chart_sizes}"
            )
        return self


class RecordsSettings(BaseModel):
    """Rough-then-refine leaderboard settings."""

    rough_limit: int = Field(default=150, ge=1)
    missing_limit: int = Field(default=50, ge=0)
    result_limit: int = Field(default=100, ge=1)
    recompute_batch_size: int = Field(default=50, ge=1)


class CompatibilitySettings(BaseModel):
    """Group recommendation funnel settings."""

    candidate_window_weeks: int = Field(default=8, ge=1)
    top_artist_limit: int = Field(default=30, ge=1)
    batch_size: int = Field(default=10, ge=1)
    min_members: int = Field(default=2, ge=1)
    recommendation_limit: int = Field(default=5, ge=1)
    cache_ttl_hours: int = Field(default=24, ge=0)
    score_ttl_hours: int = Field(default=24, ge=0)
    artist_weight: float = Field(default=0.4, ge=0, le=1)
    track_weight: float = Field(default=0.25, ge=0, le=1)
    genre_weight: float = Field(default=0.2, ge=0, le=1)
    pattern_weight: float = Field(default=0.15, ge=0, le=1)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "CompatibilitySettings":
        total = (
            self.artist_weight
            + self.track_weight
            + self.genre_weight
            + self.pattern_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Compatibility weights must sum to 1.0, got {total:.4f}")
        return self


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = Field(default="INFO")
    log_json_format: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def _valid_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return upper


class WorkerSettings(BaseModel):
    """Background chart generation worker settings."""

    enabled: bool = Field(default=True)
    check_interval: int = Field(default=3600, ge=1, description="Seconds between cycles")


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="GROUPCHARTS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "groupcharts"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    charts: ChartSettings = Field(default_factory=ChartSettings)
    records: RecordsSettings = Field(default_factory=RecordsSettings)
    compatibility: CompatibilitySettings = Field(default_factory=CompatibilitySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
