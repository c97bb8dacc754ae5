"""
Confluence — Configuration Management

Pydantic Settings: loads from .env, validates all configuration at startup.
Heuristic detector thresholds live here so they can be tuned per deployment
without touching engine code.
"""

from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class OperatorThresholds(BaseModel):
    """Manipulation-detector constants.

    These are heuristics carried over from discretionary trading practice,
    not fitted parameters.
    """

    # ── Accumulation ──
    accumulation_low_volume_ratio: float = 0.8
    accumulation_min_green_bars: int = 5
    accumulation_tight_range_ratio: float = 0.8
    accumulation_volume_rise: float = 1.2

    # ── Distribution ──
    distribution_high_volume_ratio: float = 1.3
    distribution_min_red_bars: int = 3
    distribution_wick_body_ratio: float = 1.5
    distribution_min_wick_bars: int = 3

    # ── Traps ──
    trap_pierce_pct: float = 0.01
    trap_volume_ratio: float = 1.5

    # ── Pump & dump ──
    pump_min_gain_pct: float = 5.0
    dump_min_avg_drop_pct: float = 2.0

    # ── Fake breakout ──
    fake_breakout_margin: float = 0.02
    fake_breakout_volume_ratio: float = 0.7

    # ── Short squeeze ──
    squeeze_min_fall_pct: float = 5.0
    squeeze_min_rise_pct: float = 4.0
    squeeze_volume_ratio: float = 2.0

    # ── Strength score ──
    strength_volume_ratio: float = 1.2
    strength_body_ratio: float = 0.6


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CONFLUENCE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Core ──
    app_env: str = "development"
    app_debug: bool = True

    # ── Engines ──
    horizon_max_workers: int = 6
    horizon_min_bars: int = 20
    structure_min_bars: int = 50
    operator: OperatorThresholds = OperatorThresholds()

    # ── CORS ──
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance, created once and reused everywhere."""
    return Settings()
