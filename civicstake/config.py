"""Configuration settings for CivicStake backend."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase (identity only)
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""

    # AI
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"

    # Business Logic
    escrow_timeout_days: int = 14
    initial_civic_points: int = 100
    max_purchase_points: int = 1000
    voting_window_hours: float = 72.0
    vote_quorum: int = 0  # 0 disables early close on quorum
    default_charity_id: str = "default_charity"
    moderation_token: str = ""  # empty disables the flag endpoint
    sweep_interval_seconds: float = 60.0

    # TrueSkill defaults
    default_mu: float = 25.0
    default_sigma: float = 8.333
    sigma_min: float = 1.0
    reference_mu: float = 25.0
    reference_sigma: float = 8.333
    bounty_difficulty_scale: float = 0.0  # 0 keeps a fixed reference difficulty

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
