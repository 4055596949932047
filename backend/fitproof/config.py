"""
FitProof Configuration
======================
All environment variables in one place. Pydantic Settings validates
types at startup so a bad multiplier fails at boot, not mid-sync.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Supabase ---
    supabase_url: str = "http://localhost:54321"
    supabase_service_key: str = ""  # service_role key for backend operations

    # --- App settings ---
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:8081", "http://localhost:19006"]

    # --- Points ---
    weekend_multiplier: float = 1.5
    # Raised during promotional events, e.g. 2.0 for a double-points weekend
    event_multiplier: float = 1.0

    # --- Calendar ---
    # Weekends and workout days (midnight normalisation) follow this zone
    app_timezone: str = "UTC"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
