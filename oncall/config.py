from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "On-Call Scheduler"
    log_level: str = "INFO"

    # Public share links
    public_token_bytes: int = Field(default=24, ge=16)
    public_base_url: str = "http://localhost:5000/public"

    model_config = SettingsConfigDict(
        env_prefix="ONCALL_", env_file=".env", case_sensitive=False
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
