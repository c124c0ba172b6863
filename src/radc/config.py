"""
Application settings.

Loaded from the environment (RADC_ prefix) and an optional .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RADC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "RADC Platform"
    debug: bool = False
    log_level: str = "INFO"

    # Identity store
    database_path: Path = Path("data") / "identities.db"

    # Identity-provider ID tokens
    token_secret: str = "change-me"
    token_algorithm: str = "HS256"
    token_issuer: Optional[str] = None
    token_audience: Optional[str] = None
    token_expire_minutes: int = 60

    # Route guard
    login_path: str = "/login"

    # Administration
    bootstrap_min_uid_length: int = 20

    @field_validator("login_path")
    @classmethod
    def _login_path_is_local(cls, value: str) -> str:
        if not value.startswith("/") or value.startswith("//"):
            raise ValueError("login_path must be an absolute local path")
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
