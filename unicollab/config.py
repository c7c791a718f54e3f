"""
Runtime configuration helpers for the collaboration client core.

Loads SUPABASE_URL and the other variables from the .env file
located in the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import APP_NAME

# Resolve the project root
BASE_DIR = Path(__file__).resolve().parents[1]

# Absolute path to .env
ENV_PATH = BASE_DIR / ".env"

# Load .env defaults without overriding environment variables provided by the platform
load_dotenv(dotenv_path=ENV_PATH, override=False)


class Settings(BaseSettings):
    # Required fields; must come from the environment or .env
    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_anon_key: str = Field(..., alias="SUPABASE_ANON_KEY")

    app_name: str = Field(default=APP_NAME, alias="APP_NAME")
    university_email_domains: str = Field(default="aau.edu.et", alias="UNIVERSITY_EMAIL_DOMAINS")
    password_reset_redirect_url: str | None = Field(default=None, alias="PASSWORD_RESET_REDIRECT_URL")

    session_loading_timeout: float = Field(default=8.0, gt=0, alias="SESSION_LOADING_TIMEOUT")
    notifications_page_size: int = Field(default=10, gt=0, le=100, alias="NOTIFICATIONS_PAGE_SIZE")
    toast_default_ttl: float = Field(default=5.0, gt=0, alias="TOAST_DEFAULT_TTL")
    http_timeout: float = Field(default=15.0, gt=0, alias="HTTP_TIMEOUT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def allowed_email_domains(self) -> list[str]:
        """Return the parsed allow-list; an empty list means any domain is accepted."""

        domains = [part.strip().lower() for part in self.university_email_domains.split(",")]
        domains = [domain for domain in domains if domain]
        if "*" in domains:
            return []
        return domains


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
