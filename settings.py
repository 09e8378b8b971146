"""Application settings loaded from the environment and an optional .env file."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )

    APP_NAME: str = "Birth Chart API"
    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Swiss Ephemeris data; without the files the Moshier ephemeris is used
    EPHE_PATH: Optional[str] = "ephe"
    EPHE_AUTO_DOWNLOAD: bool = False
    EPHE_MIRRORS: List[str] = [
        "https://www.astro.com/ftp/swisseph/ephe",
        "https://raw.githubusercontent.com/aloistr/swisseph/master/ephe",
    ]
    DEFAULT_HOUSE_SYSTEM: str = "Placidus"
    PROVIDER_TIMEOUT_SECONDS: float = 10.0

    REDIS_URL: Optional[str] = None
    REQUIRE_REDIS: bool = False

    CORS_ORIGINS: List[str] = ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
