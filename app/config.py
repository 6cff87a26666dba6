from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "KB Refresh Service"
    debug: bool = False

    # Catalog
    catalog_path: str = "knowledge_bases.yaml"

    # Refresh service (performs the actual list-to-KB sync)
    refresh_service_url: str = "http://localhost:8080"
    refresh_service_key: str = ""
    refresh_timeout: int = 300  # Seconds per knowledge base

    # Trigger endpoint shared key; empty disables the check
    refresh_trigger_key: str = ""

    model_config = ConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
