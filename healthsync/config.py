"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All server configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "healthsync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Auth ---
    api_bearer_token: str | None = None  # static token shared with the device client

    # --- Storage ---
    database_url: str | None = None  # postgres DSN for asyncpg; unset = in-memory store
    database_pool_min_size: int = 2
    database_pool_max_size: int = 10

    # --- API discovery ---
    public_base_url: str = ""

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "HEALTHSYNC_", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
