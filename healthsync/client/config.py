"""Device-side sync client configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    """Sync client configuration (``HEALTHSYNC_CLIENT_*`` env vars or .env file)."""

    # --- API ---
    base_url: str = "http://localhost:8000"
    api_token: str = ""  # must match the server's HEALTHSYNC_API_BEARER_TOKEN
    timeout_seconds: float = 30.0

    # --- Pull sync ---
    sync_batch_size: int = 500
    max_upload_attempts: int = 3
    sync_interval_seconds: int = 900  # 15 minutes

    # --- Write-back ---
    writeback_page_size: int = 50

    # --- Local state ---
    state_path: str = "healthsync-state.json"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "HEALTHSYNC_CLIENT_", "extra": "ignore"}


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
