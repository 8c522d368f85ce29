"""Application configuration loaded from environment variables."""

import uuid
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Unforgotten Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    supabase_url: str = ""  # project URL, also the connectivity probe target
    supabase_db_url: str = ""  # direct postgres connection string for asyncpg

    # --- Session ---
    session_user_id: uuid.UUID | None = None  # signed-in user; None = no session

    # --- Local store ---
    local_store_path: str = "unforgotten_local.sqlite3"

    # --- Sync ---
    gateway_timeout_seconds: float = 30.0
    connectivity_check_interval: float = 30.0
    connectivity_probe_timeout: float = 5.0
    timezone: str = "UTC"  # used to decide what "today" means for derived logs

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "UNFORGOTTEN_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
