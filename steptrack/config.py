"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Steptrack"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    storage_backend: str = "postgres"  # postgres | memory
    database_url: str = "postgresql://localhost:5432/steptrack"
    database_pool_min_size: int = 2
    database_pool_max_size: int = 10

    # --- Google OAuth client (token refresh only; login flow lives elsewhere) ---
    google_client_id: str = ""
    google_client_secret: str = ""  # server-side only

    # --- Scheduler ---
    scheduler_enabled: bool = True

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
