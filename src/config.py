"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Engine tunables (batch sizes, intervals, capacities) live in
    ``src/autoclaim/engine_config.yaml``; only deployment-specific values and
    secrets live here.
    """

    # --- App ---
    app_name: str = "AutoClaim"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str  # postgres connection string for asyncpg
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # --- Admin API ---
    admin_api_key: str = ""  # empty disables the manual trigger routes

    # --- Replication ---
    replica_index: int = 0  # only replica 0 runs ticks and claim runs
    leader_index: int = 0

    # --- Engine ---
    engine_config_path: str = ""  # empty = bundled engine_config.yaml
    enable_scheduler: bool = True
    http_timeout_seconds: float = 30.0

    # --- Upstreams ---
    u2_rss_url: str = ""  # contains a passkey, never log

    # --- Notifications ---
    notify_webhook_url: str = ""  # template, e.g. https://relay/notify/{recipient_id}
    notify_webhook_token: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
