"""Process settings read from the environment and an optional .env file.

Every field maps to an upper-case environment variable of the same name
(``INGESTION_TICK_SECONDS``, ``POSTGRES_HOST`` ...). The two database URLs
are derived, never set directly.
"""

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "Signal Engine"
    debug: bool = False
    log_json: bool = False

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "signal_engine"
    postgres_user: str = "signal_user"
    postgres_password: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"

    # Metric ingestion worker
    ingestion_enabled: bool = True
    ingestion_tick_seconds: float = 15.0
    ingestion_max_assets_per_tick: int = 1000

    # Rule evaluation worker
    evaluation_enabled: bool = True
    evaluation_interval_seconds: float = 300.0

    # Data source connectors
    fetch_timeout_seconds: float = 30.0
    binance_base_url: str = "https://api.binance.com"
    binance_quote_asset: str = "USDT"
    custom_api_base_url: str = ""
    custom_api_identifier_timeout_seconds: float = 10.0
    custom_api_batch_timeout_seconds: float = 25.0

    # Notifications (queued only; dispatch lives elsewhere)
    default_notification_recipient: str = "admin@signalengine.local"

    @computed_field
    @property
    def async_database_url(self) -> str:
        """asyncpg URL used by the workers."""
        base = (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?ssl={self.db_sslmode}"
        return base

    @computed_field
    @property
    def sync_database_url(self) -> str:
        """psycopg2 URL used by migrations."""
        base = (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?sslmode={self.db_sslmode}"
        return base


settings = Settings()
