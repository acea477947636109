"""Pydantic-settings configuration for the curtailment reconciliation core.

Loads connection parameters and tunables from the .env file with sensible
defaults for local development. Components take these values as constructor
defaults so tests can override them without touching the environment.
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
    project_name: str = "Curtailment Reconciliation"
    debug: bool = False

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "curtailment"
    postgres_user: str = "curtailment_user"
    postgres_password: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 5
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"  # Set to "require" in production

    # Upstream sources
    elexon_base_url: str = "https://data.elexon.co.uk/bmrs/api/v1"
    difficulty_base_url: str = "https://mempool.space/api"
    source_timeout_seconds: float = 30.0
    source_max_attempts: int = 3
    source_retry_delay_seconds: float = 2.0
    source_min_interval_seconds: float = 0.1

    # Reference data
    bmu_mapping_path: str = "data/bmu_mapping.json"
    miner_models: str = "S19J_PRO,S9,M20S"

    # Reconciliation
    max_concurrent_dates: int = 4
    tolerance_relative: float = 1e-6
    tolerance_absolute: float = 0.01
    # bitcoin values per day sit far below the volume/payment bound
    tolerance_absolute_bitcoin: float = 0.0
    date_lock_poll_seconds: float = 5.0

    @computed_field
    @property
    def sync_database_url(self) -> str:
        """Sync connection string for psycopg2."""
        base = (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?sslmode={self.db_sslmode}"
        return base

    @property
    def miner_model_list(self) -> list[str]:
        """Configured miner models, in declaration order."""
        return [m.strip().upper() for m in self.miner_models.split(",") if m.strip()]


# Singleton instance
settings = Settings()
