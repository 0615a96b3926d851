import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> str | None:
    """Find .env file, preferring .env.local for local development."""
    for env_file in [".env.local", ".env"]:
        for base in [".", os.environ.get("REPO_ROOT", "")]:
            if base:
                path = Path(base) / env_file
                if path.exists():
                    return str(path)
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # DATABASE_URL from environment (production/CI)
    # Falls back to SQLite for local development if not set
    database_url: str = "sqlite:///./local.db"

    # GraphQL engine in front of the indexer database
    indexer_graphql_endpoint: str = "http://localhost:8080/v1/graphql"
    indexer_admin_secret: str = ""
    query_timeout_seconds: float = 10.0

    # Where summaries read event history from: "database" or "indexer"
    history_source: str = "database"

    aggregation_max_workers: int = 8
    aggregation_timeout_seconds: float = 15.0

    # Liquidations that take all pooled collateral also close the positions
    close_on_full_absorption: bool = False

    # Compound V3 Comet base asset (USDC market on mainnet)
    compound_base_asset_symbol: str = "USDC"
    compound_base_asset_address: str = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"

    enable_event_ingestion: bool = False
    ingestion_interval_minutes: int = 5


settings = Settings()
