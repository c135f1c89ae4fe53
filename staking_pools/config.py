# config.py
# Service settings: NEAR RPC endpoint, cache file and TTL, refresh cadence, fetch limits, HTTP bind

from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    ATTEMPTS,
    BATCH_SIZE,
    CACHE_TTL_SECONDS,
    DELEGATORS_FILENAME,
    LIMIT,
    MAX_IN_FLIGHT_PAGES,
    RETRY_DELAY_MS,
)
from .retry import RetryPolicy


class Settings(BaseSettings):
    rpc_url: str = "https://beta.rpc.mainnet.near.org"
    rpc_timeout: timedelta = timedelta(seconds=30)
    cache_path: Path = Field(
        default=Path("~") / DELEGATORS_FILENAME,
        description="JSON file holding the persisted delegators snapshot.",
    )
    cache_ttl: timedelta = timedelta(seconds=CACHE_TTL_SECONDS)
    refresh_interval: timedelta = timedelta(seconds=60)
    page_size: int = Field(default=LIMIT, gt=0)
    page_concurrency: int = Field(default=MAX_IN_FLIGHT_PAGES, gt=0)
    validator_concurrency: int = Field(
        default=10,
        gt=0,
        description="Validators fetched at once during a full refresh.",
    )
    retry_attempts: int = Field(default=ATTEMPTS, gt=0)
    retry_delay: timedelta = timedelta(milliseconds=RETRY_DELAY_MS)
    batch_size: int = Field(default=BATCH_SIZE, gt=0)
    worker_poll_interval: timedelta = timedelta(seconds=1)

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_prefix="STAKING_POOLS_",
    )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts, delay=self.retry_delay
        )

    @property
    def resolved_cache_path(self) -> Path:
        return self.cache_path.expanduser()


def load_config() -> Settings:
    """Load config from environment variables and .env file."""
    return Settings()
