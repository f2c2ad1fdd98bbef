"""
Application configuration.

Loads settings from environment variables and .env file.
Every tunable of the live trading service lives here.
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Attributes:
        project_name: Display name for the API.
        version: Current API version string.
        debug: Enable debug mode. Must be False in production.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        rate_limit_default: Default rate limit for all endpoints.
        rate_limit_control: Rate limit for loop control endpoints.
        database_url: SQLAlchemy URL of the trading store.
        storage_backend: ``sql`` for the database, ``memory`` for a
            process-local store (paper trading, demos).
        poll_interval_seconds: Delay between control loop ticks.
        expiry_sweep_interval_seconds: Delay between signal expiry sweeps.
        call_timeout_seconds: Upper bound on storage and venue calls.
        fee_rate: Commission charged per unit of executed quantity.
        loop_max_workers: Accounts processed in parallel per tick.
        market_data_url: Base URL of a REST ticker; None uses paper prices.
        paper_prices: Seed prices for the in-memory snapshot source.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="LIVETRADER_"
    )

    project_name: str = "LiveTrader"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_default: str = "60/minute"
    rate_limit_control: str = "10/minute"

    database_url: str = "sqlite:///./livetrader.db"
    storage_backend: Literal["sql", "memory"] = "sql"

    poll_interval_seconds: float = Field(default=30.0, gt=0)
    expiry_sweep_interval_seconds: float = Field(default=60.0, gt=0)
    call_timeout_seconds: float = Field(default=10.0, gt=0)
    fee_rate: Decimal = Field(default=Decimal("0.001"), ge=0)
    loop_max_workers: int = Field(default=4, ge=1)

    market_data_url: Optional[str] = None
    paper_prices: dict[str, Decimal] = Field(default_factory=dict)


settings = Settings()
