"""Startup settings powered by ``pydantic-settings``."""

from __future__ import annotations

import logging

from pydantic import Field, PositiveInt, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from txgate.exception import ConfigError


class Config(BaseSettings):
    """Startup settings. Durations are in milliseconds."""

    model_config = SettingsConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    database_url: str = Field(min_length=1)
    pool_max_size: PositiveInt = Field(
        default=20, alias="PG_MAX_CONNECTIONS"
    )
    pool_idle_timeout_ms: PositiveInt = Field(
        default=30000, alias="PG_IDLE_TIMEOUT_MS"
    )
    statement_timeout_ms: PositiveInt = Field(
        default=30000, alias="PG_STATEMENT_TIMEOUT_MS"
    )
    transaction_timeout_ms: PositiveInt = Field(
        default=15000, alias="TRANSACTION_TIMEOUT_MS"
    )
    monitor_interval_ms: PositiveInt = Field(
        default=5000, alias="MONITOR_INTERVAL_MS"
    )
    monitor_enabled: bool = Field(
        default=True, alias="ENABLE_TRANSACTION_MONITOR"
    )
    max_concurrent_transactions: PositiveInt = Field(
        default=10, alias="MAX_CONCURRENT_TRANSACTIONS"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        if not isinstance(value, str):
            return "INFO"
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @classmethod
    def from_env(cls, database_url: str, **overrides) -> Config:
        """Build a config from environment variables

        Args:
            database_url (str): DSN of the database
            overrides: Field values that take precedence over the
                environment

        Raises:
            ConfigError: If a setting holds an invalid value
        """
        try:
            return cls(database_url=database_url, **overrides)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(map(str, error['loc']))}: {error['msg']}"
                for error in e.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from e

    @property
    def transaction_timeout(self) -> float:
        return self.transaction_timeout_ms / 1000

    @property
    def monitor_interval(self) -> float:
        return self.monitor_interval_ms / 1000

    @property
    def pool_idle_timeout(self) -> float:
        return self.pool_idle_timeout_ms / 1000

    @property
    def statement_timeout(self) -> float:
        return self.statement_timeout_ms / 1000
