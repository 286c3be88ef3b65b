"""Configuration for the Deposit Watcher."""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

# Dataclass field -> environment variable
NUMERIC_SETTINGS = {
    "postgres_port": "POSTGRES_PORT",
    "redis_port": "REDIS_PORT",
    "page_size": "PAGE_SIZE",
    "fetch_timeout_seconds": "FETCH_TIMEOUT_SECONDS",
    "min_fetch_interval_seconds": "MIN_FETCH_INTERVAL_SECONDS",
    "poll_delay_seconds": "POLL_DELAY_SECONDS",
    "initial_confirmations": "INITIAL_CONFIRMATIONS",
}


def _env_number(name: str, default: str, cast=int):
    """Read a numeric variable; unparseable values are kept as text for validate()."""
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        return raw


@dataclass
class WatcherConfig:
    """Configuration for TRC-20 deposit ingestion."""

    # TronGrid Configuration
    tron_node_url: str = field(
        default_factory=lambda: os.getenv("TRON_NODE", "https://api.trongrid.io")
    )
    tron_api_key: str = field(
        default_factory=lambda: os.getenv("TRON_API_KEY", "")
    )

    # Tracked asset (USDT TRC-20)
    contract_address: str = field(
        default_factory=lambda: os.getenv(
            "USDT_CONTRACT",
            "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
        )
    )
    asset: str = "USDT"

    # PostgreSQL Configuration
    postgres_host: str = field(default_factory=lambda: os.getenv("POSTGRES_HOST", "localhost"))
    postgres_port: int = field(default_factory=lambda: _env_number("POSTGRES_PORT", "5432"))
    postgres_db: str = field(default_factory=lambda: os.getenv("POSTGRES_DB", "deposits"))
    postgres_user: str = field(default_factory=lambda: os.getenv("POSTGRES_USER", "admin"))
    postgres_password: str = field(default_factory=lambda: os.getenv("POSTGRES_PASSWORD", "password"))

    # Redis Configuration
    redis_host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    redis_port: int = field(default_factory=lambda: _env_number("REDIS_PORT", "6379"))

    # Polling
    page_size: int = field(default_factory=lambda: _env_number("PAGE_SIZE", "100"))
    fetch_timeout_seconds: float = field(
        default_factory=lambda: _env_number("FETCH_TIMEOUT_SECONDS", "10", float)
    )
    min_fetch_interval_seconds: float = field(
        default_factory=lambda: _env_number("MIN_FETCH_INTERVAL_SECONDS", "0.067", float)
    )
    poll_delay_seconds: float = field(
        default_factory=lambda: _env_number("POLL_DELAY_SECONDS", "1.0", float)
    )

    # Deposits
    initial_confirmations: int = field(
        default_factory=lambda: _env_number("INITIAL_CONFIRMATIONS", "4")
    )
    deposit_log_path: str = field(
        default_factory=lambda: os.getenv("DEPOSIT_LOG_PATH", "deposits-log.txt")
    )

    # Startup
    db_connect_max_time_seconds: float = 60.0

    @property
    def postgres_dsn(self) -> str:
        """Build the asyncpg connection string."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def masked_dsn(self) -> str:
        """Connection string safe for logs."""
        return f"postgresql://*****@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    def validate(self) -> None:
        """
        Check settings that would make the watcher unusable.

        Raises:
            ConfigError: if a setting is missing, not a number or out of range
        """
        for attr, var in NUMERIC_SETTINGS.items():
            value = getattr(self, attr)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{var} must be a number, got {value!r}")

        if not self.tron_node_url or not self.tron_node_url.startswith(("http://", "https://")):
            raise ConfigError(f"TRON_NODE must be an http(s) URL, got {self.tron_node_url!r}")
        if not self.contract_address:
            raise ConfigError("USDT_CONTRACT is empty")
        if self.page_size <= 0:
            raise ConfigError(f"PAGE_SIZE must be positive, got {self.page_size}")
        if self.fetch_timeout_seconds <= 0:
            raise ConfigError("FETCH_TIMEOUT_SECONDS must be positive")
        if self.min_fetch_interval_seconds < 0 or self.poll_delay_seconds < 0:
            raise ConfigError("Polling intervals cannot be negative")
        if self.initial_confirmations < 0:
            raise ConfigError("INITIAL_CONFIRMATIONS cannot be negative")


# Default configuration
DEFAULT_CONFIG = WatcherConfig()
