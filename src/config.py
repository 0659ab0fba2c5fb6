"""
Configuration module for the Hub operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class DatabaseConfig:
    """PostgreSQL store configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "hub_operator"
    user: str = "operator"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "hub_operator"),
            user=os.getenv("DB_USER", "operator"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "5")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "20")),
        )


@dataclass
class ControllerConfig:
    """Work queue and retry configuration."""

    reconcile_interval: int = 300  # full resync period, seconds
    max_concurrent_reconciles: int = 5

    # Exponential backoff for failed reconciliations
    backoff_base_delay: float = 5.0  # seconds
    backoff_max_delay: float = 300.0  # seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            reconcile_interval=int(os.getenv("RECONCILE_INTERVAL", "300")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "5")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "300")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class APIConfig:
    """Health and status API configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            enabled=os.getenv("API_ENABLED", "true").lower() == "true",
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8080")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class HubConfig:
    """Hub reconciliation settings."""

    credential_secret_name: str = "mongodb-admin"
    credential_user: str = "some@example.com"
    password_length: int = 16
    templates_dir: Optional[Path] = None  # None means the bundled templates

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password_length = int(os.getenv("HUB_PASSWORD_LENGTH", "16"))
        if password_length <= 0:
            raise ValueError("HUB_PASSWORD_LENGTH must be a positive integer")

        templates_dir = os.getenv("HUB_TEMPLATES_DIR")
        return cls(
            credential_secret_name=os.getenv("HUB_CREDENTIAL_NAME", "mongodb-admin"),
            credential_user=os.getenv("HUB_CREDENTIAL_USER", "some@example.com"),
            password_length=password_length,
            templates_dir=Path(templates_dir) if templates_dir else None,
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    api: APIConfig
    hub: HubConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            hub=HubConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
            hub=HubConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
