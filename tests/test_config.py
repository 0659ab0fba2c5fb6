"""Unit tests for config.py - Configuration management."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

import config
from config import (
    APIConfig,
    Config,
    ControllerConfig,
    DatabaseConfig,
    HubConfig,
    get_config,
    load_config,
    reset_config,
)


class TestDatabaseConfig:
    """Tests for DatabaseConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = DatabaseConfig()
        assert cfg.host == "localhost"
        assert cfg.port == 5432
        assert cfg.database == "hub_operator"
        assert cfg.user == "operator"
        assert cfg.password == ""
        assert cfg.min_pool_size == 5
        assert cfg.max_pool_size == 20

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "DB_HOST": "envhost",
            "DB_PORT": "5434",
            "DB_NAME": "envdb",
            "DB_USER": "envuser",
            "DB_PASSWORD": "envpassword",
            "DB_MIN_POOL_SIZE": "3",
            "DB_MAX_POOL_SIZE": "15",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = DatabaseConfig.from_env()
            assert cfg.host == "envhost"
            assert cfg.port == 5434
            assert cfg.database == "envdb"
            assert cfg.user == "envuser"
            assert cfg.password == "envpassword"
            assert cfg.min_pool_size == 3
            assert cfg.max_pool_size == 15

    def test_from_env_missing_password_raises(self):
        """Test that missing password raises ValueError."""
        with patch.dict(os.environ, {"DB_PASSWORD": ""}, clear=True):
            with pytest.raises(ValueError) as exc_info:
                DatabaseConfig.from_env()
            assert "DB_PASSWORD" in str(exc_info.value)

    def test_password_not_in_repr(self):
        """Test that password is not exposed in repr."""
        cfg = DatabaseConfig(password="secret123")
        assert "secret123" not in repr(cfg)


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = ControllerConfig()
        assert cfg.reconcile_interval == 300
        assert cfg.max_concurrent_reconciles == 5
        assert cfg.backoff_base_delay == 5.0
        assert cfg.backoff_max_delay == 300.0
        assert cfg.backoff_jitter_factor == 0.1

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "RECONCILE_INTERVAL": "45",
            "MAX_CONCURRENT_RECONCILES": "8",
            "BACKOFF_BASE_DELAY": "2.5",
            "BACKOFF_MAX_DELAY": "600",
            "BACKOFF_JITTER_FACTOR": "0.15",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = ControllerConfig.from_env()
            assert cfg.reconcile_interval == 45
            assert cfg.max_concurrent_reconciles == 8
            assert cfg.backoff_base_delay == 2.5
            assert cfg.backoff_max_delay == 600
            assert cfg.backoff_jitter_factor == 0.15

    def test_from_env_defaults(self):
        """Test that defaults are used when env vars not set."""
        with patch.dict(os.environ, {}, clear=True):
            cfg = ControllerConfig.from_env()
            assert cfg.reconcile_interval == 300
            assert cfg.max_concurrent_reconciles == 5


class TestAPIConfig:
    """Tests for APIConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = APIConfig()
        assert cfg.enabled is True
        assert cfg.host == "0.0.0.0"
        assert cfg.port == 8080
        assert cfg.log_level == "INFO"

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "API_ENABLED": "false",
            "API_HOST": "127.0.0.1",
            "API_PORT": "3000",
            "LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = APIConfig.from_env()
            assert cfg.enabled is False
            assert cfg.host == "127.0.0.1"
            assert cfg.port == 3000
            assert cfg.log_level == "DEBUG"

    def test_enabled_by_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert APIConfig.from_env().enabled is True


class TestHubConfig:
    """Tests for HubConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = HubConfig()
        assert cfg.credential_secret_name == "mongodb-admin"
        assert cfg.credential_user == "some@example.com"
        assert cfg.password_length == 16
        assert cfg.templates_dir is None

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "HUB_CREDENTIAL_NAME": "db-admin",
            "HUB_CREDENTIAL_USER": "admin@example.com",
            "HUB_PASSWORD_LENGTH": "24",
            "HUB_TEMPLATES_DIR": "/etc/hub/templates",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = HubConfig.from_env()
            assert cfg.credential_secret_name == "db-admin"
            assert cfg.credential_user == "admin@example.com"
            assert cfg.password_length == 24
            assert cfg.templates_dir == Path("/etc/hub/templates")

    def test_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            assert HubConfig.from_env() == HubConfig()

    @pytest.mark.parametrize("length", ["0", "-4"])
    def test_non_positive_password_length(self, length):
        """Test that the password length must be positive."""
        with patch.dict(os.environ, {"HUB_PASSWORD_LENGTH": length}, clear=True):
            with pytest.raises(ValueError, match="HUB_PASSWORD_LENGTH"):
                HubConfig.from_env()


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        """Test default configuration."""
        cfg = Config.default()
        assert isinstance(cfg.database, DatabaseConfig)
        assert isinstance(cfg.controller, ControllerConfig)
        assert isinstance(cfg.api, APIConfig)
        assert isinstance(cfg.hub, HubConfig)

    def test_from_env(self):
        """Test loading full configuration from environment."""
        env_vars = {
            "DB_HOST": "testhost",
            "DB_PASSWORD": "testpass",
            "RECONCILE_INTERVAL": "30",
            "API_PORT": "9000",
            "HUB_CREDENTIAL_NAME": "creds",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = Config.from_env()
            assert cfg.database.host == "testhost"
            assert cfg.database.password == "testpass"
            assert cfg.controller.reconcile_interval == 30
            assert cfg.api.port == 9000
            assert cfg.hub.credential_secret_name == "creds"


class TestConfigSingleton:
    """Tests for config singleton functions."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()

    def teardown_method(self):
        """Reset config after each test."""
        reset_config()

    def test_get_config_loads_if_none(self):
        """Test get_config loads config if not loaded."""
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg = get_config()
            assert isinstance(cfg, Config)

    def test_singleton_returns_same_instance(self):
        """Test that singleton returns same instance."""
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg1 = load_config()
            cfg2 = get_config()
            assert cfg1 is cfg2

    def test_reset_config(self):
        """Test reset_config clears the singleton."""
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg1 = load_config()
            reset_config()
            assert config.config is None
            cfg2 = load_config()
            assert cfg1 is not cfg2
