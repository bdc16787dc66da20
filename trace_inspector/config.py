"""Configuration management for the Datadog trace inspector MCP server."""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
import structlog
from dotenv import load_dotenv

logger = structlog.get_logger(__name__)

DEFAULT_FILTER_CONFIG_PATH = Path.home() / ".trace-inspector" / "filter-config.json"


@dataclass
class DatadogConfig:
    """Datadog API configuration."""
    api_key: str
    app_key: str
    site: str = "datadoghq.com"
    default_env: str = "prod"
    timeout: int = 30
    verify_ssl: bool = True

    def __post_init__(self):
        if not self.api_key or not self.api_key.strip():
            raise ValueError("api_key must not be blank")
        if not self.app_key or not self.app_key.strip():
            raise ValueError("app_key must not be blank")

    @property
    def base_url(self) -> str:
        """Base URL of the Datadog API for the configured site."""
        return f"https://api.{self.site}"


@dataclass
class MCPConfig:
    """MCP server configuration."""
    server_name: str = "datadog-trace-inspector"
    version: str = "1.0.0"
    default_trace_limit: int = 20
    default_log_limit: int = 100


@dataclass
class FilterSettings:
    """Location of the persisted stack trace filter preferences."""
    config_path: Path = DEFAULT_FILTER_CONFIG_PATH


@dataclass
class Config:
    """Main configuration container."""
    datadog: DatadogConfig
    mcp: MCPConfig
    filters: FilterSettings


class ConfigLoader:
    """Configuration loader using environment variables only."""

    def __init__(self):
        """Initialize configuration loader."""
        self._config: Optional[Config] = None
        # Load .env file if it exists
        load_dotenv()

    def load(self) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config: Loaded configuration

        Raises:
            ValueError: If required configuration is missing or invalid
        """
        if self._config is not None:
            return self._config

        logger.info("Loading configuration from environment variables")

        self._config = self._create_config_from_env()

        logger.info("Configuration loaded successfully", site=self._config.datadog.site)
        return self._config

    def _create_config_from_env(self) -> Config:
        """Create configuration objects from environment variables."""
        api_key = os.getenv('DATADOG_API_KEY')
        app_key = os.getenv('DATADOG_APP_KEY')

        if not api_key or not api_key.strip():
            raise ValueError("Missing required environment variable: DATADOG_API_KEY")

        if not app_key or not app_key.strip():
            raise ValueError("Missing required environment variable: DATADOG_APP_KEY")

        datadog_config = DatadogConfig(
            api_key=api_key,
            app_key=app_key,
            site=self._get_str_env('DATADOG_SITE', 'datadoghq.com'),
            default_env=self._get_str_env('DATADOG_ENV_DEFAULT', 'prod'),
            timeout=self._get_int_env('DATADOG_TIMEOUT', 30),
            verify_ssl=self._get_bool_env('DATADOG_VERIFY_SSL', True)
        )

        mcp_config = MCPConfig(
            server_name=self._get_str_env('MCP_SERVER_NAME', 'datadog-trace-inspector'),
            version=self._get_str_env('MCP_VERSION', '1.0.0'),
            default_trace_limit=self._get_int_env('MCP_DEFAULT_TRACE_LIMIT', 20),
            default_log_limit=self._get_int_env('MCP_DEFAULT_LOG_LIMIT', 100)
        )

        filter_path = os.getenv('TRACE_INSPECTOR_FILTER_CONFIG')
        filter_settings = FilterSettings(
            config_path=Path(filter_path).expanduser() if filter_path else DEFAULT_FILTER_CONFIG_PATH
        )

        return Config(
            datadog=datadog_config,
            mcp=mcp_config,
            filters=filter_settings
        )

    def _get_str_env(self, env_var: str, default: str) -> str:
        """Get string value from environment variable, treating blank as unset."""
        value = os.getenv(env_var)
        if value is None or not value.strip():
            return default
        return value

    def _get_int_env(self, env_var: str, default: int) -> int:
        """Get integer value from environment variable with default."""
        value = os.getenv(env_var)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for environment variable, using default",
                           env_var=env_var, value=value, default=default)
            return default

    def _get_bool_env(self, env_var: str, default: bool) -> bool:
        """Get boolean value from environment variable with default."""
        value = os.getenv(env_var)
        if value is None:
            return default

        return value.lower() in ('true', '1', 'yes', 'on')

    def reload(self) -> Config:
        """Reload configuration from environment variables."""
        load_dotenv(override=True)
        self._config = None
        return self.load()


# Global configuration instance
_config_loader = ConfigLoader()


def get_config() -> Config:
    """Get the global configuration instance."""
    return _config_loader.load()


def reload_config() -> Config:
    """Reload the global configuration."""
    return _config_loader.reload()
