"""Shared pytest fixtures."""

import os

import pytest

# The server module loads its configuration at import time.
os.environ.setdefault("DATADOG_API_KEY", "test-api-key")
os.environ.setdefault("DATADOG_APP_KEY", "test-app-key")

from trace_inspector.config import Config, DatadogConfig, FilterSettings, MCPConfig  # noqa: E402


@pytest.fixture
def config(tmp_path):
    """Configuration pointing the filter store at a temporary file."""
    return Config(
        datadog=DatadogConfig(api_key="test-api-key", app_key="test-app-key"),
        mcp=MCPConfig(),
        filters=FilterSettings(config_path=tmp_path / "filter-config.json")
    )
