"""Base class for the Datadog-backed MCP tools."""

import json
from typing import Any, Dict, List, Optional

import structlog
from mcp.types import Tool, TextContent

from ..config import Config, get_config
from ..datadog.client import DatadogApiError, DatadogClient
from ..filter_store import FilterConfigStore, detect_current_project
from ..models import TraceQuery
from .arguments import (
    optional_string, optional_string_list, parse_iso_timestamp, required_string,
)

logger = structlog.get_logger(__name__)


def json_content(payload: Dict[str, Any]) -> TextContent:
    return TextContent(type="text", text=json.dumps(payload, indent=2, ensure_ascii=False))


class BaseDatadogTool:
    """Shared configuration, client access and error reporting for tools.

    Subclasses set ``tool_name``, build their schema in
    ``get_tool_definition`` and do their work in ``run``.
    """

    tool_name = ""

    def __init__(self):
        self.config: Optional[Config] = None
        self._client: Optional[DatadogClient] = None
        self._filter_store: Optional[FilterConfigStore] = None

    def _get_config(self) -> Config:
        if self.config is None:
            self.config = get_config()
        return self.config

    def get_client(self) -> DatadogClient:
        if self._client is None:
            config = self._get_config()
            self._client = DatadogClient(config.datadog)
        return self._client

    def get_filter_store(self) -> FilterConfigStore:
        if self._filter_store is None:
            config = self._get_config()
            self._filter_store = FilterConfigStore(config.filters.config_path)
        return self._filter_store

    def default_env(self) -> str:
        return self._get_config().datadog.default_env

    def build_trace_query(self, arguments: Dict[str, Any], limit: Optional[int] = None) -> TraceQuery:
        """TraceQuery from the common service/env/from/to arguments."""
        return TraceQuery(
            service=required_string(arguments, "service"),
            env=optional_string(arguments, "env") or self.default_env(),
            from_time=parse_iso_timestamp(required_string(arguments, "from")),
            to_time=parse_iso_timestamp(required_string(arguments, "to")),
            limit=limit if limit is not None else self._get_config().mcp.default_trace_limit
        )

    def resolve_relevant_packages(self, arguments: Dict[str, Any]) -> List[str]:
        """Explicit relevantPackages, else the stored packages for the current project."""
        packages = optional_string_list(arguments, "relevantPackages")
        if packages is not None:
            return packages
        return self.get_filter_store().get_relevant_packages(detect_current_project())

    def get_tool_definition(self) -> Tool:
        raise NotImplementedError

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        raise NotImplementedError

    async def execute(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Execute the tool.

        Args:
            arguments: Tool arguments as sent by the MCP client

        Returns:
            List[TextContent]: Tool output, or a markdown error report
        """
        try:
            return self.run(arguments or {})

        except ValueError as e:
            logger.warning("Invalid tool arguments", tool=self.tool_name, error=str(e))
            return [TextContent(
                type="text",
                text=f"❌ **Invalid Arguments**\n\n"
                     f"{e}\n\n"
                     f"Please check the parameters and try again."
            )]
        except DatadogApiError as e:
            logger.error("Datadog API error", tool=self.tool_name,
                         status_code=e.status_code, error=str(e))
            if e.is_authentication_error():
                hint = "Please check DATADOG_API_KEY and DATADOG_APP_KEY."
            elif e.is_rate_limit_error():
                hint = "Datadog rate limit reached, please retry later."
            else:
                hint = "Please check your Datadog configuration and ensure the API is reachable."
            return [TextContent(
                type="text",
                text=f"❌ **Datadog API Error**\n\n"
                     f"{self.tool_name} failed: {e}\n\n"
                     f"{hint}"
            )]
        except Exception as e:
            logger.error("Unexpected error in tool", tool=self.tool_name, error=str(e))
            return [TextContent(
                type="text",
                text=f"❌ **Unexpected Error**\n\n"
                     f"An unexpected error occurred: {e}\n\n"
                     f"Please try again or contact support if the issue persists."
            )]
