"""Error trace listing tool implementation for MCP."""

from typing import Any, Dict, List

import structlog
from mcp.types import Tool, TextContent

from ..analysis.diagnostics import TraceDiagnosticService
from ..analysis.workflow import MarkdownWorkflowGenerator
from ..models import DEFAULT_TRACE_LIMIT, MAX_TRACE_LIMIT, TraceSummary, format_instant
from .arguments import optional_int
from .base import BaseDatadogTool, json_content

logger = structlog.get_logger(__name__)


def trace_summary_to_dict(trace: TraceSummary) -> Dict[str, Any]:
    return {
        "traceId": trace.trace_id,
        "service": trace.service,
        "resourceName": trace.resource_name,
        "errorMessage": trace.error_message,
        "timestamp": format_instant(trace.timestamp),
        "duration": trace.formatted_duration(),
    }


class TraceListErrorTracesTool(BaseDatadogTool):
    """MCP tool listing error traces of a service within a time window."""

    tool_name = "trace_list_error_traces"

    def get_tool_definition(self) -> Tool:
        return Tool(
            name=self.tool_name,
            description="List error traces for a service within a time window",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": {
                        "type": "string",
                        "description": "Service name in Datadog"
                    },
                    "env": {
                        "type": "string",
                        "description": "Environment",
                        "default": "prod"
                    },
                    "from": {
                        "type": "string",
                        "description": "ISO-8601 start timestamp"
                    },
                    "to": {
                        "type": "string",
                        "description": "ISO-8601 end timestamp"
                    },
                    "limit": {
                        "type": "integer",
                        "description": f"Max traces to return (1-{MAX_TRACE_LIMIT})",
                        "default": DEFAULT_TRACE_LIMIT
                    }
                },
                "required": ["service", "from", "to"]
            }
        )

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        limit = optional_int(arguments, "limit", self._get_config().mcp.default_trace_limit)
        query = self.build_trace_query(arguments, limit)

        logger.info("Listing error traces", service=query.service, env=query.env, limit=limit)

        service = TraceDiagnosticService(self.get_client(), MarkdownWorkflowGenerator())
        traces = service.list_error_traces(query)

        return [json_content({
            "success": True,
            "count": len(traces),
            "traces": [trace_summary_to_dict(trace) for trace in traces],
        })]


_list_error_traces_tool = TraceListErrorTracesTool()


def get_list_error_traces_tool() -> TraceListErrorTracesTool:
    """Get the list error traces tool instance."""
    return _list_error_traces_tool
