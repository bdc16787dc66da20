"""Trace and log correlation tool implementation for MCP."""

from typing import Any, Dict, List

import structlog
from mcp.types import Tool, TextContent

from ..analysis.stack_trace import StackTraceDetail, StackTraceFilter
from ..models import LogEntry, TraceDetail, format_instant
from .arguments import optional_bool, optional_string, required_string
from .base import BaseDatadogTool, json_content
from .search_logs import RELEVANT_PACKAGES_SCHEMA, STACK_TRACE_DETAIL_SCHEMA

logger = structlog.get_logger(__name__)


def trace_overview(trace: TraceDetail) -> Dict[str, Any]:
    return {
        "service": trace.service,
        "resourceName": trace.resource_name,
        "duration": trace.formatted_duration(),
        "spanCount": trace.span_count(),
        "services": sorted(trace.involved_services()),
        "hasErrors": trace.has_errors(),
    }


def log_entry_to_dict(log: LogEntry, stack_filter: StackTraceFilter,
                      detail: StackTraceDetail) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "timestamp": format_instant(log.timestamp),
        "level": log.level,
        "message": log.message,
    }
    if log.attributes:
        data["attributes"] = dict(stack_filter.filter_attributes(log.attributes, detail))
    return data


class LogCorrelateTool(BaseDatadogTool):
    """MCP tool gathering the logs written while serving one trace."""

    tool_name = "log_correlate"

    def get_tool_definition(self) -> Tool:
        return Tool(
            name=self.tool_name,
            description="Correlate logs and traces by trace ID",
            inputSchema={
                "type": "object",
                "properties": {
                    "traceId": {
                        "type": "string",
                        "description": "The trace ID to search for"
                    },
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
                    "includeTrace": {
                        "type": "boolean",
                        "description": "Include trace summary in the response",
                        "default": True
                    },
                    "relevantPackages": RELEVANT_PACKAGES_SCHEMA,
                    "stackTraceDetail": STACK_TRACE_DETAIL_SCHEMA
                },
                "required": ["traceId", "service", "from", "to"]
            }
        )

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        trace_id = required_string(arguments, "traceId")
        query = self.build_trace_query(arguments)
        include_trace = optional_bool(arguments, "includeTrace", True)
        detail = StackTraceDetail.parse(optional_string(arguments, "stackTraceDetail"))
        stack_filter = StackTraceFilter(self.resolve_relevant_packages(arguments))

        logger.info("Correlating logs with trace",
                    trace_id=trace_id,
                    service=query.service,
                    include_trace=include_trace)

        client = self.get_client()
        result: Dict[str, Any] = {"success": True, "traceId": trace_id}

        if include_trace:
            trace = client.get_trace_detail(trace_id, query.service, query.env)
            result["trace"] = trace_overview(trace)

        logs = client.search_logs_for_trace(trace_id, query)
        result["logs"] = [log_entry_to_dict(log, stack_filter, detail) for log in logs]
        result["logCount"] = len(logs)

        return [json_content(result)]


_correlate_logs_tool = LogCorrelateTool()


def get_correlate_logs_tool() -> LogCorrelateTool:
    """Get the log correlation tool instance."""
    return _correlate_logs_tool
