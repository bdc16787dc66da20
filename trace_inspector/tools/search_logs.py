"""Log search tool implementation for MCP."""

from typing import Any, Dict, List

import structlog
from mcp.types import Tool, TextContent

from ..analysis.log_patterns import LogGroupSummary, summarize_logs
from ..analysis.stack_trace import StackTraceDetail, StackTraceFilter
from ..models import DEFAULT_LOG_LIMIT, MAX_LOG_LIMIT, LogQuery, LogSummary, format_instant
from .arguments import (
    optional_int, optional_string, parse_iso_timestamp, required_string,
)
from .base import BaseDatadogTool, json_content

logger = structlog.get_logger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 500

OUTPUT_MODES = ("full", "summarize")

STACK_TRACE_DETAIL_SCHEMA = {
    "type": "string",
    "description": (
        "Stack trace detail level: 'full' returns complete stack trace, "
        "'relevant' filters to specified packages only, "
        "'minimal' shows only exception message and root cause"
    ),
    "enum": [detail.value for detail in StackTraceDetail],
    "default": "full"
}

RELEVANT_PACKAGES_SCHEMA = {
    "type": "array",
    "items": {"type": "string"},
    "description": (
        "Package prefixes to keep in stack traces (e.g., ['com.mycompany']). "
        "Defaults to the configured filters for the current project; "
        "if empty, no filtering is applied."
    )
}


def truncate_message(message: str, max_length: int) -> str:
    if message is None or len(message) <= max_length:
        return message
    return message[:max(max_length - 3, 0)] + "..."


def log_to_dict(log: LogSummary, message: str) -> Dict[str, Any]:
    data = {
        "timestamp": log.formatted_timestamp(),
        "level": log.level,
        "service": log.service,
        "message": message,
        "host": log.host,
    }
    if log.has_trace():
        data["traceId"] = log.trace_id
    return data


def group_to_dict(group: LogGroupSummary) -> Dict[str, Any]:
    return {
        "pattern": group.pattern,
        "level": group.level,
        "count": group.count,
        "firstOccurrence": format_instant(group.first_occurrence),
        "lastOccurrence": format_instant(group.last_occurrence),
    }


class LogSearchLogsTool(BaseDatadogTool):
    """MCP tool searching the logs of a service, in full or grouped by pattern."""

    tool_name = "log_search_logs"

    def get_tool_definition(self) -> Tool:
        return Tool(
            name=self.tool_name,
            description="Search logs for a service within a time window",
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
                    "query": {
                        "type": "string",
                        "description": "Additional Datadog log query terms"
                    },
                    "level": {
                        "type": "string",
                        "description": "Log level to filter on (e.g., ERROR, WARN)"
                    },
                    "limit": {
                        "type": "integer",
                        "description": f"Max logs to return (1-{MAX_LOG_LIMIT})",
                        "default": DEFAULT_LOG_LIMIT
                    },
                    "outputMode": {
                        "type": "string",
                        "description": (
                            "Output mode: 'full' returns all logs, "
                            "'summarize' groups similar logs by pattern"
                        ),
                        "enum": list(OUTPUT_MODES),
                        "default": "full"
                    },
                    "maxMessageLength": {
                        "type": "integer",
                        "description": "Max message length (only for 'full' mode)",
                        "default": DEFAULT_MAX_MESSAGE_LENGTH
                    },
                    "relevantPackages": RELEVANT_PACKAGES_SCHEMA,
                    "stackTraceDetail": STACK_TRACE_DETAIL_SCHEMA
                },
                "required": ["service", "from", "to"]
            }
        )

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        query = LogQuery(
            service=required_string(arguments, "service"),
            env=optional_string(arguments, "env") or self.default_env(),
            from_time=parse_iso_timestamp(required_string(arguments, "from")),
            to_time=parse_iso_timestamp(required_string(arguments, "to")),
            query=optional_string(arguments, "query"),
            level=optional_string(arguments, "level"),
            limit=optional_int(arguments, "limit", self._get_config().mcp.default_log_limit)
        )
        output_mode = (optional_string(arguments, "outputMode") or "full").lower()
        max_message_length = optional_int(arguments, "maxMessageLength", DEFAULT_MAX_MESSAGE_LENGTH)
        detail = StackTraceDetail.parse(optional_string(arguments, "stackTraceDetail"))

        logger.info("Searching logs",
                    service=query.service,
                    env=query.env,
                    output_mode=output_mode,
                    stack_trace_detail=detail.value)

        logs = self.get_client().search_logs(query)

        if output_mode == "summarize":
            groups = summarize_logs(logs)
            return [json_content({
                "success": True,
                "totalLogs": len(logs),
                "uniquePatterns": len(groups),
                "groups": [group_to_dict(group) for group in groups],
            })]

        stack_filter = StackTraceFilter(self.resolve_relevant_packages(arguments))
        entries = []
        for log in logs:
            message = stack_filter.filter(log.message, detail)
            entries.append(log_to_dict(log, truncate_message(message, max_message_length)))

        return [json_content({
            "success": True,
            "count": len(logs),
            "logs": entries,
        })]


_search_logs_tool = LogSearchLogsTool()


def get_search_logs_tool() -> LogSearchLogsTool:
    """Get the log search tool instance."""
    return _search_logs_tool
