"""Error trace inspection tool implementation for MCP."""

from typing import Any, Dict, List

import structlog
from mcp.types import Tool, TextContent

from ..analysis.diagnostics import DiagnosticResult, TraceDiagnosticService
from ..analysis.workflow import MarkdownWorkflowGenerator
from ..models import format_instant
from .arguments import required_string
from .base import BaseDatadogTool, json_content

logger = structlog.get_logger(__name__)


def diagnostic_summary(result: DiagnosticResult) -> Dict[str, Any]:
    trace = result.trace_detail
    return {
        "success": True,
        "traceId": result.trace_id,
        "service": result.service,
        "involvedServices": sorted(result.involved_services()),
        "totalErrors": result.total_error_count(),
        "isDistributedError": result.is_distributed_error(),
        "traceSummary": {
            "duration": trace.formatted_duration(),
            "spanCount": trace.span_count(),
            "errorSpanCount": len(trace.error_spans()),
            "startTime": format_instant(trace.start_time),
        },
        "serviceErrors": [
            {
                "serviceName": view.service_name,
                "errorCount": view.error_count(),
                "primaryError": view.primary_error,
                "errorTypes": view.unique_error_types(),
            }
            for view in result.service_errors
        ],
    }


class TraceInspectErrorTraceTool(BaseDatadogTool):
    """MCP tool producing a diagnostic report for one error trace.

    Returns two text blocks: a JSON summary and the markdown workflow.
    """

    tool_name = "trace_inspect_error_trace"

    def get_tool_definition(self) -> Tool:
        return Tool(
            name=self.tool_name,
            description="Inspect a specific error trace and generate diagnostic workflow",
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
                    "traceId": {
                        "type": "string",
                        "description": "Trace ID to inspect"
                    }
                },
                "required": ["service", "from", "to", "traceId"]
            }
        )

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        query = self.build_trace_query(arguments)
        trace_id = required_string(arguments, "traceId")

        logger.info("Inspecting error trace", trace_id=trace_id, service=query.service)

        service = TraceDiagnosticService(self.get_client(), MarkdownWorkflowGenerator())
        result = service.inspect_error_trace(trace_id, query)

        return [
            json_content(diagnostic_summary(result)),
            TextContent(type="text", text=result.workflow),
        ]


_inspect_error_trace_tool = TraceInspectErrorTraceTool()


def get_inspect_error_trace_tool() -> TraceInspectErrorTraceTool:
    """Get the inspect error trace tool instance."""
    return _inspect_error_trace_tool
