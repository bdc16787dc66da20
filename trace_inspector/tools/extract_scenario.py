"""Test scenario extraction tool implementation for MCP."""

from typing import Any, Dict, List

import structlog
from mcp.types import Tool, TextContent

from ..analysis.extractor import TraceScenarioExtractor
from ..analysis.scenario import EntryPoint, ErrorContext, ExecutionStep, TraceScenario
from .arguments import required_string
from .base import BaseDatadogTool, json_content

logger = structlog.get_logger(__name__)


def entry_point_to_dict(entry_point: EntryPoint) -> Dict[str, Any]:
    data: Dict[str, Any] = {"method": entry_point.method, "path": entry_point.path}
    if entry_point.headers:
        data["headers"] = dict(entry_point.headers)
    if entry_point.has_body():
        data["body"] = entry_point.body
    return data


def step_to_dict(step: ExecutionStep) -> Dict[str, Any]:
    data: Dict[str, Any] = {"order": step.order, "spanId": step.span_id}
    if step.parent_span_id.strip():
        data["parentSpanId"] = step.parent_span_id
    data["service"] = step.service
    data["operation"] = step.operation
    data["type"] = step.type.value
    if step.detail.strip():
        data["detail"] = step.detail
    data["durationMs"] = step.duration_ms
    if step.is_error:
        data["isError"] = True
    return data


def error_context_to_dict(error_context: ErrorContext) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "service": error_context.service,
        "operation": error_context.operation,
        "exceptionType": error_context.exception_type,
        "message": error_context.message,
    }
    if error_context.stack_trace.strip():
        data["stackTrace"] = error_context.stack_trace
    if error_context.has_location():
        location = error_context.location
        data["location"] = {
            "className": location.class_name,
            "methodName": location.method_name,
            "fileName": location.file_name,
            "lineNumber": location.line_number,
        }
    if error_context.span_tags:
        data["spanTags"] = dict(error_context.span_tags)
    return data


def scenario_to_dict(scenario: TraceScenario) -> Dict[str, Any]:
    """JSON-ready view of a scenario; empty optional parts are left out."""
    data: Dict[str, Any] = {"success": True, "traceId": scenario.trace_id}
    if scenario.has_entry_point():
        data["entryPoint"] = entry_point_to_dict(scenario.entry_point)
    data["executionFlow"] = [step_to_dict(step) for step in scenario.execution_flow]
    data["stepCount"] = scenario.step_count()
    if scenario.has_error():
        data["errorContext"] = error_context_to_dict(scenario.error_context)
    if scenario.relevant_data:
        data["relevantData"] = dict(scenario.relevant_data)
    data["involvedServices"] = list(scenario.involved_services)
    if scenario.has_error():
        data["suggestedTestScenario"] = scenario.suggested_test_scenario()
    data["totalDurationMs"] = scenario.total_duration_ms()
    return data


class TraceExtractScenarioTool(BaseDatadogTool):
    """MCP tool turning a trace into a reproducible test scenario."""

    tool_name = "trace_extract_scenario"

    def __init__(self):
        super().__init__()
        self.extractor = TraceScenarioExtractor()

    def get_tool_definition(self) -> Tool:
        return Tool(
            name=self.tool_name,
            description=(
                "Extract a structured test scenario from a trace for debugging "
                "and unit test generation"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "traceId": {
                        "type": "string",
                        "description": "The trace ID to analyze"
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
                    }
                },
                "required": ["traceId", "service", "from", "to"]
            }
        )

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        trace_id = required_string(arguments, "traceId")
        query = self.build_trace_query(arguments)

        logger.info("Extracting trace scenario", trace_id=trace_id, service=query.service)

        client = self.get_client()
        trace = client.get_trace_detail(trace_id, query.service, query.env)
        logs = client.search_logs_for_trace(trace_id, query)
        scenario = self.extractor.extract(trace, logs)

        return [json_content(scenario_to_dict(scenario))]


_extract_scenario_tool = TraceExtractScenarioTool()


def get_extract_scenario_tool() -> TraceExtractScenarioTool:
    """Get the extract scenario tool instance."""
    return _extract_scenario_tool
