#!/usr/bin/env python3
"""
MCP server exposing Datadog trace and log diagnostic tools.
Serves over SSE by default, or over stdio when started with ``stdio``.
"""

import sys
from typing import Any, Dict, List, Optional

import uvicorn
from mcp.server import Server
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.server import Context
from mcp.server.sse import SseServerTransport
from starlette.applications import Starlette
from starlette.responses import Response
from starlette.routing import Mount, Route

from trace_inspector.config import get_config
from trace_inspector.tools.correlate_logs import get_correlate_logs_tool
from trace_inspector.tools.extract_scenario import get_extract_scenario_tool
from trace_inspector.tools.filter_configure import get_filter_configure_tool
from trace_inspector.tools.inspect_error_trace import get_inspect_error_trace_tool
from trace_inspector.tools.list_error_traces import get_list_error_traces_tool
from trace_inspector.tools.search_logs import get_search_logs_tool

DEFAULT_PORT = 8756

# Get configuration to determine server name
config = get_config()
server_name = config.mcp.server_name

# Create FastMCP instance
mcp = FastMCP(server_name)


def _join_results(results, empty_message: str) -> str:
    if not results:
        return empty_message
    return "\n\n".join(result.text for result in results)


def _without_none(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in arguments.items() if value is not None}


@mcp.tool()
async def trace_list_error_traces(
    service: str,
    from_time: str,
    to_time: str,
    env: Optional[str] = None,
    limit: int = 20,
    context: Context = None
) -> str:
    """List error traces for a service within a time window.

    Args:
        service: Service name in Datadog
        from_time: ISO-8601 start timestamp (e.g., '2024-01-15T10:00:00Z')
        to_time: ISO-8601 end timestamp
        env: Environment (defaults to DATADOG_ENV_DEFAULT, usually 'prod')
        limit: Max traces to return (1-100, default: 20)

    Returns:
        JSON list of error traces, newest first
    """
    try:
        results = await get_list_error_traces_tool().execute(_without_none({
            "service": service,
            "env": env,
            "from": from_time,
            "to": to_time,
            "limit": limit
        }))
        return _join_results(results, "No error traces returned")
    except Exception as e:
        return f"Error listing error traces: {str(e)}"


@mcp.tool()
async def trace_inspect_error_trace(
    service: str,
    from_time: str,
    to_time: str,
    trace_id: str,
    env: Optional[str] = None,
    context: Context = None
) -> str:
    """Inspect a specific error trace and generate a diagnostic workflow.

    Args:
        service: Service name in Datadog
        from_time: ISO-8601 start timestamp
        to_time: ISO-8601 end timestamp
        trace_id: Trace ID to inspect
        env: Environment (defaults to DATADOG_ENV_DEFAULT)

    Returns:
        JSON summary of the errors per service followed by a markdown debugging report
    """
    try:
        results = await get_inspect_error_trace_tool().execute(_without_none({
            "service": service,
            "env": env,
            "from": from_time,
            "to": to_time,
            "traceId": trace_id
        }))
        return _join_results(results, "No diagnostic returned")
    except Exception as e:
        return f"Error inspecting trace: {str(e)}"


@mcp.tool()
async def trace_extract_scenario(
    trace_id: str,
    service: str,
    from_time: str,
    to_time: str,
    env: Optional[str] = None,
    context: Context = None
) -> str:
    """Extract a structured test scenario from a trace for debugging and unit test generation.

    Args:
        trace_id: The trace ID to analyze
        service: Service name in Datadog
        from_time: ISO-8601 start timestamp
        to_time: ISO-8601 end timestamp
        env: Environment (defaults to DATADOG_ENV_DEFAULT)

    Returns:
        JSON scenario with entry point, execution flow, error context,
        relevant business data and a Given/When/Then test outline
    """
    try:
        results = await get_extract_scenario_tool().execute(_without_none({
            "traceId": trace_id,
            "service": service,
            "env": env,
            "from": from_time,
            "to": to_time
        }))
        return _join_results(results, "No scenario returned")
    except Exception as e:
        return f"Error extracting scenario: {str(e)}"


@mcp.tool()
async def log_search_logs(
    service: str,
    from_time: str,
    to_time: str,
    env: Optional[str] = None,
    query: Optional[str] = None,
    level: Optional[str] = None,
    limit: int = 100,
    output_mode: str = "full",
    max_message_length: int = 500,
    relevant_packages: Optional[List[str]] = None,
    stack_trace_detail: str = "full",
    context: Context = None
) -> str:
    """Search logs for a service within a time window.

    Args:
        service: Service name in Datadog
        from_time: ISO-8601 start timestamp
        to_time: ISO-8601 end timestamp
        env: Environment (defaults to DATADOG_ENV_DEFAULT)
        query: Additional Datadog log query terms
        level: Log level to filter on (e.g., 'ERROR')
        limit: Max logs to return (1-1000, default: 100)
        output_mode: 'full' returns all logs, 'summarize' groups similar logs by pattern
        max_message_length: Max message length in 'full' mode (default: 500)
        relevant_packages: Package prefixes to keep in stack traces
        stack_trace_detail: 'full', 'relevant' or 'minimal'

    Returns:
        JSON list of logs, or of log pattern groups in 'summarize' mode
    """
    try:
        results = await get_search_logs_tool().execute(_without_none({
            "service": service,
            "env": env,
            "from": from_time,
            "to": to_time,
            "query": query,
            "level": level,
            "limit": limit,
            "outputMode": output_mode,
            "maxMessageLength": max_message_length,
            "relevantPackages": relevant_packages,
            "stackTraceDetail": stack_trace_detail
        }))
        return _join_results(results, "No logs returned")
    except Exception as e:
        return f"Error searching logs: {str(e)}"


@mcp.tool()
async def log_correlate(
    trace_id: str,
    service: str,
    from_time: str,
    to_time: str,
    env: Optional[str] = None,
    include_trace: bool = True,
    relevant_packages: Optional[List[str]] = None,
    stack_trace_detail: str = "full",
    context: Context = None
) -> str:
    """Correlate logs and traces by trace ID.

    Args:
        trace_id: The trace ID to search for
        service: Service name in Datadog
        from_time: ISO-8601 start timestamp
        to_time: ISO-8601 end timestamp
        env: Environment (defaults to DATADOG_ENV_DEFAULT)
        include_trace: Include a trace summary in the response (default: True)
        relevant_packages: Package prefixes to keep in stack_trace attributes
        stack_trace_detail: 'full', 'relevant' or 'minimal'

    Returns:
        JSON with the trace summary and the logs written while serving the trace
    """
    try:
        results = await get_correlate_logs_tool().execute(_without_none({
            "traceId": trace_id,
            "service": service,
            "env": env,
            "from": from_time,
            "to": to_time,
            "includeTrace": include_trace,
            "relevantPackages": relevant_packages,
            "stackTraceDetail": stack_trace_detail
        }))
        return _join_results(results, "No logs returned")
    except Exception as e:
        return f"Error correlating logs: {str(e)}"


@mcp.tool()
async def filter_configure(
    action: str,
    packages: Optional[List[str]] = None,
    project_name: Optional[str] = None,
    context: Context = None
) -> str:
    """Configure which package prefixes are kept when filtering stack traces.

    Args:
        action: 'status', 'set_global', 'set_project', 'set_no_filter' or 'clear_project'
        packages: Package prefixes (required for 'set_global' and 'set_project')
        project_name: Project name; auto-detected from the git remote or directory when omitted

    Returns:
        JSON describing the resulting filter configuration
    """
    try:
        results = await get_filter_configure_tool().execute(_without_none({
            "action": action,
            "packages": packages,
            "projectName": project_name
        }))
        return _join_results(results, "No result returned")
    except Exception as e:
        return f"Error configuring filters: {str(e)}"


def create_starlette_app(mcp_server: Server, *, debug: bool = False) -> Starlette:
    sse = SseServerTransport("/messages")

    async def handle_sse(request):
        async with sse.connect_sse(
            request.scope, request.receive, request._send
        ) as streams:
            await mcp_server.run(
                streams[0], streams[1], mcp_server.create_initialization_options()
            )
        # Return empty response to avoid NoneType error
        return Response()

    return Starlette(
        debug=debug,
        routes=[
            Route("/", endpoint=handle_sse),
            Route("/sse", endpoint=handle_sse),
            Mount("/messages", app=sse.handle_post_message),
        ]
    )


def main():
    if len(sys.argv) > 1 and sys.argv[1] == "stdio":
        mcp.run(transport="stdio")
        return

    port = DEFAULT_PORT
    if len(sys.argv) > 1:
        port = int(sys.argv[1])

    mcp_server = mcp._mcp_server
    starlette_app = create_starlette_app(mcp_server, debug=True)

    print(f"Datadog Trace Inspector MCP Server running on http://localhost:{port}")
    print("Endpoints:")
    print(f"  SSE: http://localhost:{port}/sse")
    print(f"  Messages: http://localhost:{port}/messages/")
    print("Tools:")
    print("  Traces:")
    print("    - trace_list_error_traces: List error traces for a service within a time window")
    print("    - trace_inspect_error_trace: Diagnostic report for one error trace")
    print("    - trace_extract_scenario: Test scenario (entry point, flow, error) from a trace")
    print("  Logs:")
    print("    - log_search_logs: Search logs, in full or grouped by pattern")
    print("    - log_correlate: Logs written while serving a trace")
    print("  Configuration:")
    print("    - filter_configure: Package prefixes kept when filtering stack traces")
    print(f"Datadog site: {config.datadog.site}, default env: {config.datadog.default_env}")

    uvicorn.run(starlette_app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
