"""Markdown rendering of trace diagnostics."""

from typing import List, Sequence

from ..models import TraceDetail, format_instant
from .diagnostics import DiagnosticResult, ServiceErrorView

MAX_STACK_LINES = 20

DATADOG_APP_URL = "https://app.datadoghq.com"


def truncate_stack_trace(stack: str, max_lines: int = MAX_STACK_LINES) -> str:
    lines = stack.split("\n")
    if len(lines) <= max_lines:
        return stack

    kept = "\n".join(lines[:max_lines])
    return f"{kept}\n... ({len(lines) - max_lines} more lines truncated)"


class MarkdownWorkflowGenerator:
    """Renders a DiagnosticResult as a step-by-step debugging guide."""

    def generate(self, result: DiagnosticResult) -> str:
        if result is None:
            raise ValueError("result must not be None")

        md: List[str] = []
        self._append_header(md, result)
        self._append_summary(md, result)
        self._append_services_involved(md, result)
        self._append_error_details(md, result)
        self._append_span_timeline(md, result.trace_detail)
        self._append_logs(md, result.service_errors)
        self._append_actions(md, result)
        self._append_links(md, result)
        return "".join(md)

    def _append_header(self, md: List[str], result: DiagnosticResult) -> None:
        md.append("# Error Trace Diagnostic Report\n\n")
        md.append(f"**Trace ID:** `{result.trace_id}`\n")
        md.append(f"**Service:** {result.service}\n")
        md.append(f"**Generated:** {format_instant(result.generated_at)}\n\n")

    def _append_summary(self, md: List[str], result: DiagnosticResult) -> None:
        trace = result.trace_detail
        md.append("## Summary\n\n")
        md.append(f"- **Duration:** {trace.formatted_duration()}\n")
        md.append(f"- **Total Spans:** {trace.span_count()}\n")
        md.append(f"- **Error Spans:** {result.total_error_count()}\n")
        md.append(f"- **Services Involved:** {len(result.involved_services())}\n")
        if result.is_distributed_error():
            md.append("- **Type:** Distributed error across multiple services\n")
        else:
            md.append("- **Type:** Single-service error\n")
        md.append("\n")

    def _append_services_involved(self, md: List[str], result: DiagnosticResult) -> None:
        failing = {view.service_name for view in result.service_errors}
        md.append("## Services Involved\n\n")
        for service in sorted(result.involved_services()):
            status = "ERROR" if service in failing else "OK"
            md.append(f"- **{service}**: {status}\n")
        md.append("\n")

    def _append_error_details(self, md: List[str], result: DiagnosticResult) -> None:
        md.append("## Error Details\n\n")

        for view in result.service_errors:
            md.append(f"### {view.service_name}\n\n")
            if view.primary_error.strip():
                md.append(f"**Primary Error:** {view.primary_error}\n\n")
            md.append(f"**Error Count:** {view.error_count()}\n\n")

            error_types = view.unique_error_types()
            if error_types:
                md.append("**Error Types:**\n")
                for error_type in error_types:
                    md.append(f"- `{error_type}`\n")
                md.append("\n")

            for span in view.error_spans:
                md.append(f"#### Span: {span.operation_name}\n\n")
                md.append(f"- **Resource:** {span.resource_name}\n")
                md.append(f"- **Duration:** {span.formatted_duration()}\n")
                if span.error_type.strip():
                    md.append(f"- **Exception:** `{span.error_type}`\n")
                if span.error_message.strip():
                    md.append(f"- **Message:** {span.error_message}\n")
                if span.error_stack.strip():
                    md.append("\n**Stack Trace:**\n```\n")
                    md.append(truncate_stack_trace(span.error_stack))
                    md.append("\n```\n")
                md.append("\n")

    def _append_span_timeline(self, md: List[str], trace: TraceDetail) -> None:
        md.append("## Span Timeline\n\n")
        md.append("| Service | Operation | Duration | Status |\n")
        md.append("|---------|-----------|----------|--------|\n")
        for span in trace.spans:
            status = "ERROR" if span.is_error else "OK"
            md.append(f"| {span.service} | {span.operation_name} | {span.formatted_duration()} | {status} |\n")
        md.append("\n")

    def _append_logs(self, md: List[str], service_errors: Sequence[ServiceErrorView]) -> None:
        if not any(view.has_logs() for view in service_errors):
            return

        md.append("## Related Logs\n\n")
        for view in service_errors:
            if not view.has_logs():
                continue
            md.append(f"### {view.service_name} Logs\n\n")
            for log in view.related_logs:
                md.append(f"**[{log.level}]** _{format_instant(log.timestamp)}_\n")
                md.append(f"```\n{log.message}\n```\n\n")

    def _append_actions(self, md: List[str], result: DiagnosticResult) -> None:
        md.append("## Recommended Actions\n\n")
        step = 1

        for view in result.service_errors:
            md.append(f"{step}. **Investigate {view.service_name}:**\n")
            step += 1
            for error_type in view.unique_error_types():
                md.append(f"   - Check for `{error_type}` root cause\n")
            if view.primary_error.strip():
                md.append(f"   - Primary error: \"{view.primary_error}\"\n")
            md.append("\n")

        md.append(f"{step}. **Review recent deployments** to identify potential causes\n\n")
        step += 1

        if result.is_distributed_error():
            md.append(f"{step}. **Check service communication** between:\n")
            step += 1
            for service in sorted(result.involved_services()):
                md.append(f"   - {service}\n")
            md.append("\n")

        md.append(f"{step}. **Monitor for recurrence** after applying fixes\n\n")

    def _append_links(self, md: List[str], result: DiagnosticResult) -> None:
        md.append("## Datadog Links\n\n")
        md.append(f"- [View Trace in Datadog]({DATADOG_APP_URL}/apm/trace/{result.trace_id})\n")
        md.append(f"- [Service Dashboard]({DATADOG_APP_URL}/apm/service/{result.service})\n\n")
