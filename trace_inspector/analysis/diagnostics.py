"""Trace diagnostics: per-service error views and the inspection workflow."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from ..models import LogEntry, SpanDetail, TraceDetail, TraceQuery, TraceSummary

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ServiceErrorView:
    """Errors of one service within a trace, with the logs around them."""
    service_name: str
    error_spans: Tuple[SpanDetail, ...]
    related_logs: Tuple[LogEntry, ...] = ()
    primary_error: str = ""
    timestamp: datetime = field(default_factory=_now)

    def __post_init__(self):
        if self.service_name is None or not self.service_name.strip():
            raise ValueError("service_name must not be blank")
        if self.error_spans is None:
            raise ValueError("error_spans must not be None")
        object.__setattr__(self, "error_spans", tuple(self.error_spans))
        object.__setattr__(self, "related_logs", tuple(self.related_logs or ()))
        object.__setattr__(self, "primary_error", self.primary_error or "")
        object.__setattr__(self, "timestamp", self.timestamp or _now())

    def has_logs(self) -> bool:
        return bool(self.related_logs)

    def error_count(self) -> int:
        return len(self.error_spans)

    def unique_error_types(self) -> List[str]:
        """Distinct non-blank error types in first-seen order."""
        types: List[str] = []
        for span in self.error_spans:
            if span.error_type.strip() and span.error_type not in types:
                types.append(span.error_type)
        return types


@dataclass(frozen=True)
class DiagnosticResult:
    """Complete diagnostic output for one error trace."""
    trace_detail: TraceDetail
    service_errors: Tuple[ServiceErrorView, ...]
    workflow: str = ""
    generated_at: datetime = field(default_factory=_now)

    def __post_init__(self):
        if self.trace_detail is None:
            raise ValueError("trace_detail must not be None")
        if self.service_errors is None:
            raise ValueError("service_errors must not be None")
        if self.workflow is None:
            raise ValueError("workflow must not be None")
        object.__setattr__(self, "service_errors", tuple(self.service_errors))
        object.__setattr__(self, "generated_at", self.generated_at or _now())

    @property
    def trace_id(self) -> str:
        return self.trace_detail.trace_id

    @property
    def service(self) -> str:
        return self.trace_detail.service

    def involved_services(self) -> Set[str]:
        return self.trace_detail.involved_services()

    def total_error_count(self) -> int:
        return sum(view.error_count() for view in self.service_errors)

    def is_distributed_error(self) -> bool:
        """True when more than one service reported errors."""
        return len(self.service_errors) > 1


def find_primary_error(error_spans: Sequence[SpanDetail]) -> str:
    """First non-blank error summary among the spans."""
    for span in error_spans:
        summary = span.error_summary()
        if summary.strip():
            return summary
    return ""


def build_service_error_views(trace: TraceDetail,
                              logs: Sequence[LogEntry]) -> List[ServiceErrorView]:
    """Group the trace's error spans by service in first-seen order.

    Log entries carry no service field, so every view gets all the trace logs.
    """
    spans_by_service: Dict[str, List[SpanDetail]] = {}
    for span in trace.error_spans():
        spans_by_service.setdefault(span.service, []).append(span)

    views = []
    for service_name, error_spans in spans_by_service.items():
        views.append(ServiceErrorView(
            service_name=service_name,
            error_spans=tuple(error_spans),
            related_logs=tuple(logs),
            primary_error=find_primary_error(error_spans),
            timestamp=min(span.start_time for span in error_spans)
        ))
    return views


class TraceDiagnosticService:
    """Coordinates Datadog calls and turns their results into diagnostics."""

    def __init__(self, datadog_client, workflow_generator):
        """Initialize the diagnostic service.

        Args:
            datadog_client: Client used for span, trace and log queries
            workflow_generator: Renders a DiagnosticResult as markdown
        """
        if datadog_client is None:
            raise ValueError("datadog_client must not be None")
        if workflow_generator is None:
            raise ValueError("workflow_generator must not be None")
        self.datadog_client = datadog_client
        self.workflow_generator = workflow_generator

    def list_error_traces(self, query: TraceQuery) -> List[TraceSummary]:
        if query is None:
            raise ValueError("query must not be None")
        return self.datadog_client.search_error_traces(query)

    def inspect_error_trace(self, trace_id: str, query: TraceQuery) -> DiagnosticResult:
        """Fetch a trace with its logs and build the diagnostic report.

        Args:
            trace_id: Trace to inspect
            query: Service, environment and time window the trace belongs to

        Returns:
            DiagnosticResult: Service error views plus the rendered workflow

        Raises:
            ValueError: If trace_id or query is missing
            DatadogApiError: If a Datadog call fails
        """
        if trace_id is None or not trace_id.strip():
            raise ValueError("trace_id must not be blank")
        if query is None:
            raise ValueError("query must not be None")

        trace_detail = self.datadog_client.get_trace_detail(trace_id, query.service, query.env)
        logs = self.datadog_client.search_logs_for_trace(trace_id, query)
        service_errors = build_service_error_views(trace_detail, logs)

        generated_at = _now()
        draft = DiagnosticResult(trace_detail, service_errors, "", generated_at)
        workflow = self.workflow_generator.generate(draft)

        logger.info("Inspected error trace",
                    trace_id=trace_id,
                    spans=trace_detail.span_count(),
                    services_with_errors=len(service_errors),
                    logs=len(logs))
        return DiagnosticResult(trace_detail, service_errors, workflow, generated_at)
