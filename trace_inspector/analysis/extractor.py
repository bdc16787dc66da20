"""Extraction of a structured scenario from a trace's spans and logs."""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from ..models import LogEntry, SpanDetail, TraceDetail
from .scenario import EntryPoint, ErrorContext, ExecutionStep, SpanType, TraceScenario
from .stack_trace import StackTraceLocation

logger = structlog.get_logger(__name__)

# Tag key prefixes per span type, checked in precedence order.
HTTP_TAGS = (
    "http.method", "http.url", "http.route", "http.path",
    "http.status_code", "http.request.body", "http.request.headers",
)

DB_TAGS = (
    "db.type", "db.statement", "db.instance", "db.name",
    "db.operation", "sql.query",
)

CACHE_TAGS = ("cache.type", "redis.command", "memcached.command")

QUEUE_TAGS = ("kafka.topic", "rabbitmq.queue", "sqs.queue", "message.type")

TYPE_TAGS: Tuple[Tuple[SpanType, Tuple[str, ...]], ...] = (
    (SpanType.HTTP, HTTP_TAGS),
    (SpanType.DB, DB_TAGS),
    (SpanType.CACHE, CACHE_TAGS),
    (SpanType.QUEUE, QUEUE_TAGS),
)

# Key fragments that mark a tag or log attribute as business data.
RELEVANT_DATA_PATTERNS = (
    "user_id", "user.id", "customer_id", "order_id", "product_id",
    "request_id", "correlation_id", "session_id", "tenant_id",
    "amount", "quantity", "status", "type",
)

HEADER_TAG_PREFIXES = ("http.request.headers.", "http.header.")

MAX_STATEMENT_LENGTH = 80


def first_match(tags: Dict[str, str], *keys: str) -> str:
    """Return the first non-blank value among the given tag keys, or ""."""
    for key in keys:
        value = tags.get(key)
        if value is not None and value.strip():
            return value
    return ""


def _has_any_tag(tags: Dict[str, str], prefixes: Sequence[str]) -> bool:
    return any(key.startswith(prefix) for key in tags for prefix in prefixes)


def _truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return value[:max_length - 3] + "..."


def is_relevant_data_key(key: str) -> bool:
    lower_key = key.lower()
    return any(pattern in lower_key for pattern in RELEVANT_DATA_PATTERNS)


def normalize_key(key: str) -> str:
    return key.lower().replace(".", "_").replace("-", "_")


def classify_span(span: SpanDetail) -> SpanType:
    """Classify a span from its tag keys; HTTP wins over DB, cache and queue."""
    for span_type, prefixes in TYPE_TAGS:
        if _has_any_tag(span.tags, prefixes):
            return span_type

    if span.tags.get("span.kind", "").lower() == "client":
        return SpanType.EXTERNAL

    return SpanType.INTERNAL


def build_operation_description(span: SpanDetail, span_type: SpanType) -> str:
    """Human readable name for what a span did."""
    tags = span.tags

    if span_type is SpanType.HTTP:
        method = first_match(tags, "http.method")
        path = first_match(tags, "http.route", "http.url", "http.path")
        if method and path:
            return f"{method} {path}"
    elif span_type is SpanType.DB:
        db_operation = first_match(tags, "db.operation")
        if db_operation:
            return db_operation
        statement = first_match(tags, "db.statement", "sql.query")
        if statement:
            return _truncate(statement, MAX_STATEMENT_LENGTH)

    if span.resource_name.strip():
        return span.resource_name
    if span.operation_name.strip():
        return span.operation_name
    return span.service


def extract_detail(span: SpanDetail, span_type: SpanType) -> str:
    """Type-specific supplementary detail (statement, status code, command, topic)."""
    tags = span.tags

    if span_type is SpanType.DB:
        return first_match(tags, "db.statement", "sql.query")
    if span_type is SpanType.HTTP:
        return first_match(tags, "http.status_code")
    if span_type is SpanType.CACHE:
        return first_match(tags, "redis.command", "cache.key")
    if span_type is SpanType.QUEUE:
        return first_match(tags, "kafka.topic", "rabbitmq.queue")
    return ""


def find_root_span(spans: Sequence[SpanDetail]) -> Optional[SpanDetail]:
    """First span without a parent; falls back to the first span in input order."""
    if not spans:
        return None
    return next((span for span in spans if span.is_root()), spans[0])


def build_execution_flow(spans: Iterable[SpanDetail]) -> List[ExecutionStep]:
    """Classify every span and order them by start time (ties keep input order)."""
    ordered = sorted(spans, key=lambda span: span.start_time)

    steps = []
    for order, span in enumerate(ordered, start=1):
        span_type = classify_span(span)
        steps.append(ExecutionStep(
            order=order,
            span_id=span.span_id,
            parent_span_id=span.parent_span_id or "",
            service=span.service,
            operation=build_operation_description(span, span_type),
            type=span_type,
            detail=extract_detail(span, span_type),
            duration_ms=span.duration // 1_000_000,
            is_error=span.is_error
        ))
    return steps


def extract_headers(tags: Dict[str, str]) -> Dict[str, str]:
    headers = {}
    for key, value in tags.items():
        lower_key = key.lower()
        if lower_key.startswith(HEADER_TAG_PREFIXES):
            headers[lower_key.rsplit(".", 1)[-1]] = value

    content_type = first_match(tags, "http.content_type")
    if content_type:
        headers["content-type"] = content_type
    user_agent = first_match(tags, "http.user_agent")
    if user_agent:
        headers["user-agent"] = user_agent

    return headers


def extract_entry_point(spans: Sequence[SpanDetail]) -> EntryPoint:
    root = find_root_span(spans)
    if root is None:
        return EntryPoint.empty()

    tags = root.tags
    return EntryPoint(
        method=first_match(tags, "http.method", "http.request.method"),
        path=first_match(tags, "http.url", "http.route", "http.path", "http.target"),
        headers=extract_headers(tags),
        body=first_match(tags, "http.request.body", "request.body")
    )


def filter_relevant_tags(tags: Mapping[str, str]) -> Dict[str, str]:
    return {key: value for key, value in tags.items() if is_relevant_data_key(key)}


def extract_error_context(spans: Iterable[SpanDetail]) -> ErrorContext:
    """Error context of the first error span in input order."""
    error_span = next((span for span in spans if span.is_error), None)
    if error_span is None:
        return ErrorContext.empty()

    return ErrorContext(
        service=error_span.service,
        operation=build_operation_description(error_span, classify_span(error_span)),
        exception_type=error_span.error_type,
        message=error_span.error_message,
        stack_trace=error_span.error_stack,
        location=StackTraceLocation.parse_first(error_span.error_stack),
        span_tags=filter_relevant_tags(error_span.tags)
    )


def extract_relevant_data(spans: Iterable[SpanDetail],
                          logs: Optional[Iterable[LogEntry]]) -> Dict[str, str]:
    """Business identifiers from span tags, then log attributes (last write wins)."""
    data: Dict[str, str] = {}

    for span in spans:
        for key, value in span.tags.items():
            if is_relevant_data_key(key):
                data[normalize_key(key)] = value

    for log in logs or ():
        for key, value in log.attributes.items():
            if is_relevant_data_key(key):
                data[normalize_key(key)] = value

    return data


def extract_involved_services(spans: Iterable[SpanDetail]) -> List[str]:
    return sorted({span.service for span in spans})


class TraceScenarioExtractor:
    """Builds a TraceScenario from a trace and its correlated logs."""

    def extract(self, trace: TraceDetail, logs: Optional[Sequence[LogEntry]] = None) -> TraceScenario:
        if trace is None:
            raise ValueError("trace must not be None")

        spans = list(trace.spans)
        if not spans:
            logger.debug("Trace has no spans", trace_id=trace.trace_id)
            return TraceScenario(trace_id=trace.trace_id)

        scenario = TraceScenario(
            trace_id=trace.trace_id,
            entry_point=extract_entry_point(spans),
            execution_flow=build_execution_flow(spans),
            error_context=extract_error_context(spans),
            relevant_data=extract_relevant_data(spans, logs),
            involved_services=extract_involved_services(spans)
        )

        logger.debug("Extracted trace scenario",
                     trace_id=trace.trace_id,
                     steps=scenario.step_count(),
                     has_error=scenario.has_error())
        return scenario
