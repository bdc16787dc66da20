"""Trace and log value types returned by the Datadog APIs.

All types are frozen dataclasses. Validation happens at construction time and
raises ValueError; nested maps are copied into read-only views and lists into
tuples so instances can be shared freely between tool calls.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import List, Mapping, Optional, Set, Tuple

DEFAULT_TRACE_LIMIT = 20
MAX_TRACE_LIMIT = 100
DEFAULT_LOG_LIMIT = 100
MAX_LOG_LIMIT = 1000


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def format_duration_ns(duration: int) -> str:
    """Format a nanosecond duration as milliseconds or seconds."""
    ms = duration / 1_000_000.0
    if ms < 1000:
        return f"{ms:.2f}ms"
    return f"{ms / 1000:.2f}s"


def format_instant(timestamp: datetime) -> str:
    """Format a timestamp as an ISO-8601 UTC instant (e.g. 2024-01-15T10:00:00Z)."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    text = timestamp.astimezone(timezone.utc).isoformat()
    return text.replace("+00:00", "Z")


@dataclass(frozen=True)
class SpanDetail:
    """A single unit of work within a distributed trace."""
    span_id: str
    parent_span_id: Optional[str]
    service: str
    operation_name: str
    resource_name: str
    start_time: datetime
    duration: int
    is_error: bool = False
    error_message: str = ""
    error_type: str = ""
    error_stack: str = ""
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if _is_blank(self.span_id):
            raise ValueError("span_id must not be blank")
        if _is_blank(self.service):
            raise ValueError("service must not be blank")
        if self.start_time is None:
            raise ValueError("start_time must not be None")
        if self.duration < 0:
            raise ValueError("duration must be non-negative")

        object.__setattr__(self, "operation_name", self.operation_name or "")
        object.__setattr__(self, "resource_name", self.resource_name or "")
        object.__setattr__(self, "error_message", self.error_message or "")
        object.__setattr__(self, "error_type", self.error_type or "")
        object.__setattr__(self, "error_stack", self.error_stack or "")
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags or {})))

    def is_root(self) -> bool:
        """A span is a root when it has no parent or its parent id is "0"."""
        return _is_blank(self.parent_span_id) or self.parent_span_id == "0"

    def formatted_duration(self) -> str:
        return format_duration_ns(self.duration)

    def error_summary(self) -> str:
        """Concise "Type: message" summary, or "" when the span is not an error."""
        if not self.is_error:
            return ""
        if self.error_type.strip() and self.error_message.strip():
            return f"{self.error_type}: {self.error_message}"
        if self.error_message.strip():
            return self.error_message
        if self.error_type.strip():
            return self.error_type
        return "Unknown error"


@dataclass(frozen=True)
class TraceDetail:
    """A full distributed trace with all its spans."""
    trace_id: str
    service: str
    env: str
    resource_name: str
    start_time: datetime
    duration: int
    spans: Tuple[SpanDetail, ...] = ()

    def __post_init__(self):
        if _is_blank(self.trace_id):
            raise ValueError("trace_id must not be blank")
        if _is_blank(self.service):
            raise ValueError("service must not be blank")
        if self.start_time is None:
            raise ValueError("start_time must not be None")
        if self.duration < 0:
            raise ValueError("duration must be non-negative")

        object.__setattr__(self, "env", self.env or "")
        object.__setattr__(self, "resource_name", self.resource_name or "")
        object.__setattr__(self, "spans", tuple(self.spans or ()))

    def involved_services(self) -> Set[str]:
        return {span.service for span in self.spans}

    def error_spans(self) -> List[SpanDetail]:
        return [span for span in self.spans if span.is_error]

    def root_span(self) -> Optional[SpanDetail]:
        return next((span for span in self.spans if span.is_root()), None)

    def has_errors(self) -> bool:
        return any(span.is_error for span in self.spans)

    def span_count(self) -> int:
        return len(self.spans)

    def formatted_duration(self) -> str:
        return format_duration_ns(self.duration)


@dataclass(frozen=True)
class LogEntry:
    """A log line correlated with a trace."""
    timestamp: datetime
    level: str = "INFO"
    message: str = ""
    attributes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.timestamp is None:
            raise ValueError("timestamp must not be None")
        object.__setattr__(self, "level", self.level if self.level is not None else "INFO")
        object.__setattr__(self, "message", self.message or "")
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes or {})))


@dataclass(frozen=True)
class TraceSummary:
    """Lightweight trace row used when listing error traces."""
    trace_id: str
    service: str
    resource_name: str
    error_message: str
    timestamp: datetime
    duration: int

    def __post_init__(self):
        if _is_blank(self.trace_id):
            raise ValueError("trace_id must not be blank")
        if _is_blank(self.service):
            raise ValueError("service must not be blank")
        if self.timestamp is None:
            raise ValueError("timestamp must not be None")
        if self.duration < 0:
            raise ValueError("duration must be non-negative")
        object.__setattr__(self, "resource_name", self.resource_name or "")
        object.__setattr__(self, "error_message", self.error_message or "")

    def formatted_duration(self) -> str:
        return format_duration_ns(self.duration)


@dataclass(frozen=True)
class LogSummary:
    """Flat log row returned by a log search."""
    timestamp: datetime
    level: str
    service: str
    message: str
    host: str
    trace_id: Optional[str] = None

    def __post_init__(self):
        for name in ("timestamp", "level", "service", "message", "host"):
            if getattr(self, name) is None:
                raise ValueError(f"{name} must not be None")

    def formatted_timestamp(self) -> str:
        return format_instant(self.timestamp)

    def has_trace(self) -> bool:
        return not _is_blank(self.trace_id)

    def truncated_message(self, max_length: int) -> str:
        if len(self.message) <= max_length:
            return self.message
        return self.message[:max_length - 3] + "..."


def _validate_window(service: str, env: str, from_time: datetime, to_time: datetime) -> None:
    if _is_blank(service):
        raise ValueError("service must not be blank")
    if _is_blank(env):
        raise ValueError("env must not be blank")
    if from_time is None or to_time is None:
        raise ValueError("from and to must not be None")
    if not to_time > from_time:
        raise ValueError("to must be after from")


@dataclass(frozen=True)
class TraceQuery:
    """Parameters for searching error traces."""
    service: str
    env: str
    from_time: datetime
    to_time: datetime
    limit: int = DEFAULT_TRACE_LIMIT

    def __post_init__(self):
        _validate_window(self.service, self.env, self.from_time, self.to_time)
        if self.limit <= 0 or self.limit > MAX_TRACE_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_TRACE_LIMIT}")

    def to_datadog_query(self) -> str:
        return f"service:{self.service} env:{self.env} status:error"


@dataclass(frozen=True)
class LogQuery:
    """Parameters for searching logs."""
    service: str
    env: str
    from_time: datetime
    to_time: datetime
    query: Optional[str] = None
    level: Optional[str] = None
    limit: int = DEFAULT_LOG_LIMIT

    def __post_init__(self):
        _validate_window(self.service, self.env, self.from_time, self.to_time)
        if self.limit <= 0 or self.limit > MAX_LOG_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LOG_LIMIT}")

    def to_datadog_query(self) -> str:
        parts = [f"service:{self.service}", f"env:{self.env}"]
        if not _is_blank(self.level):
            parts.append(f"status:{self.level.lower()}")
        if not _is_blank(self.query):
            parts.append(self.query)
        return " ".join(parts)
