"""Value types describing what happened during a traced request."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .stack_trace import StackTraceLocation


class SpanType(str, Enum):
    """Classification of an execution step."""
    HTTP = "http"
    DB = "db"
    CACHE = "cache"
    QUEUE = "queue"
    EXTERNAL = "external"
    INTERNAL = "internal"


@dataclass(frozen=True)
class EntryPoint:
    """The HTTP request that started the trace."""
    method: str = ""
    path: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""

    def __post_init__(self):
        object.__setattr__(self, "method", self.method or "")
        object.__setattr__(self, "path", self.path or "")
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers or {})))
        object.__setattr__(self, "body", self.body or "")

    @classmethod
    def empty(cls) -> "EntryPoint":
        return cls()

    def is_valid(self) -> bool:
        return bool(self.method.strip()) and bool(self.path.strip())

    def to_request_line(self) -> str:
        """e.g. ``POST /api/orders``; empty when the entry point is not valid."""
        if not self.is_valid():
            return ""
        return f"{self.method} {self.path}"

    def has_body(self) -> bool:
        return bool(self.body.strip())


@dataclass(frozen=True)
class ExecutionStep:
    """One span of the trace, classified and placed in chronological order."""
    order: int
    span_id: str
    parent_span_id: str
    service: str
    operation: str
    type: SpanType
    detail: str
    duration_ms: int
    is_error: bool

    def __post_init__(self):
        if self.order < 1:
            object.__setattr__(self, "order", 1)
        object.__setattr__(self, "span_id", self.span_id or "")
        object.__setattr__(self, "parent_span_id", self.parent_span_id or "")
        object.__setattr__(self, "service", self.service or "")
        object.__setattr__(self, "operation", self.operation or "")
        object.__setattr__(self, "type", SpanType(self.type) if self.type else SpanType.INTERNAL)
        object.__setattr__(self, "detail", self.detail or "")
        if self.duration_ms < 0:
            object.__setattr__(self, "duration_ms", 0)

    def is_root(self) -> bool:
        return not self.parent_span_id.strip() or self.parent_span_id == "0"

    def formatted_duration(self) -> str:
        if self.duration_ms < 1000:
            return f"{self.duration_ms}ms"
        return f"{self.duration_ms / 1000.0:.2f}s"

    def to_summary(self) -> str:
        marker = " [ERROR]" if self.is_error else ""
        return f"{self.order}. {self.service} → {self.operation} ({self.formatted_duration()}){marker}"


@dataclass(frozen=True)
class ErrorContext:
    """Where and why the first error of a trace happened."""
    service: str = ""
    operation: str = ""
    exception_type: str = ""
    message: str = ""
    stack_trace: str = ""
    location: Optional[StackTraceLocation] = None
    span_tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "service", self.service or "")
        object.__setattr__(self, "operation", self.operation or "")
        object.__setattr__(self, "exception_type", self.exception_type or "")
        object.__setattr__(self, "message", self.message or "")
        object.__setattr__(self, "stack_trace", self.stack_trace or "")
        object.__setattr__(self, "span_tags", MappingProxyType(dict(self.span_tags or {})))

    @classmethod
    def empty(cls) -> "ErrorContext":
        return cls()

    def has_error(self) -> bool:
        return bool(self.exception_type.strip()) or bool(self.message.strip())

    def has_location(self) -> bool:
        return self.location is not None and self.location.is_valid()

    def error_summary(self) -> str:
        if self.exception_type.strip() and self.message.strip():
            return f"{self.exception_type}: {self.message}"
        if self.message.strip():
            return self.message
        if self.exception_type.strip():
            return self.exception_type
        return "Unknown error"

    def simple_exception_type(self) -> str:
        if not self.exception_type.strip():
            return ""
        return self.exception_type.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class TraceScenario:
    """Everything needed to understand, and reproduce in a test, one traced request."""
    trace_id: str
    entry_point: EntryPoint = field(default_factory=EntryPoint)
    execution_flow: Tuple[ExecutionStep, ...] = ()
    error_context: ErrorContext = field(default_factory=ErrorContext)
    relevant_data: Mapping[str, str] = field(default_factory=dict)
    involved_services: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.trace_id is None or not self.trace_id.strip():
            raise ValueError("trace_id must not be blank")
        object.__setattr__(self, "entry_point", self.entry_point or EntryPoint.empty())
        object.__setattr__(self, "execution_flow", tuple(self.execution_flow or ()))
        object.__setattr__(self, "error_context", self.error_context or ErrorContext.empty())
        object.__setattr__(self, "relevant_data", MappingProxyType(dict(self.relevant_data or {})))
        object.__setattr__(self, "involved_services", tuple(self.involved_services or ()))

    def has_error(self) -> bool:
        return self.error_context.has_error()

    def has_entry_point(self) -> bool:
        return self.entry_point.is_valid()

    def error_step(self) -> Optional[ExecutionStep]:
        return next((step for step in self.execution_flow if step.is_error), None)

    def total_duration_ms(self) -> int:
        """Duration of the first root step, or 0."""
        return next((step.duration_ms for step in self.execution_flow if step.is_root()), 0)

    def step_count(self) -> int:
        return len(self.execution_flow)

    def suggested_test_scenario(self) -> Dict[str, str]:
        """Given/When/Then outline for a test reproducing the error.

        Returns an empty dict when the trace has no error.
        """
        if not self.has_error():
            return {}

        given = ""
        if self.relevant_data:
            given = "Data: " + ", ".join(f"{key}={value}" for key, value in self.relevant_data.items())

        when = ""
        if self.has_entry_point():
            when = f"Request: {self.entry_point.to_request_line()}"
            if self.entry_point.has_body():
                when += " with body"
        else:
            when = f"Calling {self.error_context.service}.{self.error_context.operation}"

        then = f"{self.error_context.simple_exception_type()} is thrown"
        if self.error_context.message.strip():
            then += f" with message '{self.error_context.message}'"

        return {"given": given, "when": when, "then": then}
