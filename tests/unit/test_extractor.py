"""Unit tests for trace scenario extraction."""

from datetime import datetime, timedelta, timezone

import pytest

from trace_inspector.analysis.extractor import (
    TraceScenarioExtractor, build_execution_flow, build_operation_description, classify_span,
    extract_detail, extract_entry_point, extract_error_context, extract_involved_services,
    extract_relevant_data, find_root_span,
)
from trace_inspector.analysis.scenario import SpanType
from trace_inspector.models import LogEntry, SpanDetail, TraceDetail

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)

STOCK_STACK = "at com.example.OrderService.validateStock(OrderService.java:142)"


def make_span(span_id="1", parent=None, service="orders-api", tags=None, offset_ms=0,
              duration_ms=10, **kwargs):
    return SpanDetail(
        span_id=span_id,
        parent_span_id=parent,
        service=service,
        operation_name=kwargs.pop("operation_name", "servlet.request"),
        resource_name=kwargs.pop("resource_name", ""),
        start_time=BASE_TIME + timedelta(milliseconds=offset_ms),
        duration=duration_ms * 1_000_000,
        tags=tags or {},
        **kwargs
    )


def make_trace(spans, trace_id="trace-1"):
    return TraceDetail(
        trace_id=trace_id,
        service="orders-api",
        env="prod",
        resource_name="POST /api/orders",
        start_time=BASE_TIME,
        duration=150_000_000,
        spans=spans
    )


def order_trace():
    root = make_span(
        "1", None,
        tags={"http.method": "POST", "http.url": "/api/orders", "http.status_code": "500",
              "http.request.headers.x-request-id": "req-9", "user.id": "u-7"},
        duration_ms=150
    )
    child = make_span(
        "2", "1", service="inventory-service", offset_ms=20, duration_ms=40,
        operation_name="inventory.check", resource_name="InventoryService.check",
        is_error=True,
        error_type="InsufficientStockException",
        error_message="Not enough stock: requested 5, available 2",
        error_stack=STOCK_STACK,
        tags={"product_id": "sku-1", "quantity": "5"}
    )
    return make_trace([root, child])


class TestClassifySpan:
    """Test span classification."""

    @pytest.mark.parametrize("tags,expected", [
        ({"db.statement": "SELECT 1"}, SpanType.DB),
        ({"http.method": "GET"}, SpanType.HTTP),
        ({"http.method": "GET", "db.statement": "SELECT 1"}, SpanType.HTTP),
        ({"redis.command": "GET"}, SpanType.CACHE),
        ({"cache.type": "caffeine"}, SpanType.CACHE),
        ({"kafka.topic": "orders"}, SpanType.QUEUE),
        ({"db.type": "postgres", "kafka.topic": "orders"}, SpanType.DB),
        ({"span.kind": "CLIENT"}, SpanType.EXTERNAL),
        ({"span.kind": "server"}, SpanType.INTERNAL),
        ({}, SpanType.INTERNAL),
    ])
    def test_classification(self, tags, expected):
        """Test tag based classification and precedence."""
        assert classify_span(make_span(tags=tags)) is expected

    def test_prefix_match_on_header_tags(self):
        """Test that http.request.headers.* keys count as HTTP tags."""
        span = make_span(tags={"http.request.headers.accept": "json"})

        assert classify_span(span) is SpanType.HTTP


class TestOperationDescription:
    """Test operation descriptions."""

    def test_http_method_and_route(self):
        """Test that the route is preferred over the URL."""
        span = make_span(tags={"http.method": "GET", "http.route": "/orders/{id}",
                               "http.url": "https://shop/orders/7"})

        assert build_operation_description(span, SpanType.HTTP) == "GET /orders/{id}"

    def test_http_without_path_falls_back_to_resource(self):
        """Test fallback when HTTP tags are incomplete."""
        span = make_span(tags={"http.method": "GET"}, resource_name="OrderController.list")

        assert build_operation_description(span, SpanType.HTTP) == "OrderController.list"

    def test_db_operation(self):
        """Test that db.operation wins for database spans."""
        span = make_span(tags={"db.operation": "INSERT", "db.statement": "INSERT INTO orders"})

        assert build_operation_description(span, SpanType.DB) == "INSERT"

    def test_db_statement_truncated(self):
        """Test long statements are cut to 80 characters."""
        statement = "SELECT " + "column_name, " * 20 + "FROM orders"
        span = make_span(tags={"db.statement": statement})

        description = build_operation_description(span, SpanType.DB)

        assert len(description) == 80
        assert description.endswith("...")

    def test_fallback_order(self):
        """Test resource, then operation, then service."""
        assert build_operation_description(
            make_span(resource_name="res", operation_name="op"), SpanType.INTERNAL) == "res"
        assert build_operation_description(
            make_span(resource_name="", operation_name="op"), SpanType.INTERNAL) == "op"
        assert build_operation_description(
            make_span(resource_name=" ", operation_name=""), SpanType.INTERNAL) == "orders-api"


class TestExtractDetail:
    """Test type specific details."""

    def test_details(self):
        """Test detail per span type."""
        assert extract_detail(make_span(tags={"sql.query": "SELECT 1"}), SpanType.DB) == "SELECT 1"
        assert extract_detail(make_span(tags={"http.status_code": "404"}), SpanType.HTTP) == "404"
        assert extract_detail(make_span(tags={"cache.key": "k1"}), SpanType.CACHE) == "k1"
        assert extract_detail(make_span(tags={"rabbitmq.queue": "q"}), SpanType.QUEUE) == "q"
        assert extract_detail(make_span(tags={"foo": "bar"}), SpanType.INTERNAL) == ""

    def test_blank_values_are_absent(self):
        """Test that blank tag values are skipped."""
        span = make_span(tags={"db.statement": "  ", "sql.query": "SELECT 2"})

        assert extract_detail(span, SpanType.DB) == "SELECT 2"


class TestExecutionFlow:
    """Test execution flow building."""

    def test_sorted_by_start_time(self):
        """Test chronological ordering and numbering."""
        spans = [
            make_span("c", "a", offset_ms=30),
            make_span("a", None, offset_ms=0, duration_ms=100),
            make_span("b", "a", offset_ms=10, duration_ms=3),
        ]

        steps = build_execution_flow(spans)

        assert [step.span_id for step in steps] == ["a", "b", "c"]
        assert [step.order for step in steps] == [1, 2, 3]
        assert steps[0].duration_ms == 100
        assert steps[0].parent_span_id == ""
        assert steps[1].parent_span_id == "a"

    def test_ties_keep_input_order(self):
        """Test that equal start times keep input order."""
        spans = [make_span("x", "r"), make_span("y", "r")]

        assert [step.span_id for step in build_execution_flow(spans)] == ["x", "y"]

    def test_sub_millisecond_duration(self):
        """Test integer millisecond durations."""
        span = SpanDetail("1", None, "svc", "op", "res", BASE_TIME, 999_999)

        assert build_execution_flow([span])[0].duration_ms == 0


class TestRootSpan:
    """Test root span selection."""

    def test_first_parentless_span(self):
        """Test that a span with parent "0" is a root."""
        spans = [make_span("2", "1"), make_span("1", "0")]

        assert find_root_span(spans).span_id == "1"

    def test_fallback_to_first_span(self):
        """Test fallback when no span is a root."""
        spans = [make_span("2", "1", offset_ms=50), make_span("3", "1", offset_ms=0)]

        assert find_root_span(spans).span_id == "2"

    def test_no_spans(self):
        """Test an empty span list."""
        assert find_root_span([]) is None


class TestEntryPoint:
    """Test entry point extraction."""

    def test_headers_and_body(self):
        """Test header and body extraction from the root span."""
        root = make_span(tags={
            "http.method": "POST",
            "http.target": "/api/orders",
            "http.request.headers.X-Tenant": "acme",
            "http.header.accept": "application/json",
            "http.content_type": "application/json",
            "http.user_agent": "curl/8.0",
            "request.body": "{\"qty\": 5}",
        })

        entry_point = extract_entry_point([root])

        assert entry_point.to_request_line() == "POST /api/orders"
        assert entry_point.headers == {
            "x-tenant": "acme",
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": "curl/8.0",
        }
        assert entry_point.body == "{\"qty\": 5}"
        assert entry_point.has_body()

    def test_non_http_root(self):
        """Test that a root without HTTP tags gives an invalid entry point."""
        entry_point = extract_entry_point([make_span(tags={"kafka.topic": "orders"})])

        assert not entry_point.is_valid()
        assert entry_point.to_request_line() == ""


class TestErrorContext:
    """Test error context extraction."""

    def test_first_error_in_input_order(self):
        """Test that input order decides the error span."""
        late = make_span("2", "1", offset_ms=90, is_error=True, error_type="LateError")
        early = make_span("3", "1", offset_ms=10, is_error=True, error_type="EarlyError")

        context = extract_error_context([make_span("1"), late, early])

        assert context.exception_type == "LateError"

    def test_no_error(self):
        """Test that traces without errors give an empty context."""
        context = extract_error_context([make_span("1")])

        assert not context.has_error()
        assert context.error_summary() == "Unknown error"

    def test_span_tags_filtered(self):
        """Test that only business tags are kept."""
        span = make_span(is_error=True, error_message="boom",
                         tags={"order_id": "o-1", "thread.name": "main", "http.status_code": "500"})

        context = extract_error_context([span])

        assert context.span_tags == {"order_id": "o-1", "http.status_code": "500"}


class TestRelevantData:
    """Test business data extraction."""

    def test_normalized_keys_and_log_override(self):
        """Test key normalisation and that logs override spans."""
        spans = [make_span(tags={"user.id": "u-1", "Customer_ID": "c-1", "order_id": "o-1",
                                 "peer.hostname": "db"})]
        logs = [LogEntry(timestamp=BASE_TIME, attributes={"order_id": "o-2", "logger": "x"})]

        data = extract_relevant_data(spans, logs)

        assert data == {"user_id": "u-1", "customer_id": "c-1", "order_id": "o-2"}

    def test_without_logs(self):
        """Test that logs are optional."""
        assert extract_relevant_data([make_span(tags={"amount": "10"})], None) == {"amount": "10"}

    def test_involved_services_sorted(self):
        """Test distinct sorted services."""
        spans = [make_span(service="b"), make_span(service="a"), make_span(service="b")]

        assert extract_involved_services(spans) == ["a", "b"]


class TestTraceScenarioExtractor:
    """Test full scenario extraction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extractor = TraceScenarioExtractor()

    def test_order_scenario(self):
        """Test the end-to-end extraction of a failed order."""
        scenario = self.extractor.extract(order_trace(), [])

        assert scenario.has_entry_point()
        assert scenario.entry_point.to_request_line() == "POST /api/orders"
        assert scenario.entry_point.headers == {"x-request-id": "req-9"}
        assert scenario.error_context.simple_exception_type() == "InsufficientStockException"
        assert scenario.error_context.location.line_number == 142
        assert scenario.error_context.operation == "InventoryService.check"
        assert scenario.step_count() == 2
        assert scenario.total_duration_ms() == 150
        assert scenario.involved_services == ("inventory-service", "orders-api")
        assert scenario.error_step().span_id == "2"

        then = scenario.suggested_test_scenario()["then"]
        assert "InsufficientStockException" in then
        assert "Not enough stock: requested 5, available 2" in then

    def test_order_scenario_given_and_when(self):
        """Test the Given and When parts of the suggested test."""
        suggestion = self.extractor.extract(order_trace()).suggested_test_scenario()

        assert suggestion["when"] == "Request: POST /api/orders"
        assert suggestion["given"].startswith("Data: ")
        given_items = set(suggestion["given"][len("Data: "):].split(", "))
        assert given_items == {"user_id=u-7", "product_id=sku-1", "quantity=5",
                               "http_status_code=500"}

    def test_empty_trace(self):
        """Test that a trace without spans gives an empty scenario."""
        scenario = self.extractor.extract(make_trace([], trace_id="empty-trace"))

        assert scenario.trace_id == "empty-trace"
        assert scenario.step_count() == 0
        assert not scenario.has_entry_point()
        assert not scenario.has_error()
        assert scenario.suggested_test_scenario() == {}
        assert scenario.total_duration_ms() == 0

    def test_none_trace(self):
        """Test that a missing trace is rejected."""
        with pytest.raises(ValueError):
            self.extractor.extract(None)
