"""Unit tests for the Datadog API client."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from trace_inspector.config import DatadogConfig
from trace_inspector.datadog.client import (
    DatadogApiError, DatadogAuthenticationError, DatadogClient, DatadogConnectionError,
    map_log_entries, map_log_summaries, map_span, map_trace_detail, map_trace_summaries,
    parse_timestamp,
)
from trace_inspector.models import LogQuery, TraceQuery

FROM = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
TO = datetime(2024, 1, 15, 11, 0, 0, tzinfo=timezone.utc)

# 2024-01-15T10:00:00Z in nanoseconds
START_NANOS = 1705312800 * 1_000_000_000


def make_response(status_code=200, payload=None, text="", content=b"{}"):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.content = content
    response.json.return_value = payload if payload is not None else {}
    return response


class TestParseTimestamp:
    """Test timestamp parsing."""

    def test_iso(self):
        """Test ISO-8601 with a Z suffix."""
        assert parse_timestamp("2024-01-15T10:00:00Z") == FROM

    def test_iso_with_fraction(self):
        """Test ISO-8601 with milliseconds."""
        assert parse_timestamp("2024-01-15T10:00:00.250Z") == FROM.replace(microsecond=250000)

    def test_epoch_millis(self):
        """Test epoch milliseconds."""
        assert parse_timestamp(1705312800000) == FROM
        assert parse_timestamp("1705312800000") == FROM

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_fallback_to_now(self, value):
        """Test that unparseable values give the current time."""
        before = datetime.now(timezone.utc)

        parsed = parse_timestamp(value)

        assert before <= parsed <= datetime.now(timezone.utc)


class TestMappers:
    """Test response mapping."""

    def test_map_span(self):
        """Test mapping of a raw span."""
        span = map_span({
            "span_id": 22,
            "parent_id": 11,
            "service": "inventory",
            "name": "inventory.check",
            "resource": "InventoryService.check",
            "start": START_NANOS,
            "duration": 40_000_000,
            "error": 1,
            "meta": {
                "error.msg": "Not enough stock",
                "error.type": "InsufficientStockException",
                "error.stack": "at a.B.c(B.java:1)",
                "product_id": "sku-1",
            },
        })

        assert span.span_id == "22"
        assert span.parent_span_id == "11"
        assert span.start_time == FROM
        assert span.duration == 40_000_000
        assert span.is_error
        assert span.error_message == "Not enough stock"
        assert span.error_type == "InsufficientStockException"
        assert span.error_stack == "at a.B.c(B.java:1)"
        assert span.tags["product_id"] == "sku-1"

    def test_map_span_error_message_precedence(self):
        """Test that error.message wins over error.msg."""
        span = map_span({"span_id": "1", "service": "s",
                         "meta": {"error.message": "primary", "error.msg": "secondary"}})

        assert span.error_message == "primary"
        assert span.parent_span_id is None
        assert not span.is_error

    def test_map_trace_detail(self):
        """Test mapping of a full trace."""
        payload = {"data": {"attributes": {
            "trace_id": "abc",
            "service": "orders-api",
            "env": "prod",
            "resource_name": "POST /api/orders",
            "start": START_NANOS,
            "duration": 150_000_000,
            "spans": [
                {"span_id": "1", "service": "orders-api"},
                {"span_id": "2", "parent_id": "1", "service": "inventory", "error": True},
            ],
        }}}

        trace = map_trace_detail(payload, "abc", "fallback", "staging")

        assert trace.service == "orders-api"
        assert trace.env == "prod"
        assert trace.span_count() == 2
        assert trace.has_errors()
        assert trace.start_time == FROM

    def test_map_trace_detail_without_data(self):
        """Test that a response without data gives a trace with no spans."""
        trace = map_trace_detail({}, "abc", "orders-api", "prod")

        assert trace.trace_id == "abc"
        assert trace.service == "orders-api"
        assert trace.env == "prod"
        assert trace.span_count() == 0

    def test_map_trace_summaries(self):
        """Test mapping of a span search response."""
        payload = {"data": [
            {"attributes": {
                "trace_id": "t-1",
                "service": "orders-api",
                "resource_name": "POST /api/orders",
                "timestamp": "2024-01-15T10:00:00Z",
                "duration": 45_000_000,
                "attributes": {"error.message": "boom"},
            }},
            {"id": "skipped-without-attributes"},
        ]}

        summaries = map_trace_summaries(payload)

        assert len(summaries) == 1
        assert summaries[0].trace_id == "t-1"
        assert summaries[0].error_message == "boom"
        assert summaries[0].timestamp == FROM
        assert map_trace_summaries(None) == []

    def test_map_log_entries(self):
        """Test mapping of trace-correlated logs."""
        payload = {"data": [{"attributes": {
            "timestamp": "2024-01-15T10:00:00Z",
            "status": "warn",
            "message": "Low stock",
            "attributes": {"quantity": 5, "skipped": None},
        }}, {"attributes": {"timestamp": "2024-01-15T10:00:00Z"}}]}

        entries = map_log_entries(payload)

        assert entries[0].level == "WARN"
        assert entries[0].attributes == {"quantity": "5"}
        assert entries[1].level == "INFO"
        assert entries[1].message == ""

    def test_map_log_summaries_trace_id(self):
        """Test trace id lookup in nested attributes."""
        payload = {"data": [
            {"attributes": {"timestamp": "2024-01-15T10:00:00Z", "status": "error",
                            "service": "orders-api", "message": "m", "host": "h",
                            "attributes": {"trace_id": 123}}},
            {"attributes": {"timestamp": "2024-01-15T10:00:00Z", "service": "orders-api",
                            "attributes": {"dd.trace_id": "456"}}},
            {"attributes": {"timestamp": "2024-01-15T10:00:00Z"}},
        ]}

        summaries = map_log_summaries(payload)

        assert [summary.trace_id for summary in summaries] == ["123", "456", None]
        assert summaries[0].level == "ERROR"
        assert summaries[2].host == ""


class TestDatadogApiError:
    """Test DatadogApiError."""

    def test_classification(self):
        """Test error classification helpers."""
        assert DatadogApiError("x", 401).is_authentication_error()
        assert DatadogApiError("x", 403).is_authentication_error()
        assert DatadogApiError("x", 429).is_rate_limit_error()
        assert not DatadogApiError("x").is_authentication_error()
        assert DatadogApiError("x").status_code == -1

    def test_subclasses(self):
        """Test the exception hierarchy."""
        assert issubclass(DatadogConnectionError, DatadogApiError)
        assert issubclass(DatadogAuthenticationError, DatadogApiError)


class TestDatadogClient:
    """Test DatadogClient."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = DatadogConfig(api_key="api-key", app_key="app-key", site="datadoghq.eu")
        self.session = Mock()
        self.session.headers = {}
        self.client = DatadogClient(self.config, session=self.session)
        self.trace_query = TraceQuery("orders-api", "prod", FROM, TO, limit=5)

    def test_session_headers(self):
        """Test authentication headers."""
        assert self.session.headers == {
            "Content-Type": "application/json",
            "DD-API-KEY": "api-key",
            "DD-APPLICATION-KEY": "app-key",
        }
        assert self.client.base_url == "https://api.datadoghq.eu"

    def test_base_url_override(self):
        """Test overriding the base URL."""
        session = Mock()
        session.headers = {}

        client = DatadogClient(self.config, base_url="http://localhost:8080/", session=session)

        assert client.base_url == "http://localhost:8080"

    def test_search_error_traces_request(self):
        """Test the span search request body."""
        self.session.request.return_value = make_response(payload={"data": []})

        assert self.client.search_error_traces(self.trace_query) == []

        args, kwargs = self.session.request.call_args
        assert args == ("POST", "https://api.datadoghq.eu/api/v2/spans/events/search")
        assert kwargs["json"] == {"data": {
            "type": "search_request",
            "attributes": {
                "filter": {
                    "from": "2024-01-15T10:00:00Z",
                    "to": "2024-01-15T11:00:00Z",
                    "query": "service:orders-api env:prod status:error",
                },
                "page": {"limit": 5},
                "sort": "-timestamp",
            },
        }}
        assert kwargs["timeout"] == 30
        assert kwargs["verify"] is True

    def test_get_trace_detail_request(self):
        """Test the trace detail request."""
        self.session.request.return_value = make_response(payload={})

        trace = self.client.get_trace_detail("abc123", "orders-api", None)

        args, kwargs = self.session.request.call_args
        assert args == ("GET", "https://api.datadoghq.eu/api/v1/trace/abc123")
        assert kwargs["json"] is None
        assert trace.span_count() == 0
        assert trace.env == ""

    def test_get_trace_detail_requires_id(self):
        """Test trace id validation."""
        with pytest.raises(ValueError):
            self.client.get_trace_detail("", "orders-api", "prod")

    def test_search_logs_for_trace_request(self):
        """Test the correlated log search body."""
        self.session.request.return_value = make_response(payload={"data": []})

        self.client.search_logs_for_trace("abc123", self.trace_query)

        args, kwargs = self.session.request.call_args
        assert args[1].endswith("/api/v2/logs/events/search")
        assert kwargs["json"] == {
            "filter": {
                "from": "2024-01-15T10:00:00Z",
                "to": "2024-01-15T11:00:00Z",
                "query": "trace_id:abc123",
            },
            "page": {"limit": 100},
            "sort": "timestamp",
        }

    def test_search_logs_request(self):
        """Test the log search body."""
        self.session.request.return_value = make_response(payload={"data": []})
        query = LogQuery("orders-api", "prod", FROM, TO, query="timeout", level="ERROR", limit=50)

        self.client.search_logs(query)

        _, kwargs = self.session.request.call_args
        assert kwargs["json"]["filter"]["query"] == "service:orders-api env:prod status:error timeout"
        assert kwargs["json"]["page"] == {"limit": 50}

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_authentication_errors(self, status_code):
        """Test that rejected keys raise DatadogAuthenticationError."""
        self.session.request.return_value = make_response(status_code, text="Forbidden")

        with pytest.raises(DatadogAuthenticationError) as exc_info:
            self.client.search_error_traces(self.trace_query)

        assert exc_info.value.status_code == status_code
        assert exc_info.value.is_authentication_error()

    @pytest.mark.parametrize("status_code", [400, 429, 500])
    def test_http_errors(self, status_code):
        """Test that other error statuses raise DatadogApiError."""
        self.session.request.return_value = make_response(status_code, text="nope")

        with pytest.raises(DatadogApiError) as exc_info:
            self.client.search_logs_for_trace("abc", self.trace_query)

        assert exc_info.value.status_code == status_code
        assert "nope" in str(exc_info.value)

    def test_connection_error(self):
        """Test that transport failures raise DatadogConnectionError."""
        self.session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(DatadogConnectionError):
            self.client.get_trace_detail("abc", "orders-api", "prod")

    def test_empty_body(self):
        """Test that an empty body maps to an empty result."""
        self.session.request.return_value = make_response(content=b"")

        assert self.client.search_error_traces(self.trace_query) == []

    def test_invalid_json(self):
        """Test that an unparseable body raises DatadogApiError."""
        response = make_response()
        response.json.side_effect = ValueError("bad json")
        self.session.request.return_value = response

        with pytest.raises(DatadogApiError, match="Failed to parse response"):
            self.client.search_error_traces(self.trace_query)

    def test_close(self):
        """Test closing the session."""
        self.client.close()

        self.session.close.assert_called_once()
