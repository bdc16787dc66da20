"""Datadog API client module."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
import structlog

from ..config import DatadogConfig
from ..models import (
    LogEntry, LogQuery, LogSummary, SpanDetail, TraceDetail, TraceQuery,
    TraceSummary, format_instant,
)

logger = structlog.get_logger(__name__)

SPAN_SEARCH_PATH = "/api/v2/spans/events/search"
TRACE_DETAIL_PATH = "/api/v1/trace/"
LOG_SEARCH_PATH = "/api/v2/logs/events/search"

TRACE_LOG_LIMIT = 100


class DatadogApiError(Exception):
    """Exception raised when a Datadog API call fails."""

    def __init__(self, message: str, status_code: int = -1):
        super().__init__(message)
        self.status_code = status_code

    def is_authentication_error(self) -> bool:
        return self.status_code in (401, 403)

    def is_rate_limit_error(self) -> bool:
        return self.status_code == 429


class DatadogConnectionError(DatadogApiError):
    """Exception raised when the Datadog API cannot be reached."""
    pass


class DatadogAuthenticationError(DatadogApiError):
    """Exception raised when Datadog rejects the API or application key."""
    pass


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 or epoch-millis timestamp, falling back to now."""
    if value is None or not str(value).strip():
        return datetime.now(timezone.utc)

    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    except ValueError:
        pass

    try:
        return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


def _from_epoch_nanos(value: Optional[int]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp((int(value) // 1_000_000) / 1000.0, tz=timezone.utc)


def _flatten_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not attributes:
        return {}
    return {key: str(value) for key, value in attributes.items() if value is not None}


def _error_message(tags: Optional[Dict[str, Any]]) -> str:
    if not tags:
        return ""
    for key in ("error.message", "error.msg"):
        if tags.get(key) is not None:
            return str(tags[key])
    return ""


def _level(attributes: Dict[str, Any]) -> str:
    status = attributes.get("status")
    return str(status).upper() if status is not None else "INFO"


def map_span(span: Dict[str, Any]) -> SpanDetail:
    """Map one span of a ``/api/v1/trace`` response."""
    meta = span.get("meta") or {}
    return SpanDetail(
        span_id=str(span.get("span_id") or ""),
        parent_span_id=str(span["parent_id"]) if span.get("parent_id") is not None else None,
        service=span.get("service") or "",
        operation_name=span.get("name") or "",
        resource_name=span.get("resource") or "",
        start_time=_from_epoch_nanos(span.get("start")),
        duration=int(span.get("duration") or 0),
        is_error=bool(span.get("error")),
        error_message=_error_message(meta),
        error_type=meta.get("error.type", ""),
        error_stack=meta.get("error.stack", ""),
        tags={key: str(value) for key, value in meta.items() if value is not None}
    )


def map_trace_detail(payload: Optional[Dict[str, Any]], trace_id: str,
                     service: str, env: str) -> TraceDetail:
    """Map a ``/api/v1/trace`` response; missing data gives a trace without spans."""
    data = (payload or {}).get("data") or {}
    attributes = data.get("attributes")

    if not attributes:
        return TraceDetail(
            trace_id=trace_id,
            service=service,
            env=env,
            resource_name="",
            start_time=datetime.now(timezone.utc),
            duration=0
        )

    spans = [map_span(span) for span in attributes.get("spans") or []]
    return TraceDetail(
        trace_id=attributes.get("trace_id") or trace_id,
        service=attributes.get("service") or service,
        env=attributes.get("env") or env,
        resource_name=attributes.get("resource_name") or "",
        start_time=_from_epoch_nanos(attributes.get("start")),
        duration=int(attributes.get("duration") or 0),
        spans=spans
    )


def map_trace_summaries(payload: Optional[Dict[str, Any]]) -> List[TraceSummary]:
    """Map a span search response into listing rows."""
    summaries = []
    for event in (payload or {}).get("data") or []:
        attributes = event.get("attributes")
        if not attributes:
            continue
        summaries.append(TraceSummary(
            trace_id=attributes.get("trace_id") or "",
            service=attributes.get("service") or "",
            resource_name=attributes.get("resource_name") or "",
            error_message=_error_message(attributes.get("attributes")),
            timestamp=parse_timestamp(attributes.get("timestamp")),
            duration=int(attributes.get("duration") or 0)
        ))
    return summaries


def map_log_entries(payload: Optional[Dict[str, Any]]) -> List[LogEntry]:
    """Map a log search response into trace-correlated log entries."""
    entries = []
    for event in (payload or {}).get("data") or []:
        attributes = event.get("attributes")
        if not attributes:
            continue
        entries.append(LogEntry(
            timestamp=parse_timestamp(attributes.get("timestamp")),
            level=_level(attributes),
            message=attributes.get("message") or "",
            attributes=_flatten_attributes(attributes.get("attributes"))
        ))
    return entries


def map_log_summaries(payload: Optional[Dict[str, Any]]) -> List[LogSummary]:
    """Map a log search response into flat log rows."""
    summaries = []
    for event in (payload or {}).get("data") or []:
        attributes = event.get("attributes")
        if not attributes:
            continue
        nested = attributes.get("attributes") or {}
        trace_id = nested.get("trace_id")
        if trace_id is None:
            trace_id = nested.get("dd.trace_id")
        summaries.append(LogSummary(
            timestamp=parse_timestamp(attributes.get("timestamp")),
            level=_level(attributes),
            service=attributes.get("service") or "",
            message=attributes.get("message") or "",
            host=attributes.get("host") or "",
            trace_id=str(trace_id) if trace_id is not None else None
        ))
    return summaries


class DatadogClient:
    """Datadog API client for span, trace and log queries."""

    def __init__(self, config: DatadogConfig, base_url: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        """Initialize Datadog client.

        Args:
            config: Datadog configuration
            base_url: Optional override of the API base URL
            session: Optional pre-built HTTP session
        """
        self.config = config
        self.base_url = (base_url or config.base_url).rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "DD-API-KEY": config.api_key,
            "DD-APPLICATION-KEY": config.app_key,
        })

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()

    def search_error_traces(self, query: TraceQuery) -> List[TraceSummary]:
        """Search error spans matching the query.

        Args:
            query: Service, environment and time window to search

        Returns:
            List[TraceSummary]: Newest error traces first

        Raises:
            DatadogApiError: If the API call fails
        """
        body = {
            "data": {
                "type": "search_request",
                "attributes": {
                    "filter": {
                        "from": format_instant(query.from_time),
                        "to": format_instant(query.to_time),
                        "query": query.to_datadog_query(),
                    },
                    "page": {"limit": query.limit},
                    "sort": "-timestamp",
                },
            }
        }

        logger.info("Searching error traces",
                    service=query.service, env=query.env, limit=query.limit)
        payload = self._request("POST", SPAN_SEARCH_PATH, json_body=body)
        summaries = map_trace_summaries(payload)
        logger.info("Error trace search completed", count=len(summaries))
        return summaries

    def get_trace_detail(self, trace_id: str, service: str, env: Optional[str]) -> TraceDetail:
        """Fetch all spans of a trace.

        Args:
            trace_id: Trace identifier
            service: Service used when the response does not name one
            env: Environment used when the response does not name one

        Returns:
            TraceDetail: The trace, with no spans when Datadog returns no data

        Raises:
            DatadogApiError: If the API call fails
        """
        if not trace_id:
            raise ValueError("trace_id must not be blank")

        logger.info("Fetching trace detail", trace_id=trace_id, service=service)
        payload = self._request("GET", TRACE_DETAIL_PATH + trace_id)
        return map_trace_detail(payload, trace_id, service, env or "")

    def search_logs_for_trace(self, trace_id: str, query: TraceQuery) -> List[LogEntry]:
        """Fetch logs correlated with a trace within the query window.

        Raises:
            DatadogApiError: If the API call fails
        """
        body = {
            "filter": {
                "from": format_instant(query.from_time),
                "to": format_instant(query.to_time),
                "query": f"trace_id:{trace_id}",
            },
            "page": {"limit": TRACE_LOG_LIMIT},
            "sort": "timestamp",
        }

        logger.info("Searching logs for trace", trace_id=trace_id)
        payload = self._request("POST", LOG_SEARCH_PATH, json_body=body)
        return map_log_entries(payload)

    def search_logs(self, query: LogQuery) -> List[LogSummary]:
        """Search logs by service, environment, level and free text.

        Raises:
            DatadogApiError: If the API call fails
        """
        body = {
            "filter": {
                "from": format_instant(query.from_time),
                "to": format_instant(query.to_time),
                "query": query.to_datadog_query(),
            },
            "page": {"limit": query.limit},
            "sort": "timestamp",
        }

        logger.info("Searching logs", service=query.service, env=query.env, limit=query.limit)
        payload = self._request("POST", LOG_SEARCH_PATH, json_body=body)
        summaries = map_log_summaries(payload)
        logger.info("Log search completed", count=len(summaries))
        return summaries

    def _request(self, method: str, path: str,
                 json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = self.base_url + path
        try:
            response = self._session.request(
                method,
                url,
                json=json_body,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl
            )
        except requests.RequestException as e:
            logger.error("Datadog request failed", url=url, error=str(e))
            raise DatadogConnectionError(f"Failed to execute request: {e}")

        if response.status_code in (401, 403):
            raise DatadogAuthenticationError(
                f"Authentication failed: {response.text}", response.status_code
            )
        if response.status_code >= 400:
            raise DatadogApiError(
                f"API request failed: {response.text}", response.status_code
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise DatadogApiError(f"Failed to parse response: {e}", response.status_code)
