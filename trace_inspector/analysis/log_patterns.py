"""Log message normalisation and grouping of near-duplicate log lines."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..models import LogSummary, format_instant

logger = structlog.get_logger(__name__)

MAX_PATTERN_LENGTH = 80

EMPTY_PATTERN = "[empty]"

# Applied in order: timestamps, UUIDs, IPs and hex blobs must be consumed
# before the generic digit-run rule sees them.
PATTERN_SUBSTITUTIONS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}[.\d]*Z?", re.ASCII), "<TS>"),
    (re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"), "<UUID>"),
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b", re.ASCII), "<IP>"),
    (re.compile(r"\b[0-9a-fA-F]{8,}\b", re.ASCII), "<HEX>"),
    (re.compile(r"\b\d{4,}\b", re.ASCII), "<ID>"),
)


def extract_pattern(message: Optional[str]) -> str:
    """Replace volatile tokens in a log message with placeholders.

    Args:
        message: Raw log message

    Returns:
        str: Normalised pattern, at most 80 characters, or "[empty]"
    """
    if message is None or not message.strip():
        return EMPTY_PATTERN

    pattern = message
    for regex, placeholder in PATTERN_SUBSTITUTIONS:
        pattern = regex.sub(placeholder, pattern)

    if len(pattern) > MAX_PATTERN_LENGTH:
        pattern = pattern[:MAX_PATTERN_LENGTH - 3] + "..."

    return pattern.strip()


@dataclass(frozen=True)
class LogGroupSummary:
    """Aggregate of log lines sharing a level and normalised pattern."""
    pattern: str
    level: str
    service: str
    count: int
    first_occurrence: datetime
    last_occurrence: datetime
    sample_message: str

    def __post_init__(self):
        for name in ("pattern", "level", "service", "first_occurrence",
                     "last_occurrence", "sample_message"):
            if getattr(self, name) is None:
                raise ValueError(f"{name} must not be None")
        if self.count <= 0:
            raise ValueError("count must be positive")

    def time_range(self) -> str:
        return f"{format_instant(self.first_occurrence)} - {format_instant(self.last_occurrence)}"


class _GroupAccumulator:

    def __init__(self, pattern: str, level: str, service: str, sample_message: str):
        self.pattern = pattern
        self.level = level
        self.service = service
        self.sample_message = sample_message
        self.count = 0
        self.first: Optional[datetime] = None
        self.last: Optional[datetime] = None

    def add(self, log: LogSummary) -> None:
        self.count += 1
        if self.first is None or log.timestamp < self.first:
            self.first = log.timestamp
        if self.last is None or log.timestamp > self.last:
            self.last = log.timestamp

    def to_summary(self) -> LogGroupSummary:
        return LogGroupSummary(
            pattern=self.pattern,
            level=self.level,
            service=self.service,
            count=self.count,
            first_occurrence=self.first,
            last_occurrence=self.last,
            sample_message=self.sample_message
        )


def summarize_logs(logs: Iterable[LogSummary]) -> List[LogGroupSummary]:
    """Group logs by (level, pattern), most frequent group first."""
    groups: Dict[Tuple[str, str], _GroupAccumulator] = {}

    for log in logs:
        pattern = extract_pattern(log.message)
        key = (log.level, pattern)
        if key not in groups:
            groups[key] = _GroupAccumulator(pattern, log.level, log.service, log.message)
        groups[key].add(log)

    summaries = sorted((group.to_summary() for group in groups.values()),
                       key=lambda summary: summary.count, reverse=True)

    logger.debug("Summarized logs", groups=len(summaries))
    return summaries
