"""Stack trace parsing and framework-noise filtering.

Two grammars are recognised. Location parsing uses the strict
``at <class>.<method>(<File>:<line>)`` form so that only frames carrying a
source position are returned. Filtering uses a looser frame grammar that
also accepts ``Native Method`` / ``Unknown Source`` positions and synthetic
method names such as ``<init>``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)

LOCATION_PATTERN = re.compile(r"\s*at\s+([\w.$]+)\.([\w$]+)\(([\w.]+):(\d+)\)", re.ASCII)

STACK_FRAME_PATTERN = re.compile(r"^\s*at\s+([a-zA-Z0-9_$.]+)\.([a-zA-Z0-9_$<>]+)\((.+)\)\s*$")

CAUSED_BY_PATTERN = re.compile(r"^\s*Caused by:\s*(.+)$")

CONTINUATION_PATTERN = re.compile(r"^\s*\.\.\.")

STACK_TRACE_ATTRIBUTE = "stack_trace"

# First match wins; labels are what the omission summary reports.
FRAMEWORK_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("java.", "java"),
    ("javax.", "java"),
    ("jakarta.", "java"),
    ("sun.", "java"),
    ("jdk.", "java"),
    ("org.springframework.", "spring"),
    ("org.apache.", "apache"),
    ("org.hibernate.", "hibernate"),
    ("org.eclipse.", "orgeclipse"),
    ("com.zaxxer.", "comzaxxer"),
    ("com.fasterxml.", "jackson"),
    ("io.netty.", "ionetty"),
    ("reactor.", "reactor"),
    ("feign.", "feign"),
    ("datadog.trace.", "datadog"),
)


def _split_lines(text: str) -> List[str]:
    """Split on newlines, dropping trailing empty lines."""
    lines = text.split("\n")
    while lines and lines[-1] == "":
        lines.pop()
    return lines


@dataclass(frozen=True)
class StackTraceLocation:
    """Source position of a single stack frame."""
    class_name: str = ""
    method_name: str = ""
    file_name: str = ""
    line_number: int = 0

    def __post_init__(self):
        object.__setattr__(self, "class_name", self.class_name or "")
        object.__setattr__(self, "method_name", self.method_name or "")
        object.__setattr__(self, "file_name", self.file_name or "")
        if self.line_number < 0:
            object.__setattr__(self, "line_number", 0)

    @classmethod
    def parse(cls, line: Optional[str]) -> Optional["StackTraceLocation"]:
        """Parse one stack frame line, returning None if it has no source position."""
        if line is None or not line.strip():
            return None

        match = LOCATION_PATTERN.search(line)
        if match is None:
            return None
        return cls(
            class_name=match.group(1),
            method_name=match.group(2),
            file_name=match.group(3),
            line_number=int(match.group(4))
        )

    @classmethod
    def parse_first(cls, stack_trace: Optional[str]) -> Optional["StackTraceLocation"]:
        """Return the location of the first parseable frame in a full stack trace."""
        if stack_trace is None or not stack_trace.strip():
            return None

        for line in _split_lines(stack_trace):
            location = cls.parse(line)
            if location is not None:
                return location
        return None

    def is_valid(self) -> bool:
        return bool(self.file_name.strip()) and self.line_number > 0

    def to_navigation_string(self) -> str:
        """Editor-friendly position such as ``OrderService.java:142``."""
        if not self.is_valid():
            return ""
        return f"{self.file_name}:{self.line_number}"

    def simple_class_name(self) -> str:
        if not self.class_name.strip():
            return ""
        return self.class_name.rsplit(".", 1)[-1]


class StackTraceDetail(Enum):
    """How much of a stack trace to keep."""
    FULL = "full"
    RELEVANT = "relevant"
    MINIMAL = "minimal"

    @classmethod
    def parse(cls, value: Optional[str]) -> "StackTraceDetail":
        """Lenient parse; anything unrecognised means FULL."""
        if value is None:
            return cls.FULL
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.FULL


def framework_label(class_name: str) -> str:
    """Bucket a fully qualified class name into a framework label."""
    for prefix, label in FRAMEWORK_PREFIXES:
        if class_name.startswith(prefix):
            return label
    return "other"


def _format_omitted(count: int, frameworks: List[str]) -> str:
    names = f" ({', '.join(frameworks)})" if frameworks else ""
    return f"  ... {count} framework frames omitted{names}\n"


def _simplify_frame(line: str, class_name: str) -> str:
    simple_name = class_name.rsplit(".", 1)[-1]
    return line.replace(class_name + ".", simple_name + ".")


class StackTraceFilter:
    """Keeps application frames and collapses framework frames into summary lines."""

    def __init__(self, relevant_packages: Sequence[str]):
        if relevant_packages is None:
            raise ValueError("relevant_packages must not be None")
        self.relevant_packages: Tuple[str, ...] = tuple(relevant_packages)

    def filter(self, stack_trace: Optional[str], detail: StackTraceDetail) -> Optional[str]:
        """Filter a stack trace to the requested level of detail.

        Args:
            stack_trace: Raw multi-line stack trace; None and blank strings are
                returned untouched
            detail: FULL returns the input, MINIMAL keeps the exception header
                and "Caused by:" lines, RELEVANT keeps frames from the relevant
                packages and summarises the rest

        Returns:
            The filtered stack trace
        """
        if stack_trace is None or not stack_trace.strip():
            return stack_trace

        if detail is StackTraceDetail.FULL or not self.relevant_packages:
            return stack_trace

        if detail is StackTraceDetail.MINIMAL:
            return self._extract_minimal(stack_trace)

        return self._extract_relevant(stack_trace)

    def filter_attributes(self, attributes: Optional[Mapping[str, Any]],
                          detail: StackTraceDetail) -> Optional[Mapping[str, Any]]:
        """Filter the ``stack_trace`` entry of a log attribute map.

        Returns the same map when there is nothing textual to filter, otherwise
        a copy with only the stack trace replaced.
        """
        if attributes is None or STACK_TRACE_ATTRIBUTE not in attributes:
            return attributes

        stack_trace = attributes[STACK_TRACE_ATTRIBUTE]
        if not isinstance(stack_trace, str):
            return attributes

        result = dict(attributes)
        result[STACK_TRACE_ATTRIBUTE] = self.filter(stack_trace, detail)
        return result

    def _is_relevant(self, class_name: str) -> bool:
        return any(class_name.startswith(package) for package in self.relevant_packages)

    def _extract_minimal(self, stack_trace: str) -> str:
        lines = _split_lines(stack_trace)
        if not lines:
            return ""

        result = [lines[0]]
        result.extend(line for line in lines if CAUSED_BY_PATTERN.match(line))
        return "\n".join(result)

    def _extract_relevant(self, stack_trace: str) -> str:
        output: List[str] = []
        omitted_count = 0
        omitted_frameworks: List[str] = []

        def flush():
            nonlocal omitted_count
            if omitted_count > 0:
                output.append(_format_omitted(omitted_count, omitted_frameworks))
                omitted_count = 0
                omitted_frameworks.clear()

        for line in _split_lines(stack_trace):
            stripped = line.strip()
            if not stripped.startswith("at ") and not stripped.startswith("..."):
                flush()
                output.append(line + "\n")
                continue

            frame = STACK_FRAME_PATTERN.match(line)
            if frame is not None:
                class_name = frame.group(1)
                if self._is_relevant(class_name):
                    flush()
                    output.append(_simplify_frame(line, class_name) + "\n")
                else:
                    omitted_count += 1
                    label = framework_label(class_name)
                    if label not in omitted_frameworks:
                        omitted_frameworks.append(label)
            elif CONTINUATION_PATTERN.match(line):
                flush()
                output.append(line + "\n")
            else:
                # e.g. module-qualified frames like "at java.base/java.lang.Thread.run(...)"
                omitted_count += 1

        flush()

        filtered = "".join(output).rstrip()
        logger.debug("Filtered stack trace",
                     original_length=len(stack_trace),
                     filtered_length=len(filtered))
        return filtered
