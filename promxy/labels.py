"""Label sets, label matchers and name validation for time series."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Sequence

METRIC_NAME = "__name__"

_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")

_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\v": "\\v",
}


def _quote(text: str) -> str:
    """Return ``text`` as a double-quoted, escaped string literal."""
    parts = ['"']
    for ch in text:
        code = ord(ch)
        if ch in _ESCAPES:
            parts.append(_ESCAPES[ch])
        elif 0xDC80 <= code <= 0xDCFF:
            # A raw byte carried through surrogateescape decoding.
            parts.append(f"\\x{code - 0xDC00:02x}")
        elif not ch.isprintable():
            if code < 0x80:
                parts.append(f"\\x{code:02x}")
            elif code < 0x10000:
                parts.append(f"\\u{code:04x}")
            else:
                parts.append(f"\\U{code:08x}")
        else:
            parts.append(ch)
    parts.append('"')
    return "".join(parts)


@dataclass(frozen=True, order=True)
class Label:
    """A single name/value pair of a label set."""

    name: str
    value: str


class MatchType(enum.Enum):
    """The comparison a matcher applies to a label value."""

    EQUAL = "="
    NOT_EQUAL = "!="
    REGEXP = "=~"
    NOT_REGEXP = "!~"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Matcher:
    """Matches the value of one label; regular expressions are fully anchored."""

    type: MatchType
    name: str
    value: str
    _pattern: re.Pattern | None = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.type in (MatchType.REGEXP, MatchType.NOT_REGEXP):
            object.__setattr__(self, "_pattern", re.compile(f"(?:{self.value})"))

    def matches(self, value: str) -> bool:
        """Return whether ``value`` satisfies this matcher."""
        if self.type is MatchType.EQUAL:
            return value == self.value
        if self.type is MatchType.NOT_EQUAL:
            return value != self.value
        matched = self._pattern.fullmatch(value) is not None
        return matched if self.type is MatchType.REGEXP else not matched

    def __str__(self) -> str:
        return f"{self.name}{self.type}{_quote(self.value)}"


@dataclass
class MetricSample:
    """One sample of a metric: its labels, value and millisecond timestamp."""

    metric: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: int = 0


def from_strings(*args: str) -> tuple[Label, ...]:
    """Build a label set, sorted by name, from alternating names and values."""
    if len(args) % 2:
        raise ValueError("invalid number of strings")
    pairs = (Label(name, value) for name, value in zip(args[::2], args[1::2]))
    return tuple(sorted(pairs, key=lambda label: label.name))


def compare(a: Sequence[Label], b: Sequence[Label]) -> int:
    """Compare two label sets: negative, zero or positive like a three-way compare."""
    for left, right in zip(a, b):
        if left.name != right.name:
            return -1 if left.name < right.name else 1
        if left.value != right.value:
            return -1 if left.value < right.value else 1
    return len(a) - len(b)


def labels_to_string(labels: Sequence[Label]) -> str:
    """Render a label set as ``{name="value", ...}``."""
    body = ", ".join(f"{label.name}={_quote(label.value)}" for label in labels)
    return "{" + body + "}"


def is_valid_metric_name(name: str) -> bool:
    """Return whether ``name`` is a valid metric name."""
    return bool(name) and _METRIC_NAME_RE.fullmatch(name) is not None


def is_valid_label_name(name: str) -> bool:
    """Return whether ``name`` is a valid label name."""
    return bool(name) and _LABEL_NAME_RE.fullmatch(name) is not None


def is_valid_label_value(value: str | bytes) -> bool:
    """Return whether ``value`` is valid UTF-8 text."""
    try:
        if isinstance(value, (bytes, bytearray)):
            bytes(value).decode("utf-8")
        else:
            value.encode("utf-8")
    except UnicodeError:
        return False
    return True