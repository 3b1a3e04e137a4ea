"""Remote read/write protocol messages and their protobuf wire encoding."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import Iterator

from .labels import Label
from .snappy import _uvarint

_MASK64 = (1 << 64) - 1


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    result = shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _MASK64, pos
        shift += 7
        if shift >= 70:
            raise ValueError("varint overflows 64 bits")


def _fields(data: bytes) -> Iterator[tuple[int, int, object]]:
    """Yield (field number, wire type, raw value) for every field in ``data``."""
    pos = 0
    while pos < len(data):
        key, pos = _read_uvarint(data, pos)
        number, wire = key >> 3, key & 7
        if number == 0:
            raise ValueError("illegal field number 0")
        if wire == 0:
            value, pos = _read_uvarint(data, pos)
        elif wire in (1, 2, 5):
            if wire == 2:
                width, pos = _read_uvarint(data, pos)
            else:
                width = 8 if wire == 1 else 4
            if pos + width > len(data):
                raise ValueError("truncated field")
            value, pos = data[pos:pos + width], pos + width
        else:
            raise ValueError(f"unsupported wire type {wire}")
        yield number, wire, value


def _wire(kind: object) -> int:
    if kind == "int64" or (isinstance(kind, type) and issubclass(kind, enum.Enum)):
        return 0
    return 1 if kind == "double" else 2


def _encode_field(number: int, kind: object, value: object) -> bytes:
    wire = _wire(kind)
    if wire == 1:
        return _uvarint(number << 3 | 1) + struct.pack("<d", value) if value != 0 else b""
    if wire == 0:
        value = int(value)
        return _uvarint(number << 3) + _uvarint(value & _MASK64) if value else b""
    if kind == "string":
        payload = value.encode("utf-8", "surrogateescape")
        if not payload:
            return b""
    elif value is None:
        return b""
    else:
        payload = _encode(value)
    return _uvarint(number << 3 | 2) + _uvarint(len(payload)) + payload


def _encode(message: object) -> bytes:
    out = bytearray()
    for number, (attr, kind, repeated) in _SCHEMAS[type(message)].items():
        value = getattr(message, attr)
        for item in value if repeated else [value]:
            out += _encode_field(number, kind, item)
    return bytes(out)


def _decode_value(kind: object, raw: object) -> object:
    if kind == "double":
        return struct.unpack("<d", raw)[0]
    if kind == "string":
        return bytes(raw).decode("utf-8", "surrogateescape")
    if _wire(kind) == 0:
        signed = raw - (1 << 64) if raw >= 1 << 63 else raw
        return signed if kind == "int64" else kind(signed)
    return _decode(kind, raw)


def _default(kind: object) -> object:
    if isinstance(kind, type):
        return kind(0) if issubclass(kind, enum.Enum) else None
    return {"int64": 0, "double": 0.0, "string": ""}[kind]


def _decode(cls: type, data: bytes) -> object:
    schema = _SCHEMAS[cls]
    values: dict[str, object] = {attr: [] for attr, _, rep in schema.values() if rep}
    for number, wire, raw in _fields(bytes(data)):
        if number not in schema:
            continue
        attr, kind, repeated = schema[number]
        if wire != _wire(kind):
            raise ValueError(f"field {number}: wrong wire type {wire}")
        value = _decode_value(kind, raw)
        if repeated:
            values[attr].append(value)
        else:
            values[attr] = value
    for attr, kind, repeated in schema.values():
        if not repeated:
            values.setdefault(attr, _default(kind))
    return cls(**values)


@dataclass
class Sample:
    """A value at a millisecond timestamp."""

    value: float = 0.0
    timestamp: int = 0


@dataclass
class TimeSeries:
    """A label set with its samples."""

    labels: list[Label] = field(default_factory=list)
    samples: list[Sample] = field(default_factory=list)


class LabelMatcherType(enum.IntEnum):
    """Wire values of the matcher kinds."""

    EQ = 0
    NEQ = 1
    RE = 2
    NRE = 3


@dataclass
class LabelMatcher:
    """A label matcher as carried in a remote read query."""

    type: LabelMatcherType = LabelMatcherType.EQ
    name: str = ""
    value: str = ""


@dataclass
class ReadHints:
    """Optional hints about how the queried data will be used."""

    step_ms: int = 0
    func: str = ""
    start_ms: int = 0
    end_ms: int = 0


@dataclass
class Query:
    """A remote read query over a time range."""

    start_timestamp_ms: int = 0
    end_timestamp_ms: int = 0
    matchers: list[LabelMatcher] = field(default_factory=list)
    hints: ReadHints | None = None


@dataclass
class QueryResult:
    """The series answering one query."""

    timeseries: list[TimeSeries] = field(default_factory=list)


@dataclass
class WriteRequest:
    """A batch of series sent to a remote write endpoint."""

    timeseries: list[TimeSeries] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> WriteRequest:
        """Parse protobuf wire format; raises ValueError on malformed input."""
        return _decode(cls, data)


@dataclass
class ReadRequest:
    """A set of queries sent to a remote read endpoint."""

    queries: list[Query] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> ReadRequest:
        """Parse protobuf wire format; raises ValueError on malformed input."""
        return _decode(cls, data)


@dataclass
class ReadResponse:
    """The results of a read request, one per query."""

    results: list[QueryResult] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> ReadResponse:
        """Parse protobuf wire format; raises ValueError on malformed input."""
        return _decode(cls, data)


_SCHEMAS: dict[type, dict[int, tuple[str, object, bool]]] = {
    Label: {1: ("name", "string", False), 2: ("value", "string", False)},
    Sample: {1: ("value", "double", False), 2: ("timestamp", "int64", False)},
    TimeSeries: {1: ("labels", Label, True), 2: ("samples", Sample, True)},
    LabelMatcher: {
        1: ("type", LabelMatcherType, False),
        2: ("name", "string", False),
        3: ("value", "string", False),
    },
    ReadHints: {
        1: ("step_ms", "int64", False),
        2: ("func", "string", False),
        3: ("start_ms", "int64", False),
        4: ("end_ms", "int64", False),
    },
    Query: {
        1: ("start_timestamp_ms", "int64", False),
        2: ("end_timestamp_ms", "int64", False),
        3: ("matchers", LabelMatcher, True),
        4: ("hints", ReadHints, False),
    },
    QueryResult: {1: ("timeseries", TimeSeries, True)},
    WriteRequest: {1: ("timeseries", TimeSeries, True)},
    ReadRequest: {1: ("queries", Query, True)},
    ReadResponse: {1: ("results", QueryResult, True)},
}