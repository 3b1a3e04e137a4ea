"""Conversions between remote read/write messages and in-memory series."""

from __future__ import annotations

import bisect
import functools
from dataclasses import dataclass
from typing import IO, Iterable, Iterator, Mapping

from .labels import (
    METRIC_NAME,
    Label,
    Matcher,
    MatchType,
    MetricSample,
    compare,
    is_valid_label_name,
    is_valid_label_value,
    is_valid_metric_name,
)
from .prompb import (
    LabelMatcher,
    LabelMatcherType,
    Query,
    QueryResult,
    ReadHints,
    ReadRequest,
    ReadResponse,
    Sample,
    TimeSeries,
    WriteRequest,
)
from .snappy import compress, decompress

DECODE_READ_LIMIT = 32 * 1024 * 1024
"""Maximum size in bytes of a compressed read request body."""

_TO_PROTO_TYPE = {
    MatchType.EQUAL: LabelMatcherType.EQ,
    MatchType.NOT_EQUAL: LabelMatcherType.NEQ,
    MatchType.REGEXP: LabelMatcherType.RE,
    MatchType.NOT_REGEXP: LabelMatcherType.NRE,
}
_FROM_PROTO_TYPE = {proto: kind for kind, proto in _TO_PROTO_TYPE.items()}


class HTTPError(Exception):
    """An error that carries the HTTP status it should be reported with."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        return self.message


@dataclass
class SelectParams:
    """Hints about the data a select call will be used for."""

    start: int = 0
    end: int = 0
    step: int = 0
    func: str = ""


class ConcreteSeries:
    """A series held fully in memory."""

    def __init__(self, labels: Iterable[Label], samples: Iterable[Sample] = ()) -> None:
        self._labels = tuple(labels)
        self.samples = list(samples)

    @property
    def labels(self) -> list[Label]:
        """A fresh, name-sorted copy of the series' labels."""
        return sorted(self._labels, key=lambda label: label.name)

    def iterator(self) -> ConcreteSeriesIterator:
        """Return a new iterator over the samples."""
        return ConcreteSeriesIterator(self)

    def __repr__(self) -> str:
        return f"ConcreteSeries(labels={list(self._labels)!r}, samples={self.samples!r})"


class ConcreteSeriesIterator:
    """Iterates the samples of a ConcreteSeries as (timestamp, value) pairs."""

    def __init__(self, series: ConcreteSeries) -> None:
        self._samples = series.samples
        self._cur = -1

    def __iter__(self) -> ConcreteSeriesIterator:
        return self

    def __next__(self) -> tuple[int, float]:
        self._cur = min(self._cur + 1, len(self._samples))
        if self._cur >= len(self._samples):
            raise StopIteration
        return self.at()

    def seek(self, t: int) -> bool:
        """Move to the first sample at or after ``t``; return whether one exists."""
        self._cur = bisect.bisect_left(self._samples, t, key=lambda s: s.timestamp)
        return self._cur < len(self._samples)

    def at(self) -> tuple[int, float]:
        """Return the current (timestamp, value) pair."""
        if not 0 <= self._cur < len(self._samples):
            raise IndexError("iterator is not positioned on a sample")
        sample = self._samples[self._cur]
        return sample.timestamp, sample.value


class ConcreteSeriesSet:
    """An in-memory collection of series, iterated in order."""

    def __init__(self, series: Iterable = ()) -> None:
        self.series = list(series)

    def __iter__(self) -> Iterator:
        return iter(self.series)

    def __len__(self) -> int:
        return len(self.series)


def decode_read_request(body: bytes | IO[bytes]) -> ReadRequest:
    """Decode a snappy-compressed read request from bytes or a binary stream."""
    if hasattr(body, "read"):
        compressed = body.read(DECODE_READ_LIMIT)
    else:
        compressed = bytes(body)[:DECODE_READ_LIMIT]
    return ReadRequest.from_bytes(decompress(compressed))


def encode_read_response(response: ReadResponse) -> tuple[dict[str, str], bytes]:
    """Return the headers and snappy-compressed body for a read response."""
    headers = {"Content-Type": "application/x-protobuf", "Content-Encoding": "snappy"}
    return headers, compress(response.to_bytes())


def to_write_request(samples: Iterable[MetricSample]) -> WriteRequest:
    """Build a write request holding one single-sample series per sample."""
    return WriteRequest(
        timeseries=[
            TimeSeries(
                labels=metric_to_label_protos(s.metric),
                samples=[Sample(value=float(s.value), timestamp=int(s.timestamp))],
            )
            for s in samples
        ]
    )


def to_query(
    start: int, end: int, matchers: Iterable[Matcher], params: SelectParams | None = None
) -> Query:
    """Build a remote read query."""
    proto_matchers = []
    for m in matchers:
        if m.type not in _TO_PROTO_TYPE:
            raise ValueError("invalid matcher type")
        proto_matchers.append(LabelMatcher(_TO_PROTO_TYPE[m.type], m.name, m.value))
    hints = None
    if params is not None:
        hints = ReadHints(params.step, params.func, params.start, params.end)
    return Query(start, end, proto_matchers, hints)


def from_query(query: Query) -> tuple[int, int, list[Matcher], SelectParams | None]:
    """Unpack a remote read query into start, end, matchers and select params."""
    matchers = []
    for m in query.matchers:
        try:
            kind = _FROM_PROTO_TYPE[LabelMatcherType(m.type)]
        except (KeyError, ValueError):
            raise ValueError("invalid matcher type") from None
        matchers.append(Matcher(kind, m.name, m.value))
    params = None
    if query.hints is not None:
        h = query.hints
        params = SelectParams(start=h.start_ms, end=h.end_ms, step=h.step_ms, func=h.func)
    return query.start_timestamp_ms, query.end_timestamp_ms, matchers, params


def to_query_result(series_set: Iterable, sample_limit: int = 0) -> QueryResult:
    """Collect a series set into a query result, enforcing a positive sample limit."""
    result = QueryResult()
    count = 0
    for series in series_set:
        samples = []
        for timestamp, value in series.iterator():
            count += 1
            if 0 < sample_limit < count:
                raise HTTPError(f"exceeded sample limit ({sample_limit})", 400)
            samples.append(Sample(value=value, timestamp=timestamp))
        result.timeseries.append(TimeSeries(labels=list(series.labels), samples=samples))
    return result


def from_query_result(result: QueryResult) -> ConcreteSeriesSet:
    """Turn a query result into a series set sorted by labels; invalid labels raise."""
    series = []
    for ts in result.timeseries:
        labels = label_protos_to_labels(ts.labels)
        validate_labels_and_metric_name(labels)
        series.append(ConcreteSeries(labels, ts.samples))
    series.sort(key=functools.cmp_to_key(lambda a, b: compare(a.labels, b.labels)))
    return ConcreteSeriesSet(series)


def validate_labels_and_metric_name(labels: Iterable[Label]) -> None:
    """Raise ValueError on an invalid metric name, label name or label value."""
    for label in labels:
        if label.name == METRIC_NAME and not is_valid_metric_name(label.value):
            raise ValueError(f"invalid metric name: {label.value}")
        if not is_valid_label_name(label.name):
            raise ValueError(f"invalid label name: {label.name}")
        if not is_valid_label_value(label.value):
            raise ValueError(f"invalid label value: {label.value}")


def metric_to_label_protos(metric: Mapping[str, str]) -> list[Label]:
    """Return the metric's labels sorted by name."""
    return sorted((Label(str(k), str(v)) for k, v in metric.items()), key=lambda l: l.name)


def label_protos_to_metric(pairs: Iterable[Label]) -> dict[str, str]:
    """Return a metric mapping from label pairs."""
    return {label.name: label.value for label in pairs}


def label_protos_to_labels(pairs: Iterable[Label]) -> list[Label]:
    """Return label pairs sorted by name."""
    return sorted((Label(p.name, p.value) for p in pairs), key=lambda l: l.name)


def labels_to_metric(labels: Iterable[Label]) -> dict[str, str]:
    """Return a metric mapping from a label set."""
    return {label.name: label.value for label in labels}