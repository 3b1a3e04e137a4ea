"""Queriers that read series from remote endpoints, and filters around them."""

from __future__ import annotations

import contextlib
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Protocol, Sequence

from .client import Client
from .codec import ConcreteSeriesSet, SelectParams, from_query_result, to_query
from .labels import Label, Matcher, MatchType, is_valid_label_name


class Querier(Protocol):
    """Selects series; every call returns its result with a list of warnings."""

    def select(self, params: SelectParams | None, *matchers: Matcher) -> tuple[Any, list[str]]: ...

    def label_values(self, name: str) -> tuple[list[str], list[str]]: ...

    def label_names(self) -> tuple[list[str], list[str]]: ...

    def close(self) -> None: ...


Queryable = Callable[[int, int], Querier]
"""Builds a querier over the time range ``(mint, maxt)``."""

_in_flight: Counter[str] = Counter()
_in_flight_lock = threading.Lock()


@contextlib.contextmanager
def _track_in_flight(name: str) -> Iterator[None]:
    with _in_flight_lock:
        _in_flight[name] += 1
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight[name] -= 1


def _check_label_name(name: str) -> None:
    if not is_valid_label_name(name):
        raise ValueError(f"invalid label name: {name}")


@dataclass
class NoopQuerier:
    """A querier that never returns any series."""

    closed: bool = field(default=False, init=False, compare=False)

    def select(self, params, *args):
        """Return an empty series set."""
        return ConcreteSeriesSet(), []

    def label_values(self, name):
        """Return no values for a valid label name."""
        _check_label_name(name)
        return [], []

    def label_names(self):
        """Return no names."""
        return [], []

    def close(self):
        """Mark the querier as closed."""
        self.closed = True


@dataclass
class RemoteQuerier:
    """Reads series for a time range from a remote read client."""

    client: Client
    mint: int
    maxt: int
    closed: bool = field(default=False, init=False, compare=False)

    def select(self, params, *args):
        """Query the remote endpoint with the given matchers."""
        query = to_query(self.mint, self.maxt, args, params)
        with _track_in_flight(self.client.name):
            result = self.client.read(query)
        return from_query_result(result), []

    def label_values(self, name):
        """Label values are not read remotely; the name is still validated."""
        _check_label_name(name)
        return [], []

    def label_names(self):
        """Label names are not read remotely."""
        return [], []

    def close(self):
        """Mark the querier as closed."""
        self.closed = True


@dataclass
class _WrappingQuerier:
    querier: Querier

    def select(self, params, *args):
        return self.querier.select(params, *args)

    def label_values(self, name):
        return self.querier.label_values(name)

    def label_names(self):
        return self.querier.label_names()

    def close(self):
        return self.querier.close()


@dataclass
class SeriesFilter:
    """A series with some label names hidden."""

    series: Any
    to_filter: Mapping[str, str]

    @property
    def labels(self) -> list[Label]:
        """The wrapped series' labels, less the filtered names."""
        return [label for label in self.series.labels if label.name not in self.to_filter]

    def iterator(self):
        """Iterate the wrapped series' samples."""
        return self.series.iterator()


@dataclass
class SeriesSetFilter:
    """A series set whose series have some label names hidden."""

    series_set: Iterable[Any]
    to_filter: Mapping[str, str]
    querier: Querier | None = None

    def __iter__(self) -> Iterator[SeriesFilter]:
        for series in self.series_set:
            yield SeriesFilter(series, self.to_filter)


@dataclass
class ExternalLabelsQuerier(_WrappingQuerier):
    """Ensures selected series match the configured external labels."""

    external_labels: Mapping[str, str]

    def select(self, params, *args):
        """Add external label matchers, select, then strip the added labels."""
        matchers, added = self.add_external_labels(args)
        series_set, warnings = self.querier.select(params, *matchers)
        return SeriesSetFilter(series_set, added), warnings

    def add_external_labels(
        self, matchers: Sequence[Matcher]
    ) -> tuple[list[Matcher], dict[str, str]]:
        """Add an equality matcher per external label not already matched on."""
        added = dict(self.external_labels)
        for matcher in matchers:
            added.pop(matcher.name, None)
        result = list(matchers)
        result.extend(Matcher(MatchType.EQUAL, name, value) for name, value in added.items())
        return result, added


@dataclass
class RequiredMatchersQuerier(_WrappingQuerier):
    """Only selects when every required equality matcher is present."""

    required_matchers: list[Matcher] = field(default_factory=list)

    def select(self, params, *args):
        """Return nothing unless all required matchers appear among ``args``."""
        missing = list(self.required_matchers)
        for matcher in args:
            for i, required in enumerate(missing):
                if (
                    matcher.type is MatchType.EQUAL
                    and matcher.name == required.name
                    and matcher.value == required.value
                ):
                    del missing[i]
                    break
            if not missing:
                break
        if missing:
            return ConcreteSeriesSet(), []
        return self.querier.select(params, *args)


def queryable_client(client: Client) -> Queryable:
    """Return a queryable that reads through ``client``."""
    with _in_flight_lock:
        _in_flight.setdefault(client.name, 0)

    def make(mint: int, maxt: int) -> Querier:
        return RemoteQuerier(client, mint, maxt)

    return make


def external_labels_handler(
    next_queryable: Queryable, external_labels: Mapping[str, str]
) -> Queryable:
    """Wrap queriers so selects honour the external labels."""
    labels = dict(external_labels)

    def make(mint: int, maxt: int) -> Querier:
        return ExternalLabelsQuerier(next_queryable(mint, maxt), labels)

    return make


def prefer_local_storage_filter(
    next_queryable: Queryable, start_time_callback: Callable[[], int]
) -> Queryable:
    """Skip or shorten ranges that local storage can answer itself."""

    def make(mint: int, maxt: int) -> Querier:
        local_start = start_time_callback()
        if mint > local_start:
            return NoopQuerier()
        return next_queryable(mint, min(maxt, local_start))

    return make


def required_matchers_filter(next_queryable: Queryable, required: Iterable[Matcher]) -> Queryable:
    """Wrap queriers so they only select when the required matchers are given."""
    required = list(required)

    def make(mint: int, maxt: int) -> Querier:
        return RequiredMatchersQuerier(next_queryable(mint, maxt), list(required))

    return make