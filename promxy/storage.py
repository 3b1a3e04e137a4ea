"""Remote storage: fan-out of writes to queues and merged reads from remote endpoints."""

from __future__ import annotations

import functools
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from .client import Client, ClientConfig
from .codec import ConcreteSeries, ConcreteSeriesSet, labels_to_metric
from .labels import Label, Matcher, MatchType, MetricSample, compare
from .prompb import Sample
from .queue_manager import QueueConfig, QueueManager, Relabel
from .read import (
    Querier,
    Queryable,
    external_labels_handler,
    prefer_local_storage_filter,
    queryable_client,
    required_matchers_filter,
)

LATEST_TIMESTAMP = (1 << 63) - 1
"""The latest representable millisecond timestamp."""


def _zero_start_time() -> int:
    return 0


@dataclass
class RemoteWriteConfig:
    """One remote write endpoint; timeouts are in seconds."""

    url: str
    remote_timeout: float = 30.0
    headers: Mapping[str, str] = field(default_factory=dict)
    insecure_skip_verify: bool = False
    queue_config: QueueConfig = field(default_factory=QueueConfig)
    write_relabel: Relabel | None = None


@dataclass
class RemoteReadConfig:
    """One remote read endpoint; timeouts are in seconds."""

    url: str
    remote_timeout: float = 60.0
    headers: Mapping[str, str] = field(default_factory=dict)
    insecure_skip_verify: bool = False
    required_matchers: Mapping[str, str] = field(default_factory=dict)
    read_recent: bool = False


@dataclass
class RemoteConfig:
    """The remote read and write part of a configuration."""

    external_labels: Mapping[str, str] = field(default_factory=dict)
    remote_write_configs: list[RemoteWriteConfig] = field(default_factory=list)
    remote_read_configs: list[RemoteReadConfig] = field(default_factory=list)


@dataclass
class MergeQuerier:
    """Combines several queriers; series with equal labels are merged by timestamp."""

    queriers: list[Querier] = field(default_factory=list)

    def select(self, params, *args):
        """Select from every querier and merge the series sets."""
        warnings: list[str] = []
        merged: dict[tuple[Label, ...], dict[int, float]] = {}
        for querier in self.queriers:
            series_set, found = querier.select(params, *args)
            warnings.extend(found)
            for series in series_set:
                samples = merged.setdefault(tuple(sorted(series.labels)), {})
                for timestamp, value in series.iterator():
                    samples.setdefault(timestamp, value)
        result = [
            ConcreteSeries(
                key,
                [Sample(value=value, timestamp=ts) for ts, value in sorted(samples.items())],
            )
            for key, samples in merged.items()
        ]
        result.sort(key=functools.cmp_to_key(lambda a, b: compare(a.labels, b.labels)))
        return ConcreteSeriesSet(result), warnings

    def label_values(self, name):
        """Return the sorted union of the label's values over all queriers."""
        return self._union(lambda querier: querier.label_values(name))

    def label_names(self):
        """Return the sorted union of label names over all queriers."""
        return self._union(lambda querier: querier.label_names())

    def close(self):
        """Close every querier, raising the first failure after all were tried."""
        first_error: Exception | None = None
        for querier in self.queriers:
            try:
                querier.close()
            except Exception as err:  # noqa: BLE001 - reported after closing the rest
                if first_error is None:
                    first_error = err
        if first_error is not None:
            raise first_error

    def _union(self, call: Callable[[Querier], Any]) -> tuple[list[str], list[str]]:
        values: set[str] = set()
        warnings: list[str] = []
        for querier in self.queriers:
            found, found_warnings = call(querier)
            values.update(found)
            warnings.extend(found_warnings)
        return sorted(values), warnings


def _labels_to_equality_matchers(labels: Mapping[str, str]) -> list[Matcher]:
    return [Matcher(MatchType.EQUAL, str(name), str(value)) for name, value in labels.items()]


class Storage:
    """All remote read and write endpoints; also serves as its own appender."""

    def __init__(
        self,
        start_time_callback: Callable[[], int] = _zero_start_time,
        flush_deadline: float = 60.0,
        *,
        client_factory: Callable[[int, ClientConfig], Any] = Client,
    ) -> None:
        self._start_time_callback = start_time_callback
        self.flush_deadline = flush_deadline
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._queues: list[QueueManager] = []
        self._queryables: list[Queryable] = []

    def apply_config(self, config: RemoteConfig) -> None:
        """Replace the write queues and read endpoints with those of ``config``."""
        with self._lock:
            new_queues = []
            for index, write_conf in enumerate(config.remote_write_configs):
                client = self._client_factory(
                    index,
                    ClientConfig(
                        url=write_conf.url,
                        timeout=write_conf.remote_timeout,
                        headers=dict(write_conf.headers),
                        insecure_skip_verify=write_conf.insecure_skip_verify,
                    ),
                )
                new_queues.append(
                    QueueManager(
                        client,
                        write_conf.queue_config,
                        config.external_labels,
                        write_conf.write_relabel,
                        self.flush_deadline,
                    )
                )

            for old in self._queues:
                old.stop()
            self._queues = new_queues
            for manager in self._queues:
                manager.start()

            queryables: list[Queryable] = []
            for index, read_conf in enumerate(config.remote_read_configs):
                client = self._client_factory(
                    index,
                    ClientConfig(
                        url=read_conf.url,
                        timeout=read_conf.remote_timeout,
                        headers=dict(read_conf.headers),
                        insecure_skip_verify=read_conf.insecure_skip_verify,
                    ),
                )
                queryable = queryable_client(client)
                queryable = external_labels_handler(queryable, dict(config.external_labels))
                if read_conf.required_matchers:
                    queryable = required_matchers_filter(
                        queryable, _labels_to_equality_matchers(read_conf.required_matchers)
                    )
                if not read_conf.read_recent:
                    queryable = prefer_local_storage_filter(
                        queryable, self._start_time_callback
                    )
                queryables.append(queryable)
            self._queryables = queryables

    def start_time(self) -> int:
        """Remote storage holds no data of its own, so it starts at the latest time."""
        return LATEST_TIMESTAMP

    def querier(self, mint: int, maxt: int) -> MergeQuerier:
        """Return a querier merging every remote read endpoint over the range."""
        with self._lock:
            queryables = list(self._queryables)
        return MergeQuerier([queryable(mint, maxt) for queryable in queryables])

    def close(self) -> None:
        """Stop the write queues, flushing what they hold."""
        with self._lock:
            for manager in self._queues:
                manager.stop()

    def appender(self) -> Storage:
        """Return the appender for this storage: the storage itself."""
        return self

    def add(self, labels: Iterable[Label], t: int, v: float) -> int:
        """Queue a sample on every write queue."""
        metric = labels_to_metric(labels)
        with self._lock:
            for manager in self._queues:
                manager.append(MetricSample(metric=dict(metric), value=v, timestamp=t))
        return 0

    def add_fast(self, labels: Iterable[Label], ref: int, t: int, v: float) -> None:
        """Queue a sample; the reference is ignored."""
        self.add(labels, t, v)

    def commit(self) -> None:
        """Samples are queued as they are added; nothing to commit."""
        return None

    def rollback(self) -> None:
        """Queued samples cannot be withdrawn; nothing to roll back."""
        return None