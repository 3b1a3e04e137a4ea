"""Sharded, batching queue that ships samples to a remote write endpoint."""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Mapping, Protocol, Sequence

from .client import RecoverableError
from .codec import to_write_request
from .ewma import EWMARate
from .labels import Label, MetricSample
from .prompb import WriteRequest

logger = logging.getLogger(__name__)

EWMA_WEIGHT = 0.2
SHARD_UPDATE_DURATION = 10.0
SHARD_TOLERANCE_FRACTION = 0.3
LOG_RATE_LIMIT = 0.1
LOG_BURST = 10

Relabel = Callable[[list[Label]], "Sequence[Label] | None"]


class StorageClient(Protocol):
    """Sends batches of samples to an external time series database."""

    name: str

    def store(self, request: WriteRequest) -> None: ...


@dataclass
class QueueConfig:
    """Tuning of a queue manager; times are in seconds."""

    capacity: int = 10000
    max_shards: int = 1000
    min_shards: int = 1
    max_samples_per_send: int = 100
    batch_send_deadline: float = 5.0
    max_retries: int = 3
    min_backoff: float = 0.03
    max_backoff: float = 0.1


@dataclass
class QueueMetrics:
    """Counters and gauges describing one queue manager."""

    succeeded_samples: int = 0
    failed_samples: int = 0
    dropped_samples: int = 0
    queue_length: int = 0
    shards: int = 0
    shard_capacity: int = 0
    sent_batch_durations: list[float] = field(default_factory=list)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def _add(self, name: str, amount: int) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def _set(self, name: str, value: int) -> None:
        with self._lock:
            setattr(self, name, value)

    def _observe_batch(self, seconds: float) -> None:
        with self._lock:
            self.sent_batch_durations.append(seconds)


class _RateLimiter:
    """Token bucket allowing ``rate`` events per second with a burst."""

    def __init__(self, rate: float, burst: int) -> None:
        self._rate = rate
        self._burst = burst
        self._tokens = float(burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def allow(self) -> bool:
        with self._lock:
            now = time.monotonic()
            self._tokens = min(self._burst, self._tokens + (now - self._last) * self._rate)
            self._last = now
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False


_TIMEOUT = object()
_CLOSED = object()
_CANCELLED = object()


class _ShardQueue:
    """A bounded FIFO that can be closed and woken for cancellation."""

    def __init__(self, capacity: int, cancelled: threading.Event) -> None:
        self._items: deque[MetricSample] = deque()
        self._capacity = capacity
        self._cond = threading.Condition()
        self._closed = False
        self._cancelled = cancelled

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def offer(self, item: MetricSample) -> bool:
        with self._cond:
            if self._closed or len(self._items) >= self._capacity:
                return False
            self._items.append(item)
            self._cond.notify()
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def get(self, timeout: float):
        with self._cond:
            self._cond.wait_for(
                lambda: self._items or self._closed or self._cancelled.is_set(),
                timeout,
            )
            if self._cancelled.is_set():
                return _CANCELLED
            if self._items:
                return self._items.popleft()
            if self._closed:
                return _CLOSED
            return _TIMEOUT


class _Shards:
    """A fixed set of shard queues, each drained by its own worker thread."""

    def __init__(self, manager: QueueManager, count: int) -> None:
        self._qm = manager
        self._cancelled = threading.Event()
        self.queues = [
            _ShardQueue(manager.config.capacity, self._cancelled) for _ in range(count)
        ]
        self._done = threading.Event()
        self._running = count
        self._running_lock = threading.Lock()
        self._started = False
        if count == 0:
            self._done.set()

    def start(self) -> None:
        self._started = True
        for shard in self.queues:
            threading.Thread(target=self._run_shard, args=(shard,), daemon=True).start()

    def stop(self, deadline: float) -> None:
        for shard in self.queues:
            shard.close()
        if not self._started or self._done.wait(deadline):
            return
        logger.error("queue %s: failed to flush all samples on shutdown", self._qm.name)
        self._cancelled.set()
        for shard in self.queues:
            shard.wake()
        if not self._done.wait(deadline):
            logger.error("queue %s: send still in flight after shutdown", self._qm.name)

    def enqueue(self, sample: MetricSample) -> bool:
        self._qm._samples_in.incr(1)
        fingerprint = hash(tuple(sorted(sample.metric.items())))
        return self.queues[fingerprint % len(self.queues)].offer(sample)

    def _run_shard(self, shard: _ShardQueue) -> None:
        try:
            self._drain(shard)
        finally:
            with self._running_lock:
                self._running -= 1
                if self._running == 0:
                    self._done.set()

    def _drain(self, shard: _ShardQueue) -> None:
        cfg = self._qm.config
        pending: list[MetricSample] = []
        next_flush = time.monotonic() + cfg.batch_send_deadline
        while True:
            item = shard.get(max(0.0, next_flush - time.monotonic()))
            if item is _CANCELLED:
                return
            if item is _CLOSED:
                if pending:
                    logger.debug("flushing %d samples to remote storage", len(pending))
                    self._send(pending)
                return
            if item is _TIMEOUT:
                if pending:
                    self._send(pending)
                    pending = []
                next_flush = time.monotonic() + cfg.batch_send_deadline
                continue
            self._qm.metrics._add("queue_length", -1)
            pending.append(item)
            if len(pending) >= cfg.max_samples_per_send:
                batch = pending[: cfg.max_samples_per_send]
                pending = pending[cfg.max_samples_per_send:]
                self._send(batch)
                next_flush = time.monotonic() + cfg.batch_send_deadline

    def _send(self, samples: list[MetricSample]) -> None:
        begin = time.monotonic()
        self._send_with_backoff(samples)
        # Maintained regardless of outcome: they drive the dynamic sharding.
        self._qm._samples_out.incr(len(samples))
        self._qm._samples_out_duration.incr(time.monotonic() - begin)

    def _send_with_backoff(self, samples: list[MetricSample]) -> None:
        cfg = self._qm.config
        metrics = self._qm.metrics
        backoff = cfg.min_backoff
        request = to_write_request(samples)
        for _ in range(cfg.max_retries):
            begin = time.monotonic()
            try:
                self._qm.client.store(request)
            except RecoverableError as err:
                metrics._observe_batch(time.monotonic() - begin)
                logger.warning(
                    "error sending %d samples to remote storage: %s", len(samples), err
                )
            except Exception as err:  # noqa: BLE001 - any other failure is final
                metrics._observe_batch(time.monotonic() - begin)
                logger.warning(
                    "error sending %d samples to remote storage: %s", len(samples), err
                )
                break
            else:
                metrics._observe_batch(time.monotonic() - begin)
                metrics._add("succeeded_samples", len(samples))
                return
            if self._cancelled.wait(backoff):
                break
            backoff = min(backoff * 2, cfg.max_backoff)
        metrics._add("failed_samples", len(samples))


class QueueManager:
    """Queues samples and sends them in batches through a storage client."""

    def __init__(
        self,
        client: StorageClient,
        config: QueueConfig | None = None,
        external_labels: Mapping[str, str] | None = None,
        relabel: Relabel | None = None,
        flush_deadline: float = 60.0,
        metrics: QueueMetrics | None = None,
    ) -> None:
        self.client = client
        self.config = config if config is not None else QueueConfig()
        self.external_labels = dict(external_labels or {})
        self.relabel = relabel
        self.flush_deadline = flush_deadline
        self.metrics = metrics if metrics is not None else QueueMetrics()
        self.name = client.name

        self._log_limiter = _RateLimiter(LOG_RATE_LIMIT, LOG_BURST)
        self._num_shards = self.config.min_shards
        self._reshard_queue: queue.Queue[int] = queue.Queue(maxsize=1)
        self._quit = threading.Event()
        self._threads: list[threading.Thread] = []
        self._shards_lock = threading.Lock()

        self._samples_in = EWMARate(EWMA_WEIGHT, SHARD_UPDATE_DURATION)
        self._samples_out = EWMARate(EWMA_WEIGHT, SHARD_UPDATE_DURATION)
        self._samples_out_duration = EWMARate(EWMA_WEIGHT, SHARD_UPDATE_DURATION)
        self._integral_accumulator = 0.0

        self._shards = _Shards(self, self._num_shards)
        self.metrics._set("shards", self._num_shards)
        self.metrics._set("shard_capacity", self.config.capacity)

    def append(self, sample: MetricSample) -> None:
        """Queue a sample; it is dropped when its shard is full."""
        merged = dict(self.external_labels)
        for name, value in sample.metric.items():
            if name not in self.external_labels:
                merged[name] = value
        labels: Sequence[Label] | None = sorted(
            (Label(name, value) for name, value in merged.items()),
            key=lambda label: label.name,
        )
        if self.relabel is not None:
            labels = self.relabel(list(labels))
        if labels is None:
            return
        queued = MetricSample(
            metric={label.name: label.value for label in labels},
            value=sample.value,
            timestamp=sample.timestamp,
        )

        with self._shards_lock:
            enqueued = self._shards.enqueue(queued)

        if enqueued:
            self.metrics._add("queue_length", 1)
        else:
            self.metrics._add("dropped_samples", 1)
            if self._log_limiter.allow():
                logger.warning(
                    "queue %s: remote storage queue full, discarding sample; "
                    "subsequent messages of this kind may be suppressed",
                    self.name,
                )

    def needs_throttling(self) -> bool:
        """Never asks for throttling; a full queue drops samples instead."""
        return False

    def start(self) -> None:
        """Start sending samples in the background; does not block."""
        self._threads = [
            threading.Thread(target=self._update_shards_loop, daemon=True),
            threading.Thread(target=self._reshard_loop, daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        with self._shards_lock:
            self._shards.start()

    def stop(self) -> None:
        """Stop sending and wait, up to the flush deadline, for pending sends."""
        logger.info("queue %s: stopping remote storage", self.name)
        self._quit.set()
        for thread in self._threads:
            thread.join()
        with self._shards_lock:
            self._shards.stop(self.flush_deadline)
        logger.info("queue %s: remote storage stopped", self.name)

    def queue_length(self) -> int:
        """Return the number of samples waiting in the shard queues."""
        with self._shards_lock:
            return sum(len(shard) for shard in self._shards.queues)

    def _update_shards_loop(self) -> None:
        while not self._quit.wait(SHARD_UPDATE_DURATION):
            self._calculate_desired_shards()

    def _calculate_desired_shards(self) -> None:
        self._samples_in.tick()
        self._samples_out.tick()
        self._samples_out_duration.tick()

        samples_in = self._samples_in.rate()
        samples_out = self._samples_out.rate()
        samples_pending = samples_in - samples_out
        samples_out_duration = self._samples_out_duration.rate()

        # Integral term, as in a PID controller, to dampen oscillation.
        self._integral_accumulator += samples_pending * 0.1

        if samples_out <= 0:
            return

        time_per_sample = samples_out_duration / samples_out
        desired = time_per_sample * (
            samples_in + samples_pending + self._integral_accumulator
        )
        logger.debug(
            "queue %s: in=%s out=%s pending=%s desired shards=%s",
            self.name, samples_in, samples_out, samples_pending, desired,
        )

        lower = self._num_shards * (1.0 - SHARD_TOLERANCE_FRACTION)
        upper = self._num_shards * (1.0 + SHARD_TOLERANCE_FRACTION)
        if lower <= desired <= upper:
            return

        count = math.ceil(desired)
        if count > self.config.max_shards:
            count = self.config.max_shards
        elif count < self.config.min_shards:
            count = self.config.min_shards
        if count == self._num_shards:
            return

        try:
            self._reshard_queue.put_nowait(count)
        except queue.Full:
            logger.info("queue %s: currently resharding, skipping", self.name)
            return
        logger.info("queue %s: resharding from %d to %d", self.name, self._num_shards, count)
        self._num_shards = count

    def _reshard_loop(self) -> None:
        while not self._quit.is_set():
            try:
                count = self._reshard_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._reshard(count)

    def _reshard(self, count: int) -> None:
        self.metrics._set("shards", count)
        with self._shards_lock:
            old = self._shards
            new = _Shards(self, count)
            self._shards = new
        old.stop(self.flush_deadline)
        # Start the new shards only after the old ones have flushed, so
        # samples are always delivered in order.
        new.start()