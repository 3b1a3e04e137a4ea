# promxy

Building blocks for a Prometheus aggregating proxy: the remote read/write
protocol, a sharded queue that sends samples to remote write endpoints,
queriers for remote read endpoints, and the configuration of the server
groups behind the proxy.

## Modules

- `promxy.labels`: `Label`, `Matcher` and `MatchType` (`=`, `!=`, `=~`,
  `!~`; regular expressions are fully anchored), `MetricSample`, and helpers
  `from_strings`, `compare`, `labels_to_string`, `is_valid_metric_name`,
  `is_valid_label_name` and `is_valid_label_value`.
- `promxy.prompb`: the protocol messages (`Sample`, `TimeSeries`,
  `LabelMatcher`, `ReadHints`, `Query`, `QueryResult`, `WriteRequest`,
  `ReadRequest`, `ReadResponse`). The request and response messages have
  `to_bytes()` and `from_bytes()` for the protobuf wire format; malformed
  input raises `ValueError`.
- `promxy.snappy`: snappy block-format `compress` and `decompress`; corrupt
  input raises `SnappyError`.
- `promxy.codec`: conversions between samples, queries and series sets and
  the protocol messages: `to_write_request`, `to_query`, `from_query`,
  `to_query_result` (raises `HTTPError` with status 400 past a positive sample
  limit), `from_query_result` (sorts series by labels and raises `ValueError`
  on invalid names or values), `decode_read_request`, `encode_read_response`,
  and the in-memory `ConcreteSeries`, `ConcreteSeriesIterator` and
  `ConcreteSeriesSet`.
- `promxy.ewma`: `EWMARate`, an exponentially weighted moving average of an
  event rate per second.
- `promxy.client`: `Client`, configured by `ClientConfig`, POSTs
  snappy-compressed protobuf over HTTP. `store()` raises `RecoverableError`
  on network errors and 5xx responses and `RuntimeError` on other non-2xx
  responses; `read()` runs one `Query` and returns its `QueryResult`.
- `promxy.read`: `queryable_client`, `external_labels_handler`,
  `prefer_local_storage_filter` and `required_matchers_filter` build
  queryables (callables of `(mint, maxt)` returning a querier), with the
  queriers `RemoteQuerier`, `ExternalLabelsQuerier`,
  `RequiredMatchersQuerier` and `NoopQuerier`. Every `select()` returns a
  series set and a list of warnings.
- `promxy.queue_manager`: `QueueManager` queues samples in shards, sends them
  in batches of `max_samples_per_send` (or after `batch_send_deadline`),
  retries recoverable errors with backoff, drops samples when a shard is full,
  and reshards from the observed rates. `QueueConfig` holds its settings and
  `QueueMetrics` its counters.
- `promxy.storage`: `Storage` applies a `RemoteConfig` of
  `RemoteWriteConfig` and `RemoteReadConfig` entries, fans `add()` out to
  every write queue, and returns a `MergeQuerier` over all read endpoints.
- `promxy.servergroup_config`: `ServerGroupConfig`, `load_server_group_config`
  for server-group YAML, `parse_duration` for durations such as `1h30m`, and
  `RelativeTimeRangeConfig` / `AbsoluteTimeRangeConfig`, which reject an end
  before the start.
- `promxy.appender_stub`: `AppenderStub`, an appender that discards every
  sample and logs a warning at most once per interval (60 seconds by default).

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from promxy.servergroup_config import load_server_group_config

cfg = load_server_group_config("""
scheme: https
anti_affinity: 30s
labels:
  az: a
""")
print(cfg.scheme, cfg.anti_affinity_time())  # https 30000
```

```python
from promxy import snappy
from promxy.prompb import WriteRequest

payload = snappy.compress(WriteRequest().to_bytes())
assert WriteRequest.from_bytes(snappy.decompress(payload)) == WriteRequest()
```

## What this package does not do

It is a library, not a running proxy. It has no command to start, no HTTP
server that answers queries, no query engine, and no service discovery:
`ServerGroupConfig` records the discovery sections (`static_configs`,
`*_sd_configs`) and relabel rules but nothing here resolves hosts or applies
those rules. Metrics are kept in `QueueMetrics` objects rather than exported.