from datetime import datetime, timedelta, timezone

import pytest

from promxy.servergroup_config import (
    AbsoluteTimeRangeConfig,
    RelativeTimeRangeConfig,
    ServerGroupConfig,
    load_server_group_config,
    parse_duration,
)

SERVER_GROUP = """
static_configs:
  - targets:
    - localhost:8083
labels:
  az: a
remote_read: true
http_client:
  tls_config:
    insecure_skip_verify: true
"""


def test_defaults():
    cfg = load_server_group_config("")
    assert cfg.scheme == "http"
    assert cfg.remote_read_path == "api/v1/read"
    assert cfg.anti_affinity == timedelta(seconds=10)
    assert cfg.http_client.dial_timeout == timedelta(milliseconds=200)
    assert cfg.timeout == timedelta(0)
    assert cfg.relative_time_range is None and cfg.absolute_time_range is None


def test_default_anti_affinity_time():
    assert ServerGroupConfig().anti_affinity_time() == 10000


def test_load_server_group():
    cfg = load_server_group_config(SERVER_GROUP)
    assert cfg.hosts == {"static_configs": [{"targets": ["localhost:8083"]}]}
    assert cfg.labels == {"az": "a"}
    assert cfg.remote_read is True
    assert cfg.http_client.http_config == {"tls_config": {"insecure_skip_verify": True}}
    assert cfg.http_client.dial_timeout == timedelta(milliseconds=200)


def test_overrides():
    cfg = ServerGroupConfig.from_dict(
        {
            "scheme": "https",
            "anti_affinity": "30s",
            "timeout": "5s",
            "path_prefix": "/prom",
            "query_params": {"nocache": 1},
            "ignore_error": True,
        }
    )
    assert cfg.scheme == "https"
    assert cfg.anti_affinity == timedelta(seconds=30)
    assert cfg.anti_affinity_time() == 30 * 1000
    assert cfg.timeout == timedelta(seconds=5)
    assert cfg.path_prefix == "/prom"
    assert cfg.query_params == {"nocache": "1"}
    assert cfg.ignore_error is True


@pytest.mark.parametrize(
    "text, expected",
    [
        ("10s", timedelta(seconds=10)),
        ("200ms", timedelta(milliseconds=200)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("-1.5h", -timedelta(hours=1.5)),
        ("0", timedelta(0)),
        ("1us", timedelta(microseconds=1)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "10", "abc", "1d", "1h-", "-"])
def test_parse_duration_invalid(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_relative_time_range():
    cfg = ServerGroupConfig.from_dict(
        {"relative_time_range": {"start": "-3h", "end": "-1h"}}
    )
    assert cfg.relative_time_range == RelativeTimeRangeConfig(
        start=-timedelta(hours=3), end=-timedelta(hours=1)
    )


def test_relative_time_range_end_before_start():
    with pytest.raises(ValueError, match="End must be after start"):
        ServerGroupConfig.from_dict({"relative_time_range": {"start": "-1h", "end": "-3h"}})


def test_absolute_time_range():
    cfg = load_server_group_config(
        "absolute_time_range:\n  start: '2020-01-01T00:00:00Z'\n  end: '2020-02-01T00:00:00Z'\n"
    )
    assert cfg.absolute_time_range.start == datetime(2020, 1, 1, tzinfo=timezone.utc)
    assert cfg.absolute_time_range.end == datetime(2020, 2, 1, tzinfo=timezone.utc)


def test_absolute_time_range_end_before_start():
    tr = AbsoluteTimeRangeConfig(
        start=datetime(2020, 2, 1, tzinfo=timezone.utc),
        end=datetime(2020, 1, 1, tzinfo=timezone.utc),
    )
    with pytest.raises(ValueError, match="End must be after start"):
        tr.validate()


def test_unknown_field_rejected():
    with pytest.raises(ValueError, match="unknown field"):
        ServerGroupConfig.from_dict({"no_such_option": 1})


def test_invalid_label_name_rejected():
    with pytest.raises(ValueError, match="not a valid label name"):
        ServerGroupConfig.from_dict({"labels": {"123bad": "x"}})