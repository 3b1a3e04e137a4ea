"""Configuration of a server group: the set of downstream hosts promxy queries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from fractions import Fraction
from typing import Any, Mapping

import yaml

from .labels import is_valid_label_name

_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|h|m|s)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"200ms"`` or ``"-1.5h"``."""
    original = text
    rest = text.strip() if isinstance(text, str) else ""
    sign = 1
    if rest and rest[0] in "+-":
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {original!r}")
    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration {original!r}")
        total += Fraction(match.group(1)) * _UNIT_NANOS[match.group(2)]
        pos = match.end()
    return timedelta(microseconds=round(sign * total / 1000))


def _to_duration(value: Any, name: str) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"{name}: invalid duration {value!r}")
    if isinstance(value, (int, float)):
        # Bare numbers count nanoseconds.
        return timedelta(microseconds=value / 1000)
    if isinstance(value, str):
        return parse_duration(value)
    raise ValueError(f"{name}: invalid duration {value!r}")


def _to_time(value: Any, name: str) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"{name}: invalid time {value!r}") from None
    else:
        raise ValueError(f"{name}: invalid time {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _mapping(value: Any, name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{name}: expected a mapping")
    return dict(value)


@dataclass
class HTTPClientConfig:
    """HTTP client options: a dial timeout plus the usual client settings."""

    dial_timeout: timedelta = field(default_factory=lambda: timedelta(milliseconds=200))
    http_config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _from_dict(cls, data: Any) -> HTTPClientConfig:
        values = _mapping(data, "http_client")
        config = cls()
        dial = values.pop("dial_timeout", None)
        if dial is not None:
            config.dial_timeout = _to_duration(dial, "dial_timeout")
        config.http_config = values
        return config


@dataclass
class RelativeTimeRangeConfig:
    """A time range given as offsets from now."""

    start: timedelta | None = None
    end: timedelta | None = None

    def validate(self) -> None:
        """Raise ValueError if the end comes before the start."""
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("RelativeTimeRangeConfig: End must be after start")

    @classmethod
    def _from_dict(cls, data: Any) -> RelativeTimeRangeConfig:
        values = _mapping(data, "relative_time_range")
        config = cls(
            start=None if values.get("start") is None else _to_duration(values["start"], "start"),
            end=None if values.get("end") is None else _to_duration(values["end"], "end"),
        )
        config.validate()
        return config


@dataclass
class AbsoluteTimeRangeConfig:
    """A time range given as absolute times."""

    start: datetime | None = None
    end: datetime | None = None

    def validate(self) -> None:
        """Raise ValueError if the end comes before the start."""
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("AbsoluteTimeRangeConfig: End must be after start")

    @classmethod
    def _from_dict(cls, data: Any) -> AbsoluteTimeRangeConfig:
        values = _mapping(data, "absolute_time_range")
        config = cls(
            start=None if values.get("start") is None else _to_time(values["start"], "start"),
            end=None if values.get("end") is None else _to_time(values["end"], "end"),
        )
        config.validate()
        return config


def _is_discovery_key(key: str) -> bool:
    return key == "static_configs" or key.endswith("_sd_configs")


@dataclass
class ServerGroupConfig:
    """How promxy discovers, reaches and post-processes one group of hosts."""

    remote_read: bool = False
    remote_read_path: str = "api/v1/read"
    http_client: HTTPClientConfig = field(default_factory=HTTPClientConfig)
    scheme: str = "http"
    labels: dict[str, str] = field(default_factory=dict)
    relabel_configs: list[dict[str, Any]] = field(default_factory=list)
    hosts: dict[str, Any] = field(default_factory=dict)
    path_prefix: str = ""
    query_params: dict[str, str] = field(default_factory=dict)
    anti_affinity: timedelta = field(default_factory=lambda: timedelta(seconds=10))
    timeout: timedelta = field(default_factory=timedelta)
    ignore_error: bool = False
    relative_time_range: RelativeTimeRangeConfig | None = None
    absolute_time_range: AbsoluteTimeRangeConfig | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ServerGroupConfig:
        """Build a config from parsed YAML, starting from the defaults."""
        config = cls()
        for key, value in _mapping(data, "server_group").items():
            if value is None:
                continue
            if _is_discovery_key(key):
                config.hosts[key] = value
            elif key in ("remote_read", "ignore_error"):
                if not isinstance(value, bool):
                    raise ValueError(f"{key}: expected a boolean")
                setattr(config, key, value)
            elif key in ("remote_read_path", "scheme", "path_prefix"):
                setattr(config, key, str(value))
            elif key == "http_client":
                config.http_client = HTTPClientConfig._from_dict(value)
            elif key == "labels":
                labels = {str(k): str(v) for k, v in _mapping(value, key).items()}
                for name in labels:
                    if not is_valid_label_name(name):
                        raise ValueError(f"{name!r} is not a valid label name")
                config.labels = labels
            elif key == "relabel_configs":
                if not isinstance(value, list):
                    raise ValueError("relabel_configs: expected a list")
                config.relabel_configs = list(value)
            elif key == "query_params":
                config.query_params = {
                    str(k): str(v) for k, v in _mapping(value, key).items()
                }
            elif key in ("anti_affinity", "timeout"):
                setattr(config, key, _to_duration(value, key))
            elif key == "relative_time_range":
                config.relative_time_range = RelativeTimeRangeConfig._from_dict(value)
            elif key == "absolute_time_range":
                config.absolute_time_range = AbsoluteTimeRangeConfig._from_dict(value)
            else:
                raise ValueError(f"unknown field {key!r} in server group config")
        return config

    def anti_affinity_time(self) -> int:
        """The anti-affinity as a millisecond time, truncated to whole seconds."""
        return int(self.anti_affinity.total_seconds()) * 1000


def load_server_group_config(text: str) -> ServerGroupConfig:
    """Parse a server group config from YAML text."""
    return ServerGroupConfig.from_dict(yaml.safe_load(text))