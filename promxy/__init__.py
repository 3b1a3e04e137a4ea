"""Remote read/write storage, a sharded write queue and server-group configuration for a Prometheus aggregating proxy."""

__version__ = "0.1.0"

__all__ = [
    "appender_stub",
    "client",
    "codec",
    "ewma",
    "labels",
    "prompb",
    "queue_manager",
    "read",
    "servergroup_config",
    "snappy",
    "storage",
]