"""
sentinel_sdk - Zero-impact HTTP request log shipping for LogSentinel

This package captures request/response summaries from a host web
application and ships them to a LogSentinel collector:
- Non-blocking enqueue from request handlers
- In-memory batching with size and timer triggers
- HTTP delivery with bounded retries
- Graceful, time-bounded shutdown
"""

import logging

from sentinel_sdk.buffer import RecordBuffer
from sentinel_sdk.config import ConfigurationError, SentinelConfig, load_config
from sentinel_sdk.entry import Batch, DeliveryOutcome, LogEntry
from sentinel_sdk.flask_middleware import sentinel_middleware
from sentinel_sdk.scheduler import FlushScheduler, SchedulerState
from sentinel_sdk.sdk import (
    SentinelSDK,
    ShutdownReport,
    get_default_sdk,
    init_sdk,
    set_default_sdk,
)
from sentinel_sdk.serialization import make_serializable, parse_body, redact_headers
from sentinel_sdk.transport import DeliveryStats, HttpTransport

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Config
    "SentinelConfig",
    "ConfigurationError",
    "load_config",
    # Data model
    "LogEntry",
    "Batch",
    "DeliveryOutcome",
    # Pipeline
    "RecordBuffer",
    "HttpTransport",
    "DeliveryStats",
    "FlushScheduler",
    "SchedulerState",
    # Lifecycle
    "SentinelSDK",
    "ShutdownReport",
    "init_sdk",
    "get_default_sdk",
    "set_default_sdk",
    # Flask
    "sentinel_middleware",
    # Serialization
    "make_serializable",
    "parse_body",
    "redact_headers",
]
