"""Pytest fixtures for sentinel_sdk tests."""

import os
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from sentinel_sdk.config import SentinelConfig
from sentinel_sdk.entry import LogEntry
from sentinel_sdk.sdk import set_default_sdk


BASE_URL = "https://collector.example.com"
LOGS_URL = f"{BASE_URL}/api/sdk/logs"


def make_entry(i: int = 0, **overrides) -> LogEntry:
    """Build a LogEntry with predictable contents."""
    fields = dict(
        method="GET",
        url=f"/items/{i}",
        timestamp=datetime(2024, 1, 1, 12, 0, i % 60, tzinfo=timezone.utc),
        request_headers={"accept": "application/json"},
        status_code=200,
        response_body={"id": i},
        execution_time_ms=1.5,
    )
    fields.update(overrides)
    return LogEntry(**fields)


class RecordingTransport:
    """Fake transport that records every batch it is given."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.batches = []
        self.delivered = []
        self._lock = threading.Lock()

    def send_batch(self, batch):
        with self._lock:
            self.batches.append(tuple(batch))
        count = 0
        for entry in batch:
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                self.delivered.append(entry)
            count += 1
        return count


class BlockingTransport:
    """Fake transport that stalls until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.batches = []

    def send_batch(self, batch):
        self.batches.append(tuple(batch))
        self.started.set()
        self.release.wait(timeout=10)
        return len(batch)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config():
    """Validated config with fast timings for tests."""
    return SentinelConfig(
        api_key="test-key",
        base_url=BASE_URL,
        batch_size=5,
        flush_interval_ms=50,
        http_timeout_ms=1000,
        retry_delay_ms=1,
        shutdown_grace_period_ms=2000,
    ).validate()


@pytest.fixture
def recording_transport():
    return RecordingTransport()


@pytest.fixture
def blocking_transport():
    transport = BlockingTransport()
    yield transport
    transport.release.set()


@pytest.fixture(autouse=True)
def reset_env():
    """Reset environment variables and the default SDK after each test."""
    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("LOGSENTINEL_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(original_env)
    set_default_sdk(None)
