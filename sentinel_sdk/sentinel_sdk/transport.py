"""
HTTP transport - delivers log entries to the LogSentinel collector.

Each entry is POSTed individually to {base_url}/api/sdk/logs:

    2xx                          -> delivered
    4xx                          -> rejected, not retried
    5xx / connection / timeout   -> retried with linear backoff

The transport never raises. Every failure is turned into a
DeliveryOutcome plus a log line.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

import requests

from sentinel_sdk.config import SentinelConfig
from sentinel_sdk.entry import DeliveryOutcome, LogEntry

logger = logging.getLogger(__name__)


@dataclass
class DeliveryStats:
    """Running totals of per-entry outcomes."""
    delivered: int = 0
    rejected: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.delivered + self.rejected + self.failed


class HttpTransport:
    """
    Sends entries to the collector with a bounded per-attempt timeout.

    Usage:
        transport = HttpTransport(config)
        delivered = transport.send_batch(batch)
    """

    def __init__(
        self,
        config: SentinelConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the transport.

        Args:
            config: Validated SDK configuration
            session: requests Session to use. A new one is created if None.
            sleep: Function used to wait between retries (seconds)
        """
        self.config = config
        self._session = session or requests.Session()
        self._sleep = sleep
        self._timeout = config.http_timeout_ms / 1000.0
        self._stats = DeliveryStats()
        self._stats_lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        return self.config.endpoint

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def send_one(self, entry: LogEntry) -> DeliveryOutcome:
        """
        Deliver a single entry, retrying transient failures.

        Makes at most max_retries + 1 attempts. Before retry n (1-indexed)
        waits retry_delay_ms * n.

        Returns:
            DeliveryOutcome for the entry. Never raises.
        """
        outcome = self._deliver(entry)
        self._record(outcome)
        return outcome

    def _deliver(self, entry: LogEntry) -> DeliveryOutcome:
        try:
            body = json.dumps(entry.to_payload(), allow_nan=False)
        except Exception as e:
            logger.error(f"Dropping unserializable log entry: {e!r}")
            return DeliveryOutcome.FAILED

        if self.config.debug:
            logger.debug(f"Sending log: {body}")

        total_attempts = self.config.max_retries + 1
        for attempt in range(1, total_attempts + 1):
            try:
                # requests applies the timeout to connect and to each socket
                # read, not to the whole response
                response = self._session.post(
                    self.endpoint,
                    data=body,
                    headers=self._headers(),
                    timeout=self._timeout,
                )
            except requests.Timeout:
                logger.warning(f"Request timeout (attempt {attempt}/{total_attempts})")
            except requests.RequestException as e:
                logger.warning(f"Network error: {e} (attempt {attempt}/{total_attempts})")
            except Exception as e:
                logger.warning(f"Unexpected transport error: {e!r} (attempt {attempt}/{total_attempts})")
            else:
                status = response.status_code
                if 200 <= status < 300:
                    logger.debug(f"Log sent successfully (attempt {attempt})")
                    return DeliveryOutcome.DELIVERED
                if 400 <= status < 500:
                    logger.warning(f"Server rejected log with status {status}, not retrying")
                    return DeliveryOutcome.REJECTED
                logger.warning(f"Server error {status}, attempt {attempt}/{total_attempts}")

            if attempt < total_attempts:
                self._backoff(attempt)

        logger.error("Failed to send log after all retry attempts")
        return DeliveryOutcome.FAILED

    def _backoff(self, attempt: int) -> None:
        delay = self.config.retry_delay_ms * attempt / 1000.0
        try:
            self._sleep(delay)
        except Exception as e:
            logger.debug(f"Backoff sleep interrupted: {e!r}")

    def send_batch(self, batch: Iterable[LogEntry]) -> int:
        """
        Deliver entries one after another, in order.

        Returns:
            Number of entries delivered. Never raises.
        """
        delivered = 0
        for entry in batch:
            try:
                outcome = self.send_one(entry)
            except Exception as e:
                # send_one contains its own failures; this guards the loop
                logger.error(f"Unexpected error delivering log entry: {e!r}")
                continue
            if outcome is DeliveryOutcome.DELIVERED:
                delivered += 1
        return delivered

    def _record(self, outcome: DeliveryOutcome) -> None:
        with self._stats_lock:
            if outcome is DeliveryOutcome.DELIVERED:
                self._stats.delivered += 1
            elif outcome is DeliveryOutcome.REJECTED:
                self._stats.rejected += 1
            else:
                self._stats.failed += 1

    @property
    def stats(self) -> DeliveryStats:
        """Snapshot of outcome counters."""
        with self._stats_lock:
            return DeliveryStats(
                delivered=self._stats.delivered,
                rejected=self._stats.rejected,
                failed=self._stats.failed,
            )

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        try:
            self._session.close()
        except Exception as e:
            logger.debug(f"Error closing HTTP session: {e!r}")
