"""
FlushScheduler - decides when buffered entries are delivered.

Two triggers feed one guarded flush action:

    periodic tick / notify() -> size check -> flush (if size >= batch_size)
    flush_now() at shutdown  ----------------> flush

The flush action is a critical section guarded by a non-reentrant lock
(flush_in_progress). The timer path never waits for it: if a flush is
already running the trigger is dropped. flush_now() can wait for the
running flush and then drain whatever arrived in the meantime.

Drained entries are handed to the transport once and never re-queued,
whatever the outcome.
"""

import logging
import threading
from enum import Enum
from typing import Optional, Protocol

from sentinel_sdk.buffer import RecordBuffer
from sentinel_sdk.clock import elapsed_ms, format_duration, monotonic_ms
from sentinel_sdk.entry import Batch

logger = logging.getLogger(__name__)


class BatchTransport(Protocol):
    def send_batch(self, batch: Batch) -> int:
        ...


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class FlushScheduler:
    """
    Background flusher for a RecordBuffer.

    Features:
        - Periodic size check on a daemon thread
        - Early wake-up via notify() so full batches ship immediately
        - Single-flight flushing shared by the timer and shutdown paths
    """

    def __init__(
        self,
        buffer: RecordBuffer,
        transport: BatchTransport,
        batch_size: int,
        flush_interval_ms: int,
    ):
        """
        Initialize the scheduler.

        Args:
            buffer: Buffer to drain
            transport: Object with send_batch(batch) -> delivered count
            batch_size: Size threshold that triggers a flush
            flush_interval_ms: Period of the background size check
        """
        self._buffer = buffer
        self._transport = transport
        self._batch_size = batch_size
        self._interval = flush_interval_ms / 1000.0

        self._state = SchedulerState.STOPPED
        self._state_lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()

        # flush_in_progress
        self._flush_guard = threading.Lock()

        # Protects _in_flight so drain + count update is seen atomically.
        # Reentrant so a signal handler can read outstanding() mid-flush.
        self._count_lock = threading.RLock()
        self._in_flight = 0
        self._flush_count = 0

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    @property
    def flush_in_progress(self) -> bool:
        return self._flush_guard.locked()

    @property
    def in_flight(self) -> int:
        """Entries drained by the current flush and not yet resolved."""
        with self._count_lock:
            return self._in_flight

    @property
    def flush_count(self) -> int:
        """Number of non-empty flushes performed."""
        with self._count_lock:
            return self._flush_count

    def outstanding(self) -> int:
        """Entries not yet handed off for good: buffered plus in flight."""
        with self._count_lock:
            return self._buffer.size() + self._in_flight

    def start(self) -> None:
        """Start the periodic flush thread. No-op if already running."""
        with self._state_lock:
            if self._state is SchedulerState.RUNNING:
                return

            # Fresh events so a thread left over from a previous run exits
            self._stop_event = threading.Event()
            self._wake_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event, self._wake_event),
                daemon=True,
                name="sentinel-flush",
            )
            self._state = SchedulerState.RUNNING
            self._thread.start()

        logger.info(f"Batch flusher started (interval: {format_duration(self._interval * 1000)})")

    def stop(self) -> None:
        """
        Stop the periodic flush thread. No-op if already stopped.

        Does not wait for a flush that is already running.
        """
        with self._state_lock:
            if self._state is SchedulerState.STOPPED:
                return
            self._state = SchedulerState.STOPPED
            self._stop_event.set()
            self._wake_event.set()
            self._thread = None

        logger.info("Batch flusher stopped")

    def notify(self) -> None:
        """Wake the flush thread for an early size check."""
        self._wake_event.set()

    def _run(self, stop_event: threading.Event, wake_event: threading.Event) -> None:
        while not stop_event.is_set():
            # Wait for the interval or an explicit wake-up
            wake_event.wait(timeout=self._interval)
            wake_event.clear()

            if stop_event.is_set():
                break

            try:
                self.check_and_flush()
            except Exception as e:
                # Keep the thread alive; the next tick tries again
                logger.error(f"Unexpected error in flush loop: {e!r}")

    def check_and_flush(self) -> int:
        """
        Flush if the buffer has reached the batch size.

        Returns:
            Number of entries delivered (0 if no flush happened)
        """
        if self._flush_guard.locked():
            return 0
        if self._buffer.size() >= self._batch_size:
            return self._flush(wait=False)
        return 0

    def flush_now(self, wait: bool = True) -> int:
        """
        Flush everything currently buffered.

        Args:
            wait: If a flush is already running, wait for it to finish
                and then flush again. If False, return 0 immediately.

        Returns:
            Number of entries delivered by this call
        """
        return self._flush(wait=wait)

    def _flush(self, wait: bool) -> int:
        if not self._flush_guard.acquire(blocking=wait):
            return 0

        try:
            with self._count_lock:
                batch = self._buffer.drain()
                self._in_flight = len(batch)

            if not batch:
                return 0

            return self._send(batch)
        finally:
            with self._count_lock:
                self._in_flight = 0
            self._flush_guard.release()

    def _send(self, batch: Batch) -> int:
        logger.debug(f"Flushing {len(batch)} log entries")
        started = monotonic_ms()

        try:
            delivered = self._transport.send_batch(batch)
        except Exception as e:
            # The transport contains its own failures; this is a backstop
            logger.error(f"Unexpected error during flush: {e!r}")
            delivered = 0

        with self._count_lock:
            self._flush_count += 1

        took = format_duration(elapsed_ms(started))
        if delivered == len(batch):
            logger.info(f"Successfully sent {delivered} logs in {took}")
        elif delivered > 0:
            logger.warning(f"Sent {delivered}/{len(batch)} logs ({len(batch) - delivered} failed) in {took}")
        else:
            logger.error(f"Failed to send all {len(batch)} logs in {took}")
        return delivered
