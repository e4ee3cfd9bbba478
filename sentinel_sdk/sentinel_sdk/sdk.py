"""
SentinelSDK - lifecycle owner for the log shipping pipeline.

Architecture:
    event source -> SentinelSDK.enqueue() -> RecordBuffer
                                                |
                          FlushScheduler (background thread)
                                                |
                                   HttpTransport -> collector

The SDK must never affect the host application. A bad configuration
disables it (enqueue() becomes a no-op returning False) instead of
raising, and shutdown() waits at most the grace period for the final
flush.
"""

import atexit
import logging
import signal
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sentinel_sdk.buffer import RecordBuffer
from sentinel_sdk.clock import elapsed_ms, format_duration, monotonic_ms
from sentinel_sdk.config import ConfigurationError, SentinelConfig, load_config
from sentinel_sdk.entry import LogEntry
from sentinel_sdk.scheduler import BatchTransport, FlushScheduler
from sentinel_sdk.transport import HttpTransport

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "sentinel_sdk"
SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM")


@dataclass(frozen=True)
class ShutdownReport:
    """Outcome of a shutdown, for diagnostics only."""
    reason: str
    unsent: int
    flushed: bool  # final flush finished within the grace period
    elapsed_ms: float


class SentinelSDK:
    """
    Owns the buffer, transport and scheduler, and their lifecycle.

    Usage:
        sdk = SentinelSDK()          # config from LOGSENTINEL_* env vars
        sdk.install()
        sdk.enqueue(entry)
        ...
        sdk.shutdown()

    Or as a context manager:
        with SentinelSDK(config) as sdk:
            sdk.enqueue(entry)
    """

    def __init__(
        self,
        config: Optional[SentinelConfig] = None,
        *,
        transport: Optional[BatchTransport] = None,
    ):
        """
        Create an SDK instance. Nothing starts until install().

        Args:
            config: Configuration. Loaded from file/environment if None.
            transport: Transport to use instead of HttpTransport
        """
        self._config_source = config
        self._transport_override = transport

        self.config: Optional[SentinelConfig] = None
        self._buffer: Optional[RecordBuffer] = None
        self._transport: Optional[BatchTransport] = None
        self._scheduler: Optional[FlushScheduler] = None

        self._enabled = False
        self._installed = False
        self._install_lock = threading.Lock()

        # Reentrant: a signal handler may call shutdown() during shutdown()
        self._shutdown_lock = threading.RLock()
        self._shutting_down = False
        self._report: Optional[ShutdownReport] = None

        self._previous_handlers: Dict[int, Any] = {}
        self._atexit_registered = False

    # -- Installation -------------------------------------------------------

    def install(
        self,
        *,
        debug: Optional[bool] = None,
        batch_size: Optional[int] = None,
        register_handlers: bool = True,
    ) -> bool:
        """
        Validate configuration, start the scheduler and register
        termination handlers.

        Never raises. On any failure the SDK stays disabled.

        Args:
            debug: Override the configured debug flag
            batch_size: Override the configured batch size
            register_handlers: Install SIGINT/SIGTERM and atexit handlers

        Returns:
            True if the SDK is enabled
        """
        with self._install_lock:
            if self._installed:
                return self._enabled
            self._installed = True

            try:
                config = self._config_source or load_config()
                self.config = config.merged(debug=debug, batch_size=batch_size).validate()
            except ConfigurationError as e:
                logger.warning(
                    f"LogSentinel SDK disabled: missing or invalid configuration ({e}). "
                    "Please set LOGSENTINEL_API_KEY and LOGSENTINEL_BASE_URL environment variables."
                )
                return False
            except Exception as e:
                logger.warning(f"LogSentinel SDK disabled: could not load configuration ({e!r})")
                return False

            if self.config.debug:
                configure_debug_logging()

            logger.info("Initializing LogSentinel SDK...")

            try:
                self._buffer = RecordBuffer()
                self._transport = self._transport_override or HttpTransport(self.config)
                self._scheduler = FlushScheduler(
                    self._buffer,
                    self._transport,
                    batch_size=self.config.batch_size,
                    flush_interval_ms=self.config.flush_interval_ms,
                )
                self._scheduler.start()
                self._enabled = True

                if register_handlers:
                    self.install_handlers()
            except Exception as e:
                logger.warning(f"LogSentinel SDK disabled due to initialization error: {e!r}")
                self._disable()
                return False

            logger.info("LogSentinel SDK initialized successfully")
            logger.info(f"Batch size: {self.config.batch_size}, Debug mode: {self.config.debug}")
            return True

    def _disable(self) -> None:
        self._enabled = False
        if self._scheduler is not None:
            self._scheduler.stop()
        self.uninstall_handlers()

    # -- Event source API ---------------------------------------------------

    def enqueue(self, entry: LogEntry) -> bool:
        """
        Hand an entry to the SDK (non-blocking).

        Returns:
            True if the entry was accepted. False if the SDK is disabled
            or shutting down. Never raises.
        """
        if not self._enabled:
            return False

        try:
            accepted = self._buffer.enqueue(entry)
            if accepted:
                self._scheduler.notify()
            return accepted
        except Exception as e:
            logger.error(f"Failed to enqueue log entry: {e!r}")
            return False

    # -- Monitoring ---------------------------------------------------------

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def is_active(self) -> bool:
        """True if installed, enabled and not shutting down."""
        return self._enabled and not self._shutting_down

    @property
    def queue_size(self) -> int:
        """Number of entries waiting in the buffer."""
        return self._buffer.size() if self._buffer is not None else 0

    @property
    def last_report(self) -> Optional[ShutdownReport]:
        return self._report

    def health(self) -> Dict[str, Any]:
        """
        Snapshot of SDK health for monitoring.

        Counters are only available when the built-in HttpTransport is
        in use.
        """
        data: Dict[str, Any] = {
            "enabled": self._enabled,
            "active": self.is_active,
            "state": self._scheduler.state.value if self._scheduler else "stopped",
            "queue_size": self.queue_size,
            "in_flight": self._scheduler.in_flight if self._scheduler else 0,
        }
        stats = getattr(self._transport, "stats", None)
        if stats is not None:
            data.update(delivered=stats.delivered, rejected=stats.rejected, failed=stats.failed)
        return data

    # -- Shutdown -----------------------------------------------------------

    def shutdown(self, reason: str = "shutdown") -> Optional[ShutdownReport]:
        """
        Stop accepting entries and make one last bounded flush attempt.

        Sequence:
        1. Buffer stops accepting entries
        2. Periodic flush thread is stopped
        3. Final flush races the grace period; if the grace period wins
           the flush is left running in the background, not cancelled
        4. Remaining entries are reported as unsent

        Only the first call does any work. Later calls return the first
        call's report (None while it is still running, or if the SDK was
        never enabled).
        """
        with self._shutdown_lock:
            if self._shutting_down:
                return self._report
            self._shutting_down = True

        if not self._enabled:
            return None

        logger.info(f"Received {reason}, shutting down gracefully...")
        started = monotonic_ms()

        try:
            self._buffer.begin_shutdown()
            self._scheduler.stop()

            flushed = self._race_final_flush()

            unsent = self._scheduler.outstanding()
        except Exception as e:
            logger.error(f"Error during shutdown: {e!r}")
            flushed = False
            unsent = self._buffer.size()

        took = elapsed_ms(started)
        if unsent > 0:
            logger.warning(f"Shutdown complete. {unsent} logs could not be sent.")
        elif not flushed:
            logger.warning(f"Shutdown complete. Final flush still running after {format_duration(took)}.")
        else:
            logger.info(f"Shutdown complete in {format_duration(took)}. All logs flushed successfully.")

        self.uninstall_handlers()
        if flushed:
            self._close_transport()

        self._report = ShutdownReport(reason=reason, unsent=unsent, flushed=flushed, elapsed_ms=took)
        return self._report

    def _race_final_flush(self) -> bool:
        """
        Run the final flush against the grace period.

        Returns:
            True if the flush finished in time
        """
        worker = threading.Thread(
            target=self._final_flush,
            daemon=True,
            name="sentinel-final-flush",
        )
        try:
            worker.start()
        except RuntimeError as e:
            # No new threads at interpreter shutdown (atexit on 3.12+).
            # Per-attempt HTTP timeouts still bound the inline flush.
            logger.debug(f"Final flush running inline: {e}")
            self._final_flush()
            return True

        worker.join(timeout=self.config.shutdown_grace_period_ms / 1000.0)
        return not worker.is_alive()

    def _final_flush(self) -> None:
        try:
            self._scheduler.flush_now(wait=True)
        except Exception as e:
            logger.error(f"Unexpected error during final flush: {e!r}")

    def _close_transport(self) -> None:
        close: Optional[Callable[[], None]] = getattr(self._transport, "close", None)
        if close is not None:
            try:
                close()
            except Exception as e:
                logger.debug(f"Error closing transport: {e!r}")

    # -- Termination handlers ----------------------------------------------

    def install_handlers(self) -> None:
        """
        Register SIGINT/SIGTERM handlers and an atexit hook.

        Signal handlers can only be installed from the main thread; from
        any other thread only the atexit hook is registered.
        """
        if not self._atexit_registered:
            atexit.register(self._atexit_shutdown)
            self._atexit_registered = True

        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, skipping signal handlers")
            return

        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None or signum in self._previous_handlers:
                continue
            try:
                self._previous_handlers[signum] = signal.getsignal(signum)
                signal.signal(signum, self._handle_signal)
            except (OSError, ValueError) as e:
                self._previous_handlers.pop(signum, None)
                logger.debug(f"Could not install {name} handler: {e}")

    def uninstall_handlers(self) -> None:
        """Restore the signal handlers that were in place before install."""
        if self._atexit_registered:
            atexit.unregister(self._atexit_shutdown)
            self._atexit_registered = False

        if threading.current_thread() is not threading.main_thread():
            return

        for signum, previous in list(self._previous_handlers.items()):
            try:
                if signal.getsignal(signum) == self._handle_signal:
                    signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
            except (OSError, ValueError) as e:
                logger.debug(f"Could not restore handler for signal {signum}: {e}")
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        previous = self._previous_handlers.get(signum)
        self.shutdown(reason=signal.Signals(signum).name)

        # Hand the signal on so the host's own shutdown still happens
        if callable(previous):
            previous(signum, frame)
        elif previous in (None, signal.SIG_DFL):
            signal.signal(signum, signal.SIG_DFL)
            signal.raise_signal(signum)

    def _atexit_shutdown(self) -> None:
        self.shutdown(reason="exit")

    # -- Context manager ----------------------------------------------------

    def __enter__(self) -> "SentinelSDK":
        self.install(register_handlers=False)
        return self

    def __exit__(self, *args) -> None:
        self.shutdown(reason="context exit")


def configure_debug_logging() -> None:
    """Send sentinel_sdk DEBUG logs to stderr with a [LogSentinel] prefix."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)

    if any(getattr(h, "_sentinel_debug", False) for h in package_logger.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[LogSentinel] %(levelname)s %(message)s"))
    handler._sentinel_debug = True
    package_logger.addHandler(handler)


# Global default SDK instance
_default_sdk: Optional[SentinelSDK] = None
_sdk_lock = threading.Lock()


def get_default_sdk() -> Optional[SentinelSDK]:
    """Get the default SentinelSDK instance, if one was set."""
    with _sdk_lock:
        return _default_sdk


def set_default_sdk(sdk: Optional[SentinelSDK]) -> None:
    """
    Set the default SentinelSDK instance.

    A different previously set instance is shut down.

    Args:
        sdk: The SDK to use, or None to clear
    """
    global _default_sdk

    with _sdk_lock:
        previous, _default_sdk = _default_sdk, sdk

    if previous is not None and previous is not sdk:
        previous.shutdown(reason="replaced")


def init_sdk(
    config: Optional[SentinelConfig] = None,
    debug: Optional[bool] = None,
    batch_size: Optional[int] = None,
    register_handlers: bool = True,
) -> SentinelSDK:
    """
    Create, install and set the default SDK.

    Convenience function for setting up log shipping in one call. The
    returned SDK may be disabled if configuration is invalid; check
    is_enabled.

    Args:
        config: Configuration. Loaded from file/environment if None.
        debug: Override the configured debug flag
        batch_size: Override the configured batch size
        register_handlers: Install SIGINT/SIGTERM and atexit handlers

    Returns:
        The installed SentinelSDK
    """
    sdk = SentinelSDK(config)
    sdk.install(debug=debug, batch_size=batch_size, register_handlers=register_handlers)
    set_default_sdk(sdk)
    return sdk
