"""Tests for sentinel_sdk.sdk module."""

import os
import signal
import subprocess
import sys
import textwrap
import threading
import time
from dataclasses import replace
from pathlib import Path

import pytest
import responses

from conftest import BASE_URL, LOGS_URL, BlockingTransport, RecordingTransport, make_entry

import sentinel_sdk.sdk as sdk_module
from sentinel_sdk.config import SentinelConfig
from sentinel_sdk.sdk import (
    SentinelSDK,
    get_default_sdk,
    init_sdk,
    set_default_sdk,
)


def wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def sdk_factory(config):
    """Build installed SDKs and make sure they are shut down."""
    created = []

    def factory(transport=None, **overrides):
        sdk = SentinelSDK(replace(config, **overrides), transport=transport)
        sdk.install(register_handlers=False)
        created.append(sdk)
        return sdk

    yield factory

    for sdk in created:
        sdk.shutdown(reason="test teardown")


class TestInstall:
    """Installation and self-disabling."""

    def test_install_enables(self, sdk_factory, recording_transport):
        sdk = sdk_factory(recording_transport)

        assert sdk.is_enabled
        assert sdk.is_active
        assert sdk.health()["state"] == "running"

    def test_invalid_config_disables(self, recording_transport):
        sdk = SentinelSDK(SentinelConfig(api_key="", base_url=BASE_URL), transport=recording_transport)

        assert sdk.install(register_handlers=False) is False
        assert sdk.is_enabled is False
        assert sdk.enqueue(make_entry()) is False
        assert sdk.queue_size == 0
        assert sdk.shutdown() is None

    def test_bad_url_disables(self):
        sdk = SentinelSDK(SentinelConfig(api_key="k", base_url="not a url"))

        assert sdk.install(register_handlers=False) is False
        assert sdk.health()["state"] == "stopped"

    def test_missing_env_disables(self):
        sdk = SentinelSDK()

        assert sdk.install(register_handlers=False) is False
        assert sdk.enqueue(make_entry()) is False

    def test_config_from_env(self, monkeypatch, recording_transport):
        monkeypatch.setenv("LOGSENTINEL_API_KEY", "env-key")
        monkeypatch.setenv("LOGSENTINEL_BASE_URL", f"{BASE_URL}/")
        monkeypatch.setenv("LOGSENTINEL_BATCH_SIZE", "3")
        sdk = SentinelSDK(transport=recording_transport)

        try:
            assert sdk.install(register_handlers=False) is True
            assert sdk.config.api_key == "env-key"
            assert sdk.config.base_url == BASE_URL
            assert sdk.config.batch_size == 3
        finally:
            sdk.shutdown()

    def test_install_overrides_win(self, config, recording_transport):
        sdk = SentinelSDK(config, transport=recording_transport)
        try:
            sdk.install(batch_size=2, register_handlers=False)
            assert sdk.config.batch_size == 2
        finally:
            sdk.shutdown()

    def test_install_twice_is_noop(self, sdk_factory, recording_transport):
        sdk = sdk_factory(recording_transport)
        scheduler = sdk._scheduler

        assert sdk.install(register_handlers=False) is True
        assert sdk._scheduler is scheduler

    def test_initialization_error_disables(self, config):
        class BrokenSDK(SentinelSDK):
            def install_handlers(self):
                raise RuntimeError("no handlers for you")

        sdk = BrokenSDK(config, transport=RecordingTransport())

        assert sdk.install() is False
        assert sdk.is_enabled is False
        assert sdk.health()["state"] == "stopped"


class TestEnqueue:
    """Event source API."""

    def test_threshold_flush_end_to_end(self, sdk_factory):
        transport = RecordingTransport()
        sdk = sdk_factory(transport, batch_size=5, flush_interval_ms=60_000)
        entries = [make_entry(i) for i in range(5)]

        for entry in entries:
            assert sdk.enqueue(entry) is True

        assert wait_for(lambda: len(transport.delivered) == 5)
        assert transport.batches == [tuple(entries)]
        assert sdk.queue_size == 0

    def test_enqueue_is_non_blocking_while_transport_stalls(self, sdk_factory, blocking_transport):
        sdk = sdk_factory(blocking_transport, batch_size=1)
        sdk.enqueue(make_entry(0))
        assert blocking_transport.started.wait(timeout=2)

        start = time.time()
        for i in range(100):
            sdk.enqueue(make_entry(i))
        elapsed = time.time() - start

        assert elapsed < 0.1
        assert sdk.queue_size == 100

    def test_enqueue_after_shutdown_rejected(self, sdk_factory, recording_transport):
        sdk = sdk_factory(recording_transport)
        sdk.shutdown()

        assert sdk.enqueue(make_entry()) is False
        assert sdk.is_active is False


class TestShutdown:
    """Shutdown sequencing and the grace-period race."""

    def test_final_flush_delivers_partial_batch(self, sdk_factory):
        transport = RecordingTransport(delay=0.2)
        sdk = sdk_factory(transport, batch_size=5, shutdown_grace_period_ms=5000)
        sdk.enqueue(make_entry(0))
        sdk.enqueue(make_entry(1))

        report = sdk.shutdown()

        assert report.unsent == 0
        assert report.flushed is True
        assert [e.url for e in transport.delivered] == ["/items/0", "/items/1"]

    def test_stalled_delivery_abandoned_after_grace_period(self, sdk_factory, blocking_transport):
        sdk = sdk_factory(blocking_transport, batch_size=5, shutdown_grace_period_ms=50)
        sdk.enqueue(make_entry(0))
        sdk.enqueue(make_entry(1))

        start = time.time()
        report = sdk.shutdown()
        elapsed = time.time() - start

        assert report.unsent == 2
        assert report.flushed is False
        assert elapsed < 1.0

    def test_shutdown_is_idempotent(self, sdk_factory, recording_transport):
        sdk = sdk_factory(recording_transport)
        sdk.enqueue(make_entry())

        first = sdk.shutdown()
        second = sdk.shutdown(reason="again")

        assert second is first
        assert len(recording_transport.delivered) == 1

    def test_concurrent_shutdown_runs_once(self, sdk_factory):
        transport = RecordingTransport(delay=0.05)
        sdk = sdk_factory(transport)
        for i in range(3):
            sdk.enqueue(make_entry(i))

        threads = [threading.Thread(target=sdk.shutdown) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(transport.batches) == 1
        assert sdk.last_report.unsent == 0

    def test_shutdown_waits_for_running_timer_flush(self, sdk_factory):
        transport = BlockingTransport()
        sdk = sdk_factory(transport, batch_size=1, shutdown_grace_period_ms=2000)
        sdk.enqueue(make_entry(0))
        assert transport.started.wait(timeout=2)

        # Buffered behind the stalled flush
        sdk._buffer.enqueue(make_entry(1))
        threading.Timer(0.05, transport.release.set).start()

        report = sdk.shutdown()

        assert report.flushed is True
        assert report.unsent == 0
        assert [len(b) for b in transport.batches] == [1, 1]

    def test_stops_scheduler(self, sdk_factory, recording_transport):
        sdk = sdk_factory(recording_transport)
        sdk.shutdown()

        assert sdk.health()["state"] == "stopped"

    @responses.activate
    def test_with_http_transport(self, config):
        responses.add(responses.POST, LOGS_URL, status=200)
        sdk = SentinelSDK(config)
        sdk.install(register_handlers=False)
        sdk.enqueue(make_entry(0))

        report = sdk.shutdown()

        assert report.unsent == 0
        assert len(responses.calls) == 1
        assert sdk.health()["delivered"] == 1

    def test_context_manager(self, config, recording_transport):
        with SentinelSDK(config, transport=recording_transport) as sdk:
            assert sdk.is_active
            sdk.enqueue(make_entry())

        assert sdk.last_report is not None
        assert len(recording_transport.delivered) == 1

    def test_final_flush_inline_when_threads_unavailable(self, sdk_factory, recording_transport, monkeypatch):
        sdk = sdk_factory(recording_transport)
        sdk.enqueue(make_entry(0))
        sdk.enqueue(make_entry(1))

        class NoStartThread(threading.Thread):
            def start(self):
                raise RuntimeError("can't create new thread at interpreter shutdown")

        monkeypatch.setattr(sdk_module.threading, "Thread", NoStartThread)

        report = sdk.shutdown(reason="exit")

        assert report.flushed is True
        assert report.unsent == 0
        assert [e.url for e in recording_transport.delivered] == ["/items/0", "/items/1"]

    def test_shutdown_while_holding_buffer_lock(self, sdk_factory, recording_transport):
        # Same thread state as a signal handler interrupting enqueue()
        sdk = sdk_factory(recording_transport, shutdown_grace_period_ms=100)
        sdk.enqueue(make_entry(0))

        sdk._buffer._lock.acquire()
        try:
            start = time.time()
            report = sdk.shutdown(reason="SIGTERM")
            elapsed = time.time() - start
        finally:
            sdk._buffer._lock.release()

        assert elapsed < 1.0
        assert report.flushed is False
        assert report.unsent == 1
        assert wait_for(lambda: len(recording_transport.delivered) == 1)

    def test_shutdown_reentered_on_same_thread(self, sdk_factory, recording_transport):
        sdk = sdk_factory(recording_transport)
        sdk.enqueue(make_entry(0))

        with sdk._shutdown_lock:
            report = sdk.shutdown(reason="SIGINT")

        assert report.unsent == 0
        assert len(recording_transport.delivered) == 1


PRELUDE = textwrap.dedent("""
    import sys

    from sentinel_sdk.config import SentinelConfig
    from sentinel_sdk.entry import LogEntry
    from sentinel_sdk.sdk import SentinelSDK


    class FileTransport:
        def __init__(self, path):
            self.path = path

        def send_batch(self, batch):
            with open(self.path, "a", encoding="utf-8") as f:
                for entry in batch:
                    f.write(entry.url + "\\n")
            return len(batch)


    config = SentinelConfig(
        api_key="k",
        base_url="https://collector.example.com",
        flush_interval_ms=60000,
        shutdown_grace_period_ms=300,
    )
    sdk = SentinelSDK(config, transport=FileTransport(sys.argv[1]))
    sdk.install()
""")


def run_script(tmp_path, body):
    """Run PRELUDE + body in a fresh interpreter; returns (process, delivered urls)."""
    script = tmp_path / "host_app.py"
    script.write_text(PRELUDE + textwrap.dedent(body), encoding="utf-8")
    out = tmp_path / "delivered.txt"

    package_root = str(Path(__file__).resolve().parents[1])
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [package_root, env.get("PYTHONPATH")]))

    proc = subprocess.run(
        [sys.executable, str(script), str(out)],
        env=env,
        capture_output=True,
        text=True,
        timeout=15,
    )
    delivered = out.read_text(encoding="utf-8").split() if out.exists() else []
    return proc, delivered


class TestProcessExit:
    """Shutdown paths that only run when the interpreter exits."""

    def test_normal_exit_flushes_partial_batch(self, tmp_path):
        proc, delivered = run_script(tmp_path, """
            sdk.enqueue(LogEntry(method="GET", url="/a"))
            sdk.enqueue(LogEntry(method="GET", url="/b"))
        """)

        assert proc.returncode == 0, proc.stderr
        assert delivered == ["/a", "/b"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_sigterm_during_enqueue_terminates(self, tmp_path):
        proc, _ = run_script(tmp_path, """
            import os
            import signal
            import time

            # Main thread holds the buffer lock, as it does inside enqueue()
            sdk._buffer._lock.acquire()
            os.kill(os.getpid(), signal.SIGTERM)
            time.sleep(30)
        """)

        assert proc.returncode == -signal.SIGTERM

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_sigterm_flushes_then_terminates(self, tmp_path):
        proc, delivered = run_script(tmp_path, """
            import os
            import signal
            import time

            sdk.enqueue(LogEntry(method="GET", url="/a"))
            os.kill(os.getpid(), signal.SIGTERM)
            time.sleep(30)
        """)

        assert proc.returncode == -signal.SIGTERM
        assert delivered == ["/a"]


class TestSignalHandlers:
    """SIGINT/SIGTERM registration and chaining."""

    def test_handlers_installed_and_restored(self, config, recording_transport):
        before = signal.getsignal(signal.SIGTERM)
        sdk = SentinelSDK(config, transport=recording_transport)
        sdk.install()

        try:
            assert signal.getsignal(signal.SIGTERM) == sdk._handle_signal
        finally:
            sdk.shutdown()

        assert signal.getsignal(signal.SIGTERM) == before

    def test_signal_triggers_shutdown_and_chains(self, config, recording_transport):
        received = []
        previous = signal.signal(signal.SIGTERM, lambda signum, frame: received.append(signum))
        try:
            sdk = SentinelSDK(config, transport=recording_transport)
            sdk.install()
            sdk.enqueue(make_entry())

            sdk._handle_signal(signal.SIGTERM, None)

            assert sdk.last_report.reason == "SIGTERM"
            assert len(recording_transport.delivered) == 1
            assert received == [signal.SIGTERM]
        finally:
            signal.signal(signal.SIGTERM, previous)

    def test_uninstall_handlers(self, config, recording_transport):
        before = signal.getsignal(signal.SIGINT)
        sdk = SentinelSDK(config, transport=recording_transport)
        sdk.install()
        sdk.uninstall_handlers()

        try:
            assert signal.getsignal(signal.SIGINT) == before
        finally:
            sdk.shutdown()


class TestDefaultSDK:
    """Global default SDK helpers."""

    def test_init_sdk_sets_default(self, config):
        sdk = init_sdk(config, register_handlers=False)

        assert get_default_sdk() is sdk
        assert sdk.is_enabled

    def test_replacing_default_shuts_down_previous(self, config, recording_transport):
        first = SentinelSDK(config, transport=recording_transport)
        first.install(register_handlers=False)
        set_default_sdk(first)

        set_default_sdk(None)

        assert get_default_sdk() is None
        assert first.last_report is not None
        assert first.is_active is False
