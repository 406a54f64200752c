"""Tests for the debounced audit recorder."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from geoedit.core.changes import create_change
from geoedit.core.errors import DeliveryFailure
from geoedit.core.features import make_point_feature
from geoedit.core.scheduling import ManualScheduler
from geoedit.recorder import AuditLogTransport, AuditRecorder
from geoedit.storage.audit import AuditLog


def _change(uid: str) -> dict:
    feature = make_point_feature(23.7, 37.95, {"name": uid}, uid=uid)
    return create_change("create", f"Create {uid}", [], [feature])


class _MemoryTransport:
    def __init__(self) -> None:
        self.batches: list[list[dict]] = []
        self.teardown_batches: list[list[dict]] = []

    def send(self, entries: list[dict]) -> None:
        self.batches.append(entries)

    def send_on_teardown(self, entries: list[dict]) -> None:
        self.teardown_batches.append(entries)


class _FailingTransport(_MemoryTransport):
    def send(self, entries: list[dict]) -> None:
        raise OSError("network down")

    def send_on_teardown(self, entries: list[dict]) -> None:
        raise OSError("still down")


@pytest.fixture()
def transport() -> _MemoryTransport:
    return _MemoryTransport()


@pytest.fixture()
def recorder(transport: _MemoryTransport, scheduler: ManualScheduler) -> AuditRecorder:
    return AuditRecorder(transport, "sess_1", "alice", scheduler=scheduler, debounce_ms=400)


class TestRecord:
    def test_entry_shape(self, recorder: AuditRecorder) -> None:
        entry = recorder.record(_change("u1"))
        assert entry["user"] == "alice"
        assert entry["sessionId"] == "sess_1"
        assert entry["committed"] is False
        assert entry["uids"] == ["u1"]
        assert entry["after"] == [{"uid": "u1", "name": "u1", "coords": [23.7, 37.95]}]
        assert recorder.pending == 1

    def test_missing_user_becomes_guest(
        self, transport: _MemoryTransport, scheduler: ManualScheduler
    ) -> None:
        rec = AuditRecorder(transport, "s", None, scheduler=scheduler)
        assert rec.record(_change("u1"))["user"] == "guest"

    def test_does_not_deliver_synchronously(
        self, recorder: AuditRecorder, transport: _MemoryTransport
    ) -> None:
        recorder.record(_change("u1"))
        assert transport.batches == []


class TestDebounce:
    def test_burst_delivered_as_one_batch(
        self,
        recorder: AuditRecorder,
        transport: _MemoryTransport,
        scheduler: ManualScheduler,
    ) -> None:
        for n in range(5):
            recorder.record(_change(f"u{n}"))
            scheduler.advance(0.25)
        assert transport.batches == []

        scheduler.advance(0.25)
        assert len(transport.batches) == 1
        assert [e["uids"][0] for e in transport.batches[0]] == [f"u{n}" for n in range(5)]
        assert recorder.pending == 0
        assert recorder.diagnostics.flushes == 1
        assert recorder.diagnostics.delivered == 5

    def test_quiet_gap_splits_batches(
        self,
        recorder: AuditRecorder,
        transport: _MemoryTransport,
        scheduler: ManualScheduler,
    ) -> None:
        recorder.record(_change("u1"))
        scheduler.advance(0.5)
        recorder.record(_change("u2"))
        scheduler.advance(0.5)
        assert [len(b) for b in transport.batches] == [1, 1]

    def test_empty_flush_sends_nothing(
        self, recorder: AuditRecorder, transport: _MemoryTransport
    ) -> None:
        assert recorder.flush() is True
        assert transport.batches == []
        assert recorder.diagnostics.flushes == 0


class TestFailures:
    def test_failure_counted_not_raised(
        self, scheduler: ManualScheduler, caplog: pytest.LogCaptureFixture
    ) -> None:
        rec = AuditRecorder(_FailingTransport(), "sess_x", "bob", scheduler=scheduler)
        rec.record(_change("u1"))
        rec.record(_change("u2"))

        with caplog.at_level(logging.WARNING, logger="geoedit.recorder"):
            scheduler.advance(1)

        diag = rec.diagnostics
        assert diag.failures == 1
        assert diag.dropped == 2
        assert diag.delivered == 0
        assert isinstance(diag.last_error, DeliveryFailure)
        assert "network down" in str(diag.last_error)
        assert rec.pending == 0
        assert "sess_x" in caplog.text

    def test_no_retry(self, scheduler: ManualScheduler) -> None:
        transport = _FailingTransport()
        rec = AuditRecorder(transport, "s", scheduler=scheduler)
        rec.record(_change("u1"))
        scheduler.advance(1)
        scheduler.advance(10)
        assert rec.diagnostics.failures == 1
        assert scheduler.pending == 0

    def test_flush_now_failure_does_not_raise(self, scheduler: ManualScheduler) -> None:
        rec = AuditRecorder(_FailingTransport(), "s", scheduler=scheduler)
        rec.record(_change("u1"))
        assert rec.flush_now() == 1
        assert rec.diagnostics.dropped == 1


class TestSingleFlight:
    def test_flush_refused_while_running(
        self, scheduler: ManualScheduler
    ) -> None:
        entered = threading.Event()
        release = threading.Event()

        class _SlowTransport(_MemoryTransport):
            def send(self, entries: list[dict]) -> None:
                entered.set()
                release.wait(5)
                super().send(entries)

        transport = _SlowTransport()
        rec = AuditRecorder(transport, "s", scheduler=scheduler)
        rec.record(_change("u1"))

        worker = threading.Thread(target=rec.flush)
        worker.start()
        assert entered.wait(5)

        rec.record(_change("u2"))
        assert rec.flush() is False
        assert rec.pending == 1

        release.set()
        worker.join(5)
        assert rec.flush() is True
        assert [len(b) for b in transport.batches] == [1, 1]

    def test_timer_retriggers_when_busy(self, scheduler: ManualScheduler) -> None:
        transport = _MemoryTransport()
        rec = AuditRecorder(transport, "s", scheduler=scheduler, debounce_ms=400)
        rec.record(_change("u1"))

        rec._flush_lock.acquire()
        try:
            scheduler.advance(0.5)
            assert transport.batches == []
            assert scheduler.pending == 1
        finally:
            rec._flush_lock.release()

        scheduler.advance(0.5)
        assert len(transport.batches) == 1


class TestFlushNow:
    def test_cancels_timer_and_delivers(
        self,
        recorder: AuditRecorder,
        transport: _MemoryTransport,
        scheduler: ManualScheduler,
    ) -> None:
        recorder.record(_change("u1"))
        recorder.record(_change("u2"))
        assert recorder.flush_now() == 2
        assert scheduler.pending == 0
        assert len(transport.batches) == 1

    def test_nothing_queued(self, recorder: AuditRecorder) -> None:
        assert recorder.flush_now() == 0


class TestTeardown:
    def test_uses_teardown_primitive(
        self,
        recorder: AuditRecorder,
        transport: _MemoryTransport,
        scheduler: ManualScheduler,
    ) -> None:
        recorder.record(_change("u1"))
        recorder.teardown()

        assert transport.batches == []
        assert len(transport.teardown_batches) == 1
        assert scheduler.pending == 0
        assert recorder.diagnostics.delivered == 1

    def test_empty_buffer_sends_nothing(
        self, recorder: AuditRecorder, transport: _MemoryTransport
    ) -> None:
        recorder.teardown()
        assert transport.teardown_batches == []

    def test_never_raises(self, scheduler: ManualScheduler) -> None:
        rec = AuditRecorder(_FailingTransport(), "s", scheduler=scheduler)
        rec.record(_change("u1"))
        rec.teardown()
        assert rec.diagnostics.dropped == 1

    def test_hook_registration(
        self, recorder: AuditRecorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        registered: list = []
        unregistered: list = []
        monkeypatch.setattr("geoedit.recorder.atexit.register", registered.append)
        monkeypatch.setattr("geoedit.recorder.atexit.unregister", unregistered.append)

        recorder.install_teardown_hook()
        recorder.install_teardown_hook()
        assert registered == [recorder.teardown]

        recorder.close()
        assert unregistered == [recorder.teardown]


class TestAuditLogTransport:
    def test_batches_land_in_log(self, data_dir: Path, scheduler: ManualScheduler) -> None:
        log = AuditLog(data_dir)
        rec = AuditRecorder(AuditLogTransport(log), "sess_1", "alice", scheduler=scheduler)
        rec.record(_change("u1"))
        rec.record(_change("u2"))
        scheduler.advance(1)

        entries = log.entries()
        assert [e["uids"] for e in entries] == [["u1"], ["u2"]]
        assert all(e["committed"] is False for e in entries)

    def test_odd_name_does_not_drop_batch(
        self, data_dir: Path, scheduler: ManualScheduler
    ) -> None:
        log = AuditLog(data_dir)
        rec = AuditRecorder(AuditLogTransport(log), "sess_1", scheduler=scheduler)
        feature = make_point_feature(23.7, 37.95, {"name": "bad \ud800"}, uid="odd")
        rec.record(create_change("create", "Create odd", [], [feature]))
        rec.record(_change("u2"))
        scheduler.advance(1)

        assert rec.diagnostics.failures == 0
        assert [e["uids"] for e in log.entries()] == [["odd"], ["u2"]]

    def test_teardown_appends(self, data_dir: Path, scheduler: ManualScheduler) -> None:
        log = AuditLog(data_dir)
        rec = AuditRecorder(AuditLogTransport(log), "sess_1", scheduler=scheduler)
        rec.record(_change("u1"))
        rec.close()
        assert len(log.entries()) == 1
