"""Batched, best-effort delivery of audit entries.

Every change entry becomes one audit entry queued in a per-session buffer.
The buffer is drained as a whole after a trailing debounce; at most one
flush runs at a time.  Delivery failures are logged and counted in
``diagnostics`` but never raised into the edit path, and never retried.

On shutdown, ``teardown()`` hands whatever is still queued to the
transport's ``send_on_teardown`` primitive, synchronously.
``install_teardown_hook()`` runs it from ``atexit``.  A process killed
with SIGKILL (or a host losing power) skips ``atexit``: entries queued
during the last debounce window are lost in that case.
"""

from __future__ import annotations

import atexit
import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from geoedit.core.changes import audit_entry_from_change
from geoedit.core.errors import DeliveryFailure
from geoedit.core.scheduling import Debouncer, Scheduler, ThreadingScheduler
from geoedit.storage.audit import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 400


class AuditTransport(Protocol):
    def send(self, entries: list[dict]) -> None: ...

    def send_on_teardown(self, entries: list[dict]) -> None: ...


class AuditLogTransport:
    """Deliver batches straight into a local ``AuditLog``."""

    def __init__(self, audit_log: AuditLog, *, teardown_lock_timeout: float = 1.0) -> None:
        self.audit_log = audit_log
        self._teardown_log = AuditLog(audit_log.data_dir, lock_timeout=teardown_lock_timeout)

    def send(self, entries: list[dict]) -> None:
        self.audit_log.append(entries)

    def send_on_teardown(self, entries: list[dict]) -> None:
        # Same append, but never wait long for the lock while shutting down.
        self._teardown_log.append(entries)


@dataclass
class RecorderDiagnostics:
    flushes: int = 0
    delivered: int = 0
    dropped: int = 0
    failures: int = 0
    last_error: DeliveryFailure | None = None


class AuditRecorder:
    """Queue audit entries for one edit session and flush them in batches."""

    def __init__(
        self,
        transport: AuditTransport,
        session_id: str,
        user: str | None = None,
        *,
        scheduler: Scheduler | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        self.transport = transport
        self.session_id = session_id
        self.user = user
        self.diagnostics = RecorderDiagnostics()
        self._pending: list[dict] = []
        self._buffer_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._debouncer = Debouncer(
            scheduler or ThreadingScheduler(), debounce_ms / 1000, self._on_timer
        )
        self._hook_installed = False

    @property
    def pending(self) -> int:
        with self._buffer_lock:
            return len(self._pending)

    def record(self, change: dict) -> dict:
        """Queue the audit entry for *change* and restart the debounce.

        Never blocks on delivery.  Returns the queued entry.
        """
        entry = audit_entry_from_change(change, self.user, self.session_id)
        with self._buffer_lock:
            self._pending.append(entry)
        self._debouncer.trigger()
        return entry

    def flush(self) -> bool:
        """Drain and deliver the buffer unless a flush is already running.

        Returns False when another flush was in flight (nothing was taken).
        """
        if not self._flush_lock.acquire(blocking=False):
            return False
        try:
            batch = self._drain()
            if batch:
                self._deliver(batch)
        finally:
            self._flush_lock.release()
        return True

    def flush_now(self) -> int:
        """Synchronously deliver everything queued, waiting out a running flush.

        Returns the number of entries handed to the transport.
        """
        self._debouncer.cancel()
        with self._flush_lock:
            batch = self._drain()
            if batch:
                self._deliver(batch)
        return len(batch)

    def teardown(self) -> None:
        """Best-effort synchronous send of anything still queued.  Never raises."""
        self._debouncer.cancel()
        batch = self._drain()
        if not batch:
            return
        try:
            self.transport.send_on_teardown(batch)
        except Exception as exc:
            self._record_failure(batch, exc)
        else:
            self.diagnostics.delivered += len(batch)

    def install_teardown_hook(self) -> None:
        """Run ``teardown()`` at interpreter exit."""
        if not self._hook_installed:
            atexit.register(self.teardown)
            self._hook_installed = True

    def close(self) -> None:
        """Tear down and remove the exit hook."""
        self.teardown()
        if self._hook_installed:
            atexit.unregister(self.teardown)
            self._hook_installed = False

    # -- internals ----------------------------------------------------------

    def _on_timer(self) -> None:
        if not self.flush():
            # A flush is still running; try again after another quiet period.
            self._debouncer.trigger()

    def _drain(self) -> list[dict]:
        with self._buffer_lock:
            batch, self._pending = self._pending, []
        return batch

    def _deliver(self, batch: list[dict]) -> None:
        self.diagnostics.flushes += 1
        try:
            self.transport.send(batch)
        except Exception as exc:
            self._record_failure(batch, exc)
        else:
            self.diagnostics.delivered += len(batch)

    def _record_failure(self, batch: list[dict], exc: Exception) -> None:
        failure = DeliveryFailure(f"{type(exc).__name__}: {exc}")
        self.diagnostics.failures += 1
        self.diagnostics.dropped += len(batch)
        self.diagnostics.last_error = failure
        logger.warning(
            "audit delivery failed for session %s, %d entr%s dropped: %s",
            self.session_id,
            len(batch),
            "y" if len(batch) == 1 else "ies",
            failure,
        )
