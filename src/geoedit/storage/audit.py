"""Append-only audit log: line-delimited JSON with a commit rewrite.

The log lives at ``.geoedit/audit/audit.log``, one audit entry per line,
newest last.  Appends and the commit rewrite are serialized by the
``audit_log`` file lock; the rewrite itself goes through
``atomic_write`` so a reader never observes a half-written log.

Unparseable lines are never dropped: reads carry them as ``AuditLine``
objects with a ``CorruptionError`` attached and rewrites emit their raw
text unchanged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from geoedit.core.changes import serialize_audit_entry
from geoedit.core.errors import CorruptionError
from geoedit.storage.fs import atomic_write, jsonl_append
from geoedit.storage.locks import geoedit_lock

logger = logging.getLogger(__name__)

AUDIT_DIR = "audit"
AUDIT_LOG = "audit.log"
_LOCK_KEY = "audit_log"

RECENT_DEFAULT_LIMIT = 200
RECENT_MAX_LIMIT = 1000


@dataclass(frozen=True)
class AuditLine:
    """One non-blank line of the audit log."""

    line_no: int
    raw: str
    entry: dict | None = None
    error: CorruptionError | None = None

    @property
    def ok(self) -> bool:
        return self.entry is not None


def parse_audit_line(line_no: int, raw: str) -> AuditLine:
    """Parse one raw line; corruption is captured, never raised."""
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as exc:
        return AuditLine(line_no, raw, error=CorruptionError(line_no, raw, exc.msg))
    if not isinstance(obj, dict):
        return AuditLine(line_no, raw, error=CorruptionError(line_no, raw, "not a JSON object"))
    return AuditLine(line_no, raw, entry=obj)


class AuditLog:
    """File-backed audit store for one data directory."""

    def __init__(self, data_dir: Path, *, lock_timeout: float = 10) -> None:
        self.data_dir = data_dir
        self.path = data_dir / AUDIT_DIR / AUDIT_LOG
        self.locks_dir = data_dir / "locks"
        self.lock_timeout = lock_timeout

    def _lock(self):  # noqa: ANN202
        return geoedit_lock(self.locks_dir, _LOCK_KEY, timeout=self.lock_timeout)

    # -- writes -------------------------------------------------------------

    def append(self, entries: Iterable[dict]) -> int:
        """Append *entries* as one batch.  Returns the number written."""
        lines = [serialize_audit_entry(e) for e in entries]
        if not lines:
            return 0
        payload = "".join(lines)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock():
            if self._ends_mid_line():
                # A previous writer died mid-line; keep its fragment on a
                # line of its own instead of gluing our first entry to it.
                payload = "\n" + payload
            jsonl_append(self.path, payload)
        return len(lines)

    def rewrite_all(self, lines: Iterable[str]) -> None:
        """Atomically replace the whole log with *lines* (no trailing newlines)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock():
            self._write_lines(list(lines))

    def commit(self, session_id: str) -> int:
        """Mark every uncommitted entry of *session_id* as committed.

        Returns the number of entries flipped.  Entries of other sessions,
        entries already committed, and corrupt lines are written back
        byte-for-byte.  A missing log is not an error and reports zero.
        """
        if not self.path.exists():
            return 0

        with self._lock():
            if not self.path.exists():
                return 0
            updated = 0
            corrupt = 0
            out: list[str] = []
            for line in self._parse(self._read_raw_lines()):
                entry = line.entry
                if entry is None:
                    corrupt += 1
                    out.append(line.raw)
                elif entry.get("sessionId") == session_id and entry.get("committed") is not True:
                    out.append(serialize_audit_entry({**entry, "committed": True}).rstrip("\n"))
                    updated += 1
                else:
                    out.append(line.raw)
            if updated:
                self._write_lines(out)

        if corrupt:
            logger.warning("audit commit preserved %d unparseable line(s) in %s", corrupt, self.path)
        logger.info("audit commit: session %s, %d entr%s committed", session_id, updated,
                    "y" if updated == 1 else "ies")
        return updated

    # -- reads --------------------------------------------------------------

    def read_all(self) -> list[AuditLine]:
        """Return every non-blank line of the log, newest last."""
        return self._parse(self._read_raw_lines())

    def entries(self) -> list[dict]:
        """Return the parsed entries only, skipping corrupt lines."""
        return [line.entry for line in self.read_all() if line.entry is not None]

    def recent(
        self,
        limit: int = RECENT_DEFAULT_LIMIT,
        *,
        user: str | None = None,
        committed: bool | None = None,
    ) -> list[dict]:
        """Return parsed entries among the last *limit* lines, optionally filtered."""
        limit = max(1, min(RECENT_MAX_LIMIT, int(limit)))
        raw_lines = self._read_raw_lines()[-limit:]
        picked = [line.entry for line in self._parse(raw_lines) if line.entry is not None]
        if user:
            picked = [e for e in picked if (e.get("user") or "") == user]
        if committed is True:
            picked = [e for e in picked if e.get("committed") is True]
        elif committed is False:
            picked = [e for e in picked if e.get("committed") is not True]
        return picked

    # -- internals ----------------------------------------------------------

    def _read_raw_lines(self) -> list[str]:
        try:
            text = self.path.read_text(encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError:
            return []
        return [line for line in text.split("\n") if line.strip()]

    def _parse(self, raw_lines: list[str]) -> list[AuditLine]:
        lines = [parse_audit_line(i, raw) for i, raw in enumerate(raw_lines, start=1)]
        for line in lines:
            if line.error is not None:
                logger.debug("%s", line.error)
        return lines

    def _write_lines(self, lines: list[str]) -> None:
        text = "".join(f"{line}\n" for line in lines)
        atomic_write(self.path, text.encode("utf-8", errors="surrogateescape"))

    def _ends_mid_line(self) -> bool:
        try:
            with open(self.path, "rb") as fh:
                fh.seek(0, 2)
                if fh.tell() == 0:
                    return False
                fh.seek(-1, 2)
                return fh.read(1) != b"\n"
        except FileNotFoundError:
            return False
