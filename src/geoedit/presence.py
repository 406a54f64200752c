"""In-process presence registry: who is currently editing.

Members join with a display name and their network origin, which is
masked before it is stored.  Every join and leave is broadcast to the
subscribed listeners together with the full roster.  Listeners are
fire-and-forget: a failing listener is logged and skipped, never allowed
to interrupt the others or the caller.

Presence is informational only; nothing in the edit path consults it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from ulid import ULID

from geoedit.core.changes import DEFAULT_USER
from geoedit.core.ids import now_ms

logger = logging.getLogger(__name__)

MAX_DISPLAY_NAME = 40

PresenceListener = Callable[[str, list[dict]], None]


def mask_origin(ip: str | None) -> str:
    """Hide the host part of an address.

    ``192.168.1.23`` becomes ``192.168.1.xxx`` and the last IPv6 group
    becomes ``xxxx``.  Anything unrecognizable is ``"unknown"``.
    """
    if not ip:
        return "unknown"
    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            parts[3] = "xxx"
        return ".".join(parts)
    if ":" in ip:
        parts = ip.split(":")
        parts[-1] = "xxxx"
        return ":".join(parts)
    return "unknown"


def client_origin(forwarded_for: str | None = None, real_ip: str | None = None) -> str:
    """Pick the client address from proxy headers (first forwarded hop wins)."""
    raw = forwarded_for or real_ip or ""
    return raw.split(",")[0].strip()


class PresenceHub:
    """Roster of connected editors plus join/leave broadcast."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._members: dict[str, dict] = {}
        self._listeners: list[PresenceListener] = []

    def join(self, display_name: str | None, origin: str | None = None) -> dict:
        """Register a member and broadcast ``join``.  Returns the member record."""
        name = (display_name or "").strip()[:MAX_DISPLAY_NAME] or DEFAULT_USER
        member = {
            "id": f"pres_{ULID()}",
            "displayName": name,
            "maskedOrigin": mask_origin(origin),
            "joinedAt": now_ms(),
        }
        with self._lock:
            self._members[member["id"]] = member
        self._broadcast("join")
        return dict(member)

    def leave(self, member_id: str) -> bool:
        """Remove a member.  Broadcasts ``leave`` only if the member was present."""
        with self._lock:
            removed = self._members.pop(member_id, None) is not None
        if removed:
            self._broadcast("leave")
        return removed

    def roster(self) -> list[dict]:
        """Current members in join order."""
        with self._lock:
            return [dict(m) for m in self._members.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def subscribe(self, listener: PresenceListener) -> None:
        """Add *listener* and send it the current roster as a ``state`` event."""
        with self._lock:
            self._listeners.append(listener)
        self._notify(listener, "state", self.roster())

    def unsubscribe(self, listener: PresenceListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def clear(self) -> None:
        """Drop every member and listener without broadcasting."""
        with self._lock:
            self._members.clear()
            self._listeners.clear()

    def _broadcast(self, event_type: str) -> None:
        roster = self.roster()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            self._notify(listener, event_type, roster)

    @staticmethod
    def _notify(listener: PresenceListener, event_type: str, roster: list[dict]) -> None:
        try:
            listener(event_type, roster)
        except Exception as exc:
            logger.warning("presence listener error on %s: %s", event_type, exc)


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_hub_lock = threading.Lock()
_hub: PresenceHub | None = None


def get_presence_hub() -> PresenceHub:
    """Return the process-wide hub, creating it on first use."""
    global _hub
    with _hub_lock:
        if _hub is None:
            _hub = PresenceHub()
        return _hub


def reset_presence_hub() -> None:
    """Discard the process-wide hub (tests)."""
    global _hub
    with _hub_lock:
        if _hub is not None:
            _hub.clear()
        _hub = None
