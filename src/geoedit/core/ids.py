"""ULID generation, version stamps, and timestamps."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone

from ulid import ULID

# Crockford Base32 alphabet: 0-9 A-Z excluding I, L, O, U
_CROCKFORD_B32_RE = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$", re.IGNORECASE)

# 2026-10-19T11-02-03-123Z, optionally with a -N collision suffix
_VERSION_STAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z(?:-\d+)?$"
)


def generate_session_id() -> str:
    """Generate a new edit-session ID with the sess_ prefix."""
    return f"sess_{ULID()}"


def generate_change_id() -> str:
    """Generate a new change-entry ID with the chg_ prefix."""
    return f"chg_{ULID()}"


def generate_feature_uid(prefix: str = "new") -> str:
    """Generate a new feature uid (``new_`` for created, ``imp_`` for imported)."""
    return f"{prefix}_{ULID()}"


def validate_id(id_str: str, expected_prefix: str) -> bool:
    """Validate a ``<prefix>_<ulid>`` identifier."""
    if not isinstance(id_str, str) or not isinstance(expected_prefix, str):
        return False

    parts = id_str.split("_", maxsplit=1)
    if len(parts) != 2:
        return False

    prefix, ulid_part = parts
    if prefix != expected_prefix:
        return False

    return bool(_CROCKFORD_B32_RE.match(ulid_part))


def now_ms() -> int:
    """Return the current time as epoch milliseconds."""
    return time.time_ns() // 1_000_000


def version_stamp(now: datetime | None = None) -> str:
    """Return a filesystem-safe, lexicographically sortable version id.

    UTC ISO-8601 with millisecond precision where ``:`` and ``.`` are
    replaced by ``-``, e.g. ``2026-10-19T11-02-03-123Z``.  Lexicographic
    order equals chronological order.
    """
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def parse_version_stamp(version_id: str) -> int | None:
    """Return epoch milliseconds encoded in a version id, or None."""
    match = _VERSION_STAMP_RE.match(version_id)
    if not match:
        return None
    day, hh, mm, ss, ms = match.groups()
    try:
        moment = datetime.strptime(f"{day}T{hh}:{mm}:{ss}", "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        return None
    moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp()) * 1000 + int(ms)
