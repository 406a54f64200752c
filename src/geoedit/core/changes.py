"""Change entries, audit projection, and serialization."""

from __future__ import annotations

import json

from geoedit.core.features import feature_uid, first_name
from geoedit.core.ids import generate_change_id, now_ms

CHANGE_TYPES: frozenset[str] = frozenset({"create", "edit", "move", "delete", "merge"})

# (len(before), len(after)) required for each change type.
_SHAPES: dict[str, tuple[int, int]] = {
    "create": (0, 1),
    "edit": (1, 1),
    "move": (1, 1),
    "delete": (1, 0),
    "merge": (2, 1),
}

DEFAULT_USER = "guest"


# ---------------------------------------------------------------------------
# Change entries
# ---------------------------------------------------------------------------


def create_change(
    type: str,
    summary: str,
    before: list[dict],
    after: list[dict],
    *,
    change_id: str | None = None,
    ts: int | None = None,
) -> dict:
    """Build a complete change entry dict.

    Raises:
        ValueError: If *type* is unknown or the before/after counts do not
            match the shape of that change type.
    """
    if type not in CHANGE_TYPES:
        raise ValueError(f"Unknown change type: '{type}'")
    expected = _SHAPES[type]
    if (len(before), len(after)) != expected:
        raise ValueError(
            f"'{type}' change needs {expected[0]} before / {expected[1]} after feature(s), "
            f"got {len(before)} / {len(after)}"
        )
    return {
        "id": change_id if change_id is not None else generate_change_id(),
        "ts": ts if ts is not None else now_ms(),
        "type": type,
        "summary": summary,
        "before": list(before),
        "after": list(after),
        "expanded": False,
    }


def _name_or_placeholder(feature: dict) -> str:
    return first_name(feature) or "no name"


def summarize_create(feature: dict) -> str:
    return f"Create {feature_uid(feature)}"


def summarize_edit(feature: dict) -> str:
    return f"Edit {feature_uid(feature)}"


def summarize_move(feature: dict) -> str:
    return f"Move {feature_uid(feature)} {_name_or_placeholder(feature)}"


def summarize_delete(feature: dict) -> str:
    return f"Delete {feature_uid(feature)} ({_name_or_placeholder(feature)})"


def summarize_merge(anchor: dict, candidate: dict) -> str:
    return f"Merge {feature_uid(candidate)} → {feature_uid(anchor)}"


# ---------------------------------------------------------------------------
# Audit projection
# ---------------------------------------------------------------------------


def slim_feature(feature: dict) -> dict:
    """Project a feature to the ``{uid, name, coords}`` view kept in the audit log."""
    props = feature.get("properties") or {}
    geometry = feature.get("geometry") or {}
    coords = geometry.get("coordinates")
    return {
        "uid": props.get("uid"),
        "name": first_name(feature),
        "coords": [coords[0], coords[1]] if coords else None,
    }


def touched_uids(change: dict) -> list[str]:
    """Return the unique uids a change touched, before-features first."""
    seen: list[str] = []
    for feature in [*change["before"], *change["after"]]:
        uid = (feature.get("properties") or {}).get("uid")
        if uid and uid not in seen:
            seen.append(uid)
    return seen


def audit_entry_from_change(
    change: dict,
    user: str | None,
    session_id: str,
    *,
    ts: int | None = None,
) -> dict:
    """Build the durable audit entry for *change*.

    Entries start uncommitted; only the save protocol flips ``committed``.
    """
    return {
        "ts": ts if ts is not None else now_ms(),
        "user": user or DEFAULT_USER,
        "type": change["type"],
        "summary": change["summary"],
        "uids": touched_uids(change),
        "before": [slim_feature(f) for f in change["before"]],
        "after": [slim_feature(f) for f in change["after"]],
        "committed": False,
        "sessionId": session_id,
    }


def serialize_audit_entry(entry: dict) -> str:
    """Serialize an audit entry to one compact, ASCII-only JSON line (trailing newline).

    Non-ASCII text, lone surrogates included, is written as ``\\u`` escapes.
    """
    return json.dumps(entry, sort_keys=True, separators=(",", ":")) + "\n"
