"""Default config generation and loading."""

from __future__ import annotations

import json
from typing import TypedDict


class GeoEditConfig(TypedDict, total=False):
    schema_version: int
    default_user: str
    audit_debounce_ms: int
    merge_confirm_distance_m: float
    cluster_radius_px: int
    cluster_min_points: int
    cluster_max_zoom: int
    jitter_radius_px: int
    detail_zoom: int
    undo_limit: int
    frame_interval_ms: int


def default_config() -> GeoEditConfig:
    """Return the default geoedit configuration.

    The returned dict, when serialized with
    ``json.dumps(data, sort_keys=True, indent=2) + "\\n"``,
    produces the canonical default config.json.
    """
    return {
        "schema_version": 1,
        "default_user": "guest",
        "audit_debounce_ms": 400,
        "merge_confirm_distance_m": 500,
        "cluster_radius_px": 50,
        "cluster_min_points": 2,
        "cluster_max_zoom": 22,
        "jitter_radius_px": 16,
        "detail_zoom": 13,
        "undo_limit": 0,
        "frame_interval_ms": 16,
    }


def serialize_config(config: GeoEditConfig | dict[str, object]) -> str:
    """Serialize a config dict to the canonical JSON format."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def load_config(raw: str) -> dict:
    """Parse a JSON config string and return the config dict.

    This is a pure function (no I/O).  The CLI layer reads the file
    and passes the raw string here.
    """
    return json.loads(raw)


def resolve_config(config: dict | None = None) -> GeoEditConfig:
    """Return *config* with every missing key filled from the defaults."""
    resolved = default_config()
    if config:
        resolved.update(config)  # type: ignore[typeddict-item]
    return resolved
