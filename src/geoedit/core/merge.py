"""Feature merging and great-circle distance.

Pure functions, no I/O.  The edit session decides *when* to merge; this
module decides *what* the survivor looks like.
"""

from __future__ import annotations

import math

from geoedit.core.features import (
    MULTI_VALUED_PROPERTIES,
    as_list,
    dedupe,
    feature_coords,
    to_float_list,
)

EARTH_RADIUS_M = 6_371_000.0

# Merges of points further apart than this need explicit confirmation.
MERGE_CONFIRM_DISTANCE_M = 500.0


def haversine_m(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Great-circle distance in meters between two ``(lon, lat)`` pairs."""
    lon1, lat1 = a
    lon2, lat2 = b
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    s = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(s), math.sqrt(1 - s))


def distance_m(a: dict, b: dict) -> float:
    """Distance in meters between two point features."""
    return haversine_m(feature_coords(a), feature_coords(b))


def requires_confirmation(
    anchor: dict,
    candidate: dict,
    threshold_m: float = MERGE_CONFIRM_DISTANCE_M,
) -> tuple[bool, float]:
    """Return ``(needs_confirmation, distance_m)`` for a proposed merge."""
    d = distance_m(anchor, candidate)
    return d > threshold_m, d


def merge_properties(a: dict, b: dict) -> dict:
    """Merge two property bags; *a* is the anchor.

    Multi-valued properties are the structural union (anchor's values
    first), ``area_size`` keeps finite floats only, tags are merged with
    *b* winning on key collision, and ``merged_from_uids`` accumulates both
    ancestors' histories plus both uids.  Any other property keeps the
    anchor's value and is filled from *b* only when the anchor lacks it.
    """
    out = {**b, **a}
    for key in MULTI_VALUED_PROPERTIES:
        if key == "merged_from_uids":
            continue
        out[key] = dedupe([*as_list(a.get(key)), *as_list(b.get(key))])
    out["area_size"] = to_float_list([*as_list(a.get("area_size")), *as_list(b.get("area_size"))])

    tags_a = a.get("tags") if isinstance(a.get("tags"), dict) else {}
    tags_b = b.get("tags") if isinstance(b.get("tags"), dict) else {}
    out["tags"] = {**tags_a, **tags_b}

    ancestry = [*as_list(a.get("merged_from_uids")), *as_list(b.get("merged_from_uids"))]
    if a.get("uid"):
        ancestry.append(a["uid"])
    if b.get("uid"):
        ancestry.append(b["uid"])
    out["merged_from_uids"] = dedupe(ancestry)
    return out


def merge_features(anchor: dict, candidate: dict) -> dict:
    """Return the survivor of merging *candidate* into *anchor*.

    The survivor keeps the anchor's uid and coordinates.
    """
    props = merge_properties(anchor["properties"], candidate["properties"])
    props["uid"] = anchor["properties"]["uid"]
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": list(anchor["geometry"]["coordinates"][:2])},
        "properties": props,
    }
