"""Point feature construction, normalization, and accessors.

Features are plain GeoJSON dicts.  Once a feature has been normalized and
handed to an edit session it is treated as an immutable value: every
mutation builds a new dict, so collection snapshots can share unchanged
features instead of deep-copying them.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Iterable

from geoedit.core.errors import ValidationError
from geoedit.core.ids import generate_feature_uid

# Properties that are always deduplicated ordered lists, even when the
# source data holds a scalar or null.
MULTI_VALUED_PROPERTIES: tuple[str, ...] = (
    "name",
    "access_id",
    "type_id",
    "beach_org",
    "depth_id",
    "beach_amea",
    "purpose",
    "source",
    "source_id",
    "merged_from_uids",
)

# Properties whose absence is flagged as "missing data" in detail views.
REQUIRED_DETAIL_PROPERTIES: tuple[str, ...] = ("name", "purpose", "area_size")


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def as_list(value: object) -> list:
    """Coerce *value* to a list: lists/tuples as-is, None to ``[]``, scalars wrapped."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None:
        return []
    return [value]


def _structural_key(value: object) -> str:
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(value)


def dedupe(values: Iterable) -> list:
    """Structurally deduplicate *values*, keeping the first occurrence in order."""
    seen: set[str] = set()
    result: list = []
    for value in values:
        key = _structural_key(value)
        if key not in seen:
            seen.add(key)
            result.append(value)
    return result


def _to_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_float_list(values: object) -> list[float]:
    """Return the deduplicated finite floats in *values*; anything else is dropped."""
    numbers = (_to_float(v) for v in as_list(values))
    return dedupe(n for n in numbers if n is not None)


def is_empty_value(value: object) -> bool:
    """True for None, empty lists/dicts, and blank strings."""
    if value is None:
        return True
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return str(value).strip() == ""


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def feature_uid(feature: dict) -> str:
    return feature["properties"]["uid"]


def feature_coords(feature: dict) -> tuple[float, float]:
    """Return ``(lon, lat)`` of a point feature."""
    lon, lat = feature["geometry"]["coordinates"][:2]
    return float(lon), float(lat)


def first_name(feature: dict) -> str | None:
    names = feature.get("properties", {}).get("name")
    if isinstance(names, list) and names:
        return str(names[0])
    return None


def missing_properties(feature: dict) -> list[str]:
    """Return the detail properties that are empty on *feature*."""
    props = feature.get("properties", {})
    return [key for key in REQUIRED_DETAIL_PROPERTIES if is_empty_value(props.get(key))]


# ---------------------------------------------------------------------------
# Construction & normalization
# ---------------------------------------------------------------------------


def validate_coordinates(lon: object, lat: object) -> tuple[float, float]:
    """Return ``(lon, lat)`` as floats or raise ``ValidationError``."""
    try:
        lon_f = float(lon)  # type: ignore[arg-type]
        lat_f = float(lat)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError(f"Coordinates must be numbers, got ({lon!r}, {lat!r})") from None
    if isinstance(lon, bool) or isinstance(lat, bool):
        raise ValidationError(f"Coordinates must be numbers, got ({lon!r}, {lat!r})")
    if not (math.isfinite(lon_f) and math.isfinite(lat_f)):
        raise ValidationError(f"Coordinates must be finite, got ({lon_f}, {lat_f})")
    if not -90.0 <= lat_f <= 90.0:
        raise ValidationError(f"Latitude out of range: {lat_f}")
    return lon_f, lat_f


def normalize_properties(properties: dict | None, uid: str | None = None) -> dict:
    """Return a normalized copy of a property bag.

    Multi-valued properties become deduplicated lists, ``area_size`` a list
    of finite floats, ``tags`` a dict.  Unknown properties are kept as-is.
    When *uid* is given it replaces whatever uid the bag carried.
    """
    props = dict(properties or {})
    for key in MULTI_VALUED_PROPERTIES:
        props[key] = dedupe(as_list(props.get(key)))
    props["area_size"] = to_float_list(props.get("area_size"))
    tags = props.get("tags")
    props["tags"] = dict(tags) if isinstance(tags, dict) else {}
    if uid is not None:
        props["uid"] = uid
    return props


def make_point_feature(lon: float, lat: float, properties: dict | None = None, *, uid: str) -> dict:
    """Build a normalized point feature."""
    lon_f, lat_f = validate_coordinates(lon, lat)
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon_f, lat_f]},
        "properties": normalize_properties(properties, uid=uid),
    }


def with_coordinates(feature: dict, lon: float, lat: float) -> dict:
    """Return a copy of *feature* moved to ``(lon, lat)``."""
    lon_f, lat_f = validate_coordinates(lon, lat)
    return {
        **feature,
        "geometry": {"type": "Point", "coordinates": [lon_f, lat_f]},
    }


def with_properties(feature: dict, properties: dict) -> dict:
    """Return a copy of *feature* with *properties* laid over its current ones.

    Keys given replace the old values, keys left out are kept, and the uid
    never changes.  ``merged_from_uids`` only grows: the feature's existing
    ancestry is always carried into the result.
    """
    old = feature["properties"]
    props = normalize_properties({**old, **properties}, uid=feature_uid(feature))
    props["merged_from_uids"] = dedupe(
        [*as_list(old.get("merged_from_uids")), *props["merged_from_uids"]]
    )
    return {**feature, "properties": props}


def normalize_feature(
    raw: object,
    *,
    uid_factory: Callable[[], str] | None = None,
) -> dict:
    """Validate and normalize one imported feature.

    Raises:
        ValidationError: If *raw* is not a GeoJSON point feature.
    """
    if not isinstance(raw, dict):
        raise ValidationError("Feature must be a JSON object")
    geometry = raw.get("geometry")
    if not isinstance(geometry, dict) or geometry.get("type") != "Point":
        raise ValidationError("Only Point geometries are supported")
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        raise ValidationError("Point coordinates must be [lon, lat]")

    properties = raw.get("properties")
    if properties is not None and not isinstance(properties, dict):
        raise ValidationError("Feature properties must be a JSON object")

    uid = (properties or {}).get("uid")
    if uid is None or str(uid).strip() == "":
        uid = (uid_factory or (lambda: generate_feature_uid("imp")))()
    return make_point_feature(coords[0], coords[1], properties, uid=str(uid))


def require_feature_collection(data: object) -> dict:
    """Return *data* if it carries the FeatureCollection type tag, else raise."""
    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        raise ValidationError("JSON must be a GeoJSON FeatureCollection")
    if not isinstance(data.get("features", []), list):
        raise ValidationError("FeatureCollection 'features' must be a list")
    return data


def normalize_features(collection: object) -> list[dict]:
    """Validate a FeatureCollection and return its normalized features.

    Features without a uid get a generated one; later features repeating an
    earlier uid are re-keyed so the collection never holds duplicates.
    """
    data = require_feature_collection(collection)
    seen: set[str] = set()
    features: list[dict] = []
    for raw in data.get("features", []):
        feature = normalize_feature(raw)
        uid = feature_uid(feature)
        if uid in seen:
            feature = {
                **feature,
                "properties": {**feature["properties"], "uid": generate_feature_uid("imp")},
            }
        seen.add(feature_uid(feature))
        features.append(feature)
    return features


def feature_collection(features: Iterable[dict]) -> dict:
    """Wrap *features* in a GeoJSON FeatureCollection dict."""
    return {"type": "FeatureCollection", "features": list(features)}
