"""Zoom-dependent point clustering and coincident-point jitter.

The index is built once per collection.  For every zoom from ``max_zoom``
down to ``min_zoom`` the nodes of the level above are greedily grouped
(in stable input order) with every node still ungrouped inside a fixed
pixel radius; groups that reach ``min_points`` become one cluster node at
their weighted centroid.  Viewport queries then only read a level.

Everything here is pure: the same features and view always give the same
items, so results may be computed from several viewport events and simply
applied in the order those events fired.
"""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from geoedit.core.errors import ClusterNotFound
from geoedit.core.features import feature_coords, feature_uid
from geoedit.core.merge import EARTH_RADIUS_M

CLUSTER_RADIUS_PX = 50
CLUSTER_MIN_POINTS = 2
CLUSTER_MAX_ZOOM = 22
CLUSTER_EXTENT = 512
JITTER_RADIUS_PX = 16

# Web-Mercator ground resolution at zoom 0 on the equator, meters per pixel.
_MPP_ZOOM0 = 156543.03392


# ---------------------------------------------------------------------------
# Projection helpers (unit square Web-Mercator)
# ---------------------------------------------------------------------------


def _lng_x(lng: float) -> float:
    return lng / 360 + 0.5


def _lat_y(lat: float) -> float:
    sin = math.sin(math.radians(lat))
    if sin >= 1:
        return 0.0
    if sin <= -1:
        return 1.0
    y = 0.5 - 0.25 * math.log((1 + sin) / (1 - sin)) / math.pi
    return min(max(y, 0.0), 1.0)


def _x_lng(x: float) -> float:
    return (x - 0.5) * 360


def _y_lat(y: float) -> float:
    y2 = math.radians(180 - y * 360)
    return 360 * math.atan(math.exp(y2)) / math.pi - 90


def meters_per_pixel(lat: float, zoom: float) -> float:
    """Web-Mercator ground resolution at *lat* for *zoom*."""
    return _MPP_ZOOM0 * math.cos(math.radians(lat)) / (2**zoom)


def round_zoom(zoom: float) -> int:
    # Half-up rounding, so 12.5 → 13 like a map widget would report.
    return int(math.floor(zoom + 0.5))


# ---------------------------------------------------------------------------
# Index structures
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class _Node:
    x: float
    y: float
    count: int
    # Leaves carry their feature; clusters an id, their forming zoom and members.
    feature: dict | None = None
    id: int | None = None
    zoom: int | None = None
    children: list[_Node] = field(default_factory=list)


class _Level:
    """Nodes of one zoom level with an x-sorted view for range queries."""

    def __init__(self, nodes: list[_Node]) -> None:
        self.nodes = nodes
        self._order = sorted(range(len(nodes)), key=lambda i: (nodes[i].x, i))
        self._xs = [nodes[i].x for i in self._order]

    def range(self, min_x: float, min_y: float, max_x: float, max_y: float) -> list[_Node]:
        lo = bisect_left(self._xs, min_x)
        hi = bisect_right(self._xs, max_x)
        hits = sorted(
            i for i in self._order[lo:hi] if min_y <= self.nodes[i].y <= max_y
        )
        return [self.nodes[i] for i in hits]


def _abbreviate(count: int) -> str:
    if count >= 10000:
        return f"{round(count / 1000)}k"
    if count >= 1000:
        return f"{round(count / 100) / 10:g}k"
    return str(count)


class ClusterIndex:
    """Hierarchical cluster index over a list of point features."""

    def __init__(
        self,
        features: Iterable[dict],
        *,
        radius: float = CLUSTER_RADIUS_PX,
        min_points: int = CLUSTER_MIN_POINTS,
        max_zoom: int = CLUSTER_MAX_ZOOM,
        min_zoom: int = 0,
        extent: int = CLUSTER_EXTENT,
    ) -> None:
        if min_zoom > max_zoom:
            raise ValueError(f"min_zoom ({min_zoom}) must not exceed max_zoom ({max_zoom})")
        self.radius = radius
        self.min_points = min_points
        self.max_zoom = max_zoom
        self.min_zoom = min_zoom
        self.extent = extent
        self._clusters: dict[int, _Node] = {}

        leaves: list[_Node] = []
        for feature in features:
            lon, lat = feature_coords(feature)
            leaves.append(_Node(x=_lng_x(lon), y=_lat_y(lat), count=1, feature=feature))

        self._levels: dict[int, _Level] = {max_zoom + 1: _Level(leaves)}
        nodes = leaves
        for zoom in range(max_zoom, min_zoom - 1, -1):
            nodes = self._cluster(nodes, zoom)
            self._levels[zoom] = _Level(nodes)

    def __len__(self) -> int:
        return len(self._levels[self.max_zoom + 1].nodes)

    # -- construction -------------------------------------------------------

    def _cluster(self, nodes: list[_Node], zoom: int) -> list[_Node]:
        r = self.radius / (self.extent * 2**zoom)
        r2 = r * r

        grid: dict[tuple[int, int], list[int]] = {}
        cells: list[tuple[int, int]] = []
        for i, node in enumerate(nodes):
            cell = (math.floor(node.x / r), math.floor(node.y / r))
            cells.append(cell)
            grid.setdefault(cell, []).append(i)

        processed = [False] * len(nodes)
        out: list[_Node] = []
        for i, node in enumerate(nodes):
            if processed[i]:
                continue
            processed[i] = True

            cx, cy = cells[i]
            neighbors: list[int] = []
            for gx in (cx - 1, cx, cx + 1):
                for gy in (cy - 1, cy, cy + 1):
                    for j in grid.get((gx, gy), ()):
                        if processed[j]:
                            continue
                        other = nodes[j]
                        dx = other.x - node.x
                        dy = other.y - node.y
                        if dx * dx + dy * dy <= r2:
                            neighbors.append(j)
            neighbors.sort()

            count = node.count + sum(nodes[j].count for j in neighbors)
            for j in neighbors:
                processed[j] = True

            if neighbors and count >= self.min_points:
                members = [node, *(nodes[j] for j in neighbors)]
                wx = sum(m.x * m.count for m in members)
                wy = sum(m.y * m.count for m in members)
                cluster_id = len(self._clusters)
                cluster = _Node(
                    x=wx / count,
                    y=wy / count,
                    count=count,
                    id=cluster_id,
                    zoom=zoom,
                    children=members,
                )
                self._clusters[cluster_id] = cluster
                out.append(cluster)
            else:
                # Too few to cluster: everyone passes through unchanged, but
                # the neighbors stay claimed for this zoom.
                out.append(node)
                out.extend(nodes[j] for j in neighbors)
        return out

    # -- queries ------------------------------------------------------------

    def _limit_zoom(self, zoom: float) -> int:
        return max(self.min_zoom, min(round_zoom(zoom), self.max_zoom + 1))

    def _lookup(self, cluster_id: int) -> _Node:
        try:
            return self._clusters[cluster_id]
        except (KeyError, TypeError):
            raise ClusterNotFound(f"No cluster with the specified id: {cluster_id!r}") from None

    def _item(self, node: _Node) -> dict:
        if node.id is None:
            return node.feature  # type: ignore[return-value]
        return {
            "type": "Feature",
            "id": node.id,
            "geometry": {"type": "Point", "coordinates": [_x_lng(node.x), _y_lat(node.y)]},
            "properties": {
                "cluster": True,
                "cluster_id": node.id,
                "point_count": node.count,
                "point_count_abbreviated": _abbreviate(node.count),
            },
        }

    def get_clusters(self, bbox: Sequence[float], zoom: float) -> list[dict]:
        """Return cluster nodes and leaves inside ``[west, south, east, north]``."""
        west, south, east, north = bbox
        min_lng = (west + 180) % 360 - 180
        min_lat = max(-90.0, min(90.0, south))
        max_lng = 180.0 if east == 180 else (east + 180) % 360 - 180
        max_lat = max(-90.0, min(90.0, north))

        if east - west >= 360:
            min_lng, max_lng = -180.0, 180.0
        elif min_lng > max_lng:
            eastern = self.get_clusters([min_lng, min_lat, 180.0, max_lat], zoom)
            western = self.get_clusters([-180.0, min_lat, max_lng, max_lat], zoom)
            return eastern + western

        level = self._levels[self._limit_zoom(zoom)]
        nodes = level.range(_lng_x(min_lng), _lat_y(max_lat), _lng_x(max_lng), _lat_y(min_lat))
        return [self._item(n) for n in nodes]

    def get_children(self, cluster_id: int) -> list[dict]:
        """Return the items one zoom below the cluster's forming zoom."""
        return [self._item(c) for c in self._lookup(cluster_id).children]

    def get_leaves(self, cluster_id: int, limit: int = 10, offset: int = 0) -> list[dict]:
        """Return the cluster's features, depth-first, paginated."""
        leaves: list[dict] = []
        stack = [self._lookup(cluster_id)]
        while stack:
            node = stack.pop()
            if node.id is None:
                leaves.append(node.feature)  # type: ignore[arg-type]
            else:
                stack.extend(reversed(node.children))
        return leaves[offset : offset + limit]

    def get_cluster_expansion_zoom(self, cluster_id: int) -> int:
        """Return the minimum zoom at which *cluster_id* splits into several items."""
        node = self._lookup(cluster_id)
        expansion = node.zoom if node.zoom is not None else self.max_zoom
        while expansion <= self.max_zoom:
            expansion += 1
            if len(node.children) != 1 or node.children[0].id is None:
                break
            node = node.children[0]
        return expansion


def expansion_target_zoom(index: ClusterIndex, cluster_id: int, current_zoom: float) -> int:
    """Return the zoom to fly to when a cluster is opened.

    The expansion zoom capped at ``max_zoom``; when that is not strictly
    beyond *current_zoom*, one step past the current zoom instead.
    """
    target = min(index.get_cluster_expansion_zoom(cluster_id), index.max_zoom)
    current = round_zoom(current_zoom)
    if target <= current:
        target = min(current + 1, index.max_zoom)
    return target


# ---------------------------------------------------------------------------
# Coincident-leaf jitter
# ---------------------------------------------------------------------------


def jitter_identical_leaves(
    items: Iterable[dict],
    zoom: float,
    radius_px: float = JITTER_RADIUS_PX,
) -> dict[str, tuple[float, float]]:
    """Spread leaves that share exact coordinates evenly around a small circle.

    Only unclustered leaves are considered, and only exact coordinate
    matches are grouped.  Members of a group are placed in uid order, so
    identical input always yields identical positions.

    Returns a mapping ``uid -> (lon, lat)`` for every displaced leaf.
    """
    groups: dict[tuple[float, float], list[dict]] = {}
    for item in items:
        if (item.get("properties") or {}).get("cluster"):
            continue
        groups.setdefault(feature_coords(item), []).append(item)

    rounded = round_zoom(zoom)
    out: dict[str, tuple[float, float]] = {}
    for (lon0, lat0), members in groups.items():
        if len(members) < 2:
            continue
        cos_lat = math.cos(math.radians(lat0))
        if abs(cos_lat) < 1e-12:
            continue
        meters = radius_px * meters_per_pixel(lat0, rounded)
        d_lat = math.degrees(meters / EARTH_RADIUS_M)
        d_lng = math.degrees(meters / (EARTH_RADIUS_M * cos_lat))
        members = sorted(members, key=lambda f: str(feature_uid(f)))
        n = len(members)
        for k, feature in enumerate(members):
            theta = 2 * math.pi * k / n
            out[feature_uid(feature)] = (
                lon0 + d_lng * math.cos(theta),
                lat0 + d_lat * math.sin(theta),
            )
    return out
