"""Viewport tracking: turn map view events into cluster items.

View events arrive at input rate (every pan/zoom tick).  They are coalesced
to at most one per frame, dropped when the view did not really change, and
only then run against the cluster index.  The result is handed to a single
listener as ``(items, jitter)``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence

from geoedit.core.clustering import (
    ClusterIndex,
    expansion_target_zoom,
    jitter_identical_leaves,
    round_zoom,
)
from geoedit.core.config import resolve_config
from geoedit.core.scheduling import FrameCoalescer, Scheduler, ThreadingScheduler

logger = logging.getLogger(__name__)

# Bbox edges closer than this are treated as unchanged.
BBOX_TOLERANCE = 1e-9

Jitter = dict[str, tuple[float, float]]
ViewListener = Callable[[list[dict], Jitter], None]


class ViewportTracker:
    """Cluster view of one collection, recomputed on meaningful view changes."""

    def __init__(
        self,
        features: Iterable[dict] = (),
        listener: ViewListener | None = None,
        *,
        scheduler: Scheduler | None = None,
        config: dict | None = None,
    ) -> None:
        self.config = resolve_config(config)
        self.listener = listener
        self._lock = threading.Lock()
        self._index = self._build_index(features)
        self._view: tuple[tuple[float, ...], int] | None = None
        self.items: list[dict] = []
        self.jitter: Jitter = {}
        self._coalescer = FrameCoalescer(
            scheduler or ThreadingScheduler(),
            self._on_frame,
            interval=self.config["frame_interval_ms"] / 1000,
        )

    @property
    def index(self) -> ClusterIndex:
        return self._index

    @property
    def zoom(self) -> int | None:
        return self._view[1] if self._view is not None else None

    @property
    def details_visible(self) -> bool:
        """True once the view is zoomed in far enough to show point details."""
        return self.zoom is not None and self.zoom >= self.config["detail_zoom"]

    def _build_index(self, features: Iterable[dict]) -> ClusterIndex:
        return ClusterIndex(
            features,
            radius=self.config["cluster_radius_px"],
            min_points=self.config["cluster_min_points"],
            max_zoom=self.config["cluster_max_zoom"],
        )

    # -- events -------------------------------------------------------------

    def update(self, bbox: Sequence[float], zoom: float) -> None:
        """Queue a view event; the latest one of a frame is the one evaluated."""
        if len(bbox) != 4:
            raise ValueError(f"bbox must be [west, south, east, north], got {list(bbox)!r}")
        self._coalescer.request((tuple(float(v) for v in bbox), zoom))

    def set_features(self, features: Iterable[dict]) -> None:
        """Rebuild the index for a changed collection and republish the current view."""
        index = self._build_index(features)
        with self._lock:
            self._index = index
            view = self._view
        if view is not None:
            self.refresh(view[0], view[1])

    def refresh(self, bbox: Sequence[float], zoom: float) -> tuple[list[dict], Jitter]:
        """Recompute and publish the items for a view, unconditionally."""
        rounded = round_zoom(zoom)
        with self._lock:
            index = self._index
            self._view = (tuple(bbox), rounded)
        items = index.get_clusters(list(bbox), rounded)
        jitter = jitter_identical_leaves(items, rounded, self.config["jitter_radius_px"])
        with self._lock:
            self.items = items
            self.jitter = jitter
        logger.debug("viewport z%d: %d item(s), %d jittered", rounded, len(items), len(jitter))
        if self.listener is not None:
            self.listener(items, jitter)
        return items, jitter

    def expansion_zoom(self, cluster_id: int, current_zoom: float) -> int:
        """Zoom to fly to when the user opens *cluster_id*."""
        return expansion_target_zoom(self._index, cluster_id, current_zoom)

    def close(self) -> None:
        """Drop any view event still waiting for its frame."""
        self._coalescer.cancel()

    # -- internals ----------------------------------------------------------

    def _changed(self, bbox: tuple[float, ...], zoom: float) -> bool:
        with self._lock:
            view = self._view
        if view is None:
            return True
        last_bbox, last_zoom = view
        if round_zoom(zoom) != last_zoom:
            return True
        return any(abs(a - b) >= BBOX_TOLERANCE for a, b in zip(bbox, last_bbox))

    def _on_frame(self, view: tuple[tuple[float, ...], float]) -> None:
        bbox, zoom = view
        if self._changed(bbox, zoom):
            self.refresh(bbox, zoom)
