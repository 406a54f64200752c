"""In-memory edit session: live collection, undo stack, and change log.

Every mutation is one critical section: the new collection and its change
entry are computed first, and only if that succeeds are the snapshot
pushed, the live state swapped, and the entry logged and queued for audit.
A failing mutation therefore leaves the session exactly as it was.

Snapshots are tuples of feature dicts.  Features are never mutated after
they enter a session (mutations build new dicts), so a snapshot shares
every unchanged feature with the live state instead of deep-copying it.
Callers reading ``collection``/``features`` must treat the dicts as
read-only.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from geoedit.core.changes import (
    create_change,
    summarize_create,
    summarize_delete,
    summarize_edit,
    summarize_merge,
    summarize_move,
)
from geoedit.core.config import resolve_config
from geoedit.core.errors import ChangeNotFound, FeatureNotFound, MergeDeclined, ValidationError
from geoedit.core.features import (
    feature_collection,
    feature_uid,
    make_point_feature,
    normalize_features,
    with_coordinates,
    with_properties,
)
from geoedit.core.ids import generate_feature_uid, generate_session_id
from geoedit.core.merge import merge_features, requires_confirmation

if TYPE_CHECKING:
    from geoedit.recorder import AuditRecorder
    from geoedit.storage.audit import AuditLog
    from geoedit.storage.save import SaveResult
    from geoedit.storage.versions import VersionStore


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Create:
    lon: float
    lat: float
    properties: dict | None = None
    uid: str | None = None


@dataclass(frozen=True)
class Edit:
    uid: str
    properties: dict


@dataclass(frozen=True)
class Move:
    uid: str
    lon: float
    lat: float


@dataclass(frozen=True)
class Delete:
    uid: str


@dataclass(frozen=True)
class Merge:
    """Merge *candidate_uid* into *anchor_uid*.

    *confirm* is asked (with the distance in meters) when the points are
    further apart than the confirmation threshold.
    """

    anchor_uid: str
    candidate_uid: str
    confirm: Callable[[float], bool] | None = field(default=None, compare=False)


Mutation = Union[Create, Edit, Move, Delete, Merge]

_Features = tuple[dict, ...]


def _locate(features: _Features, uid: str) -> tuple[int, dict]:
    for i, feature in enumerate(features):
        if feature_uid(feature) == uid:
            return i, feature
    raise FeatureNotFound(uid)


def _replace(features: _Features, index: int, feature: dict) -> _Features:
    return (*features[:index], feature, *features[index + 1 :])


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class EditSession:
    """Single-writer edit session over one feature collection."""

    def __init__(
        self,
        collection: dict | None = None,
        *,
        session_id: str | None = None,
        user: str | None = None,
        recorder: AuditRecorder | None = None,
        config: dict | None = None,
    ) -> None:
        self.config = resolve_config(config)
        self.session_id = session_id or generate_session_id()
        self.recorder = recorder
        self._lock = threading.RLock()
        self._features: _Features = (
            tuple(normalize_features(collection)) if collection is not None else ()
        )
        self._undo: list[_Features] = []
        self._changes: list[dict] = []
        # uids removed by a delete or absorbed by a merge; never handed out again.
        self._retired: set[str] = set()
        self._user = ""
        self.user = user or self.config["default_user"]

    # -- identity -----------------------------------------------------------

    @property
    def user(self) -> str:
        return self._user

    @user.setter
    def user(self, value: str) -> None:
        self._user = value or self.config["default_user"]
        if self.recorder is not None:
            self.recorder.user = self._user

    # -- reads --------------------------------------------------------------

    @property
    def features(self) -> _Features:
        return self._features

    @property
    def collection(self) -> dict:
        """The live state as a GeoJSON FeatureCollection."""
        return feature_collection(self._features)

    @property
    def changes(self) -> list[dict]:
        """Change entries of this session, newest first."""
        with self._lock:
            return list(self._changes)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    def get(self, uid: str) -> dict | None:
        for feature in self._features:
            if feature_uid(feature) == uid:
                return feature
        return None

    def __len__(self) -> int:
        return len(self._features)

    # -- mutations ----------------------------------------------------------

    def apply(self, mutation: Mutation) -> tuple[dict, dict]:
        """Apply one mutation.  Returns ``(collection, change_entry)``.

        Raises:
            FeatureNotFound: If the mutation names an unknown uid.
            ValidationError: If the mutation carries invalid input.
            MergeDeclined: If a long-distance merge was not confirmed.
        """
        handler = self._HANDLERS.get(type(mutation))
        if handler is None:
            raise TypeError(f"Unsupported mutation: {type(mutation).__name__}")

        with self._lock:
            before = self._features
            after, change = handler(self, before, mutation)

            self._undo.append(before)
            limit = self.config.get("undo_limit") or 0
            if limit > 0 and len(self._undo) > limit:
                del self._undo[: len(self._undo) - limit]
            self._features = after
            if change["type"] in ("delete", "merge"):
                kept = {feature_uid(f) for f in change["after"]}
                self._retired.update(
                    feature_uid(f) for f in change["before"] if feature_uid(f) not in kept
                )
            self._changes.insert(0, change)
            if self.recorder is not None:
                self.recorder.record(change)
            return self.collection, change

    def create(
        self,
        lon: float,
        lat: float,
        properties: dict | None = None,
        *,
        uid: str | None = None,
    ) -> dict:
        """Add a new point.  Returns the change entry."""
        return self.apply(Create(lon, lat, properties, uid))[1]

    def edit(self, uid: str, properties: dict) -> dict:
        """Overlay *properties* on a feature (uid kept).  Returns the change entry."""
        return self.apply(Edit(uid, properties))[1]

    def move(self, uid: str, lon: float, lat: float) -> dict:
        """Move a feature.  Returns the change entry."""
        return self.apply(Move(uid, lon, lat))[1]

    def delete(self, uid: str) -> dict:
        """Remove a feature.  Returns the change entry."""
        return self.apply(Delete(uid))[1]

    def merge(
        self,
        anchor_uid: str,
        candidate_uid: str,
        confirm: Callable[[float], bool] | None = None,
    ) -> dict:
        """Merge *candidate_uid* into *anchor_uid*.  Returns the change entry."""
        return self.apply(Merge(anchor_uid, candidate_uid, confirm))[1]

    def _apply_create(self, features: _Features, m: Create) -> tuple[_Features, dict]:
        uid = m.uid or generate_feature_uid("new")
        if any(feature_uid(f) == uid for f in features):
            raise ValidationError(f"A feature with uid '{uid}' already exists")
        if uid in self._retired:
            raise ValidationError(f"uid '{uid}' belonged to a deleted or merged feature")
        feature = make_point_feature(m.lon, m.lat, m.properties, uid=uid)
        change = create_change("create", summarize_create(feature), [], [feature])
        return (*features, feature), change

    def _apply_edit(self, features: _Features, m: Edit) -> tuple[_Features, dict]:
        if not isinstance(m.properties, dict):
            raise ValidationError("Edited properties must be a mapping")
        index, old = _locate(features, m.uid)
        new = with_properties(old, m.properties)
        change = create_change("edit", summarize_edit(old), [old], [new])
        return _replace(features, index, new), change

    def _apply_move(self, features: _Features, m: Move) -> tuple[_Features, dict]:
        index, old = _locate(features, m.uid)
        new = with_coordinates(old, m.lon, m.lat)
        change = create_change("move", summarize_move(old), [old], [new])
        return _replace(features, index, new), change

    def _apply_delete(self, features: _Features, m: Delete) -> tuple[_Features, dict]:
        index, victim = _locate(features, m.uid)
        change = create_change("delete", summarize_delete(victim), [victim], [])
        return (*features[:index], *features[index + 1 :]), change

    def _apply_merge(self, features: _Features, m: Merge) -> tuple[_Features, dict]:
        if m.anchor_uid == m.candidate_uid:
            raise ValidationError("Cannot merge a feature into itself")
        anchor_index, anchor = _locate(features, m.anchor_uid)
        _, candidate = _locate(features, m.candidate_uid)

        needs_confirm, distance = requires_confirmation(
            anchor, candidate, float(self.config["merge_confirm_distance_m"])
        )
        if needs_confirm and not (m.confirm is not None and m.confirm(distance)):
            raise MergeDeclined(distance)

        merged = merge_features(anchor, candidate)
        after = tuple(
            merged if i == anchor_index else f
            for i, f in enumerate(features)
            if feature_uid(f) != m.candidate_uid
        )
        change = create_change("merge", summarize_merge(anchor, candidate), [anchor, candidate], [merged])
        return after, change

    _HANDLERS: dict[type, Callable] = {
        Create: _apply_create,
        Edit: _apply_edit,
        Move: _apply_move,
        Delete: _apply_delete,
        Merge: _apply_merge,
    }

    # -- undo / revert ------------------------------------------------------

    def undo(self) -> bool:
        """Restore the snapshot taken before the latest mutation.

        Not audited, and entries already queued or flushed stay in the audit
        log.  Returns False when there is nothing to undo.
        """
        with self._lock:
            if not self._undo:
                return False
            self._features = self._undo.pop()
            return True

    def revert(self, change: dict) -> dict:
        """Structurally invert *change* on the live state only.

        Neither the undo stack nor the audit log is touched and no change
        entry is produced.  Reverting a change whose effect is already
        undone leaves the state as it is.  Returns the collection.
        """
        ctype = change.get("type")
        before = change.get("before") or []
        after = change.get("after") or []

        with self._lock:
            features = list(self._features)

            def restore(original: dict) -> None:
                uid = feature_uid(original)
                for i, f in enumerate(features):
                    if feature_uid(f) == uid:
                        features[i] = original
                        return
                features.append(original)

            if ctype == "delete":
                present = {feature_uid(f) for f in features}
                features.extend(b for b in before if feature_uid(b) not in present)
            elif ctype in ("move", "edit"):
                original = before[0]
                uid = feature_uid(original)
                features = [original if feature_uid(f) == uid else f for f in features]
            elif ctype == "merge":
                restore(before[0])
                restore(before[1])
            elif ctype == "create":
                created = feature_uid(after[0])
                features = [f for f in features if feature_uid(f) != created]
            else:
                raise ValidationError(f"Cannot revert change of type {ctype!r}")

            self._features = tuple(features)
            return self.collection

    def toggle_expanded(self, change_id: str) -> bool:
        """Flip the display-only ``expanded`` flag of a change entry.

        Raises:
            ChangeNotFound: If no entry has *change_id*.
        """
        with self._lock:
            for i, change in enumerate(self._changes):
                if change["id"] == change_id:
                    updated = {**change, "expanded": not change.get("expanded", False)}
                    self._changes[i] = updated
                    return updated["expanded"]
        raise ChangeNotFound(f"No change entry '{change_id}'")

    # -- lifecycle ----------------------------------------------------------

    def reload(self, collection: dict) -> None:
        """Replace the live state from a freshly loaded collection.

        The undo stack is cleared; the change log is kept.
        """
        features = tuple(normalize_features(collection))
        with self._lock:
            self._features = features
            self._undo.clear()

    def save(
        self,
        versions: VersionStore,
        audit: AuditLog,
        message: str | None = None,
    ) -> SaveResult:
        """Save the live state as a new version and commit this session's audit entries."""
        from geoedit.storage.save import save_version

        with self._lock:
            collection = self.collection
        return save_version(
            versions,
            audit,
            collection,
            message,
            self.user,
            self.session_id,
            recorder=self.recorder,
        )
