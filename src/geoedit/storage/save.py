"""Versioned save: the commit boundary between a session and durable history."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from geoedit.core.changes import DEFAULT_USER
from geoedit.core.errors import ValidationError
from geoedit.core.features import require_feature_collection
from geoedit.core.ids import now_ms
from geoedit.storage.audit import AuditLog
from geoedit.storage.versions import VersionStore

if TYPE_CHECKING:
    from geoedit.recorder import AuditRecorder

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "manual edit"


@dataclass(frozen=True)
class SaveResult:
    version_id: str
    updated: int


def save_version(
    versions: VersionStore,
    audit: AuditLog,
    collection: dict,
    message: str | None = None,
    user: str | None = None,
    session_id: str | None = None,
    *,
    recorder: AuditRecorder | None = None,
) -> SaveResult:
    """Write a new version, replace current, then commit the session's audit entries.

    Steps:
    1. Validate the collection type tag (nothing is written on failure)
    2. Flush the session's recorder so every queued entry is in the log
    3. Write the immutable version record
    4. Atomically replace the current collection
    5. Flip ``committed`` on the session's uncommitted audit entries

    Raises:
        ValidationError: If *collection* is not a FeatureCollection.
    """
    require_feature_collection(collection)

    if recorder is not None:
        recorder.flush_now()

    record = {
        "ts": now_ms(),
        "message": message or DEFAULT_MESSAGE,
        "user": user or DEFAULT_USER,
        "featureCollection": collection,
    }
    version_id = versions.put_version(record)
    versions.put_current(collection)

    updated = audit.commit(session_id) if session_id else 0
    logger.info("saved version %s (%d audit entries committed)", version_id, updated)
    return SaveResult(version_id=version_id, updated=updated)


def import_collection(versions: VersionStore, raw: str | bytes, *, user: str = "") -> str:
    """Store an uploaded FeatureCollection as a version and make it current.

    Returns the new version id.

    Raises:
        ValidationError: If *raw* is not JSON or not a FeatureCollection.
    """
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("File is not valid JSON") from None
    require_feature_collection(parsed)

    version_id = versions.put_upload(parsed, user=user)
    versions.put_current(parsed)
    logger.info("imported %d feature(s) as version %s", len(parsed.get("features", [])), version_id)
    return version_id
