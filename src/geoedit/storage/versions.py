"""Version store: immutable saved versions plus the "current" collection.

Layout under the data directory::

    current.json                      bare GeoJSON FeatureCollection
    versions/<version_id>.json.gz     saved versions (gzip JSON)
    versions/<version_id>.json        uploads (plain JSON)

Version ids are UTC timestamps with separators normalized (see
``geoedit.core.ids.version_stamp``), so sorting ids sorts versions
chronologically.
"""

from __future__ import annotations

import gzip
import json
import logging
import re
from pathlib import Path

from geoedit.core.errors import ValidationError, VersionNotFound
from geoedit.core.features import feature_collection, require_feature_collection
from geoedit.core.ids import now_ms, parse_version_stamp, version_stamp
from geoedit.storage.fs import atomic_write
from geoedit.storage.locks import geoedit_lock

logger = logging.getLogger(__name__)

VERSIONS_DIR = "versions"
CURRENT_FILE = "current.json"
_LOCK_KEY = "versions"
_VERSION_ID_RE = re.compile(r"^[0-9A-Za-z_-]+$")


def serialize_collection(fc: dict) -> str:
    """Pretty-print a FeatureCollection with trailing newline."""
    return json.dumps(fc, indent=2, ensure_ascii=False) + "\n"


class VersionStore:
    """File-backed version history for one data directory."""

    def __init__(self, data_dir: Path, *, lock_timeout: float = 10) -> None:
        self.data_dir = data_dir
        self.versions_dir = data_dir / VERSIONS_DIR
        self.current_path = data_dir / CURRENT_FILE
        self.locks_dir = data_dir / "locks"
        self.lock_timeout = lock_timeout

    # -- current ------------------------------------------------------------

    def get_current(self) -> dict:
        """Return the current collection, or an empty one if none is readable."""
        try:
            data = json.loads(self.current_path.read_text(encoding="utf-8"))
            return require_feature_collection(data)
        except FileNotFoundError:
            return feature_collection([])
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("unreadable %s, starting empty: %s", self.current_path, exc)
            return feature_collection([])

    def put_current(self, fc: dict) -> None:
        """Atomically replace the current collection."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(self.current_path, serialize_collection(fc))

    # -- versions -----------------------------------------------------------

    def put_version(self, record: dict, version_id: str | None = None) -> str:
        """Write an immutable, gzip-compressed version record.

        Returns the version id.  Raises ``ValueError`` if *version_id* is
        given and already taken.
        """
        payload = json.dumps(record, ensure_ascii=False).encode("utf-8")
        return self._put(gzip.compress(payload, mtime=0), ".json.gz", version_id)

    def put_upload(self, fc: dict, *, user: str = "") -> str:
        """Store an uploaded collection as a plain-JSON version."""
        record = {"ts": now_ms(), "message": "upload", "user": user, "featureCollection": fc}
        payload = json.dumps(record, indent=2, ensure_ascii=False) + "\n"
        return self._put(payload.encode("utf-8"), ".json", None)

    def get_version(self, version_id: str) -> dict:
        """Return the record stored under *version_id*."""
        path = self._find(version_id)
        if path is None:
            raise VersionNotFound(f"No saved version '{version_id}'")
        return self._read_record(path)

    def list_versions(self) -> list[dict]:
        """Summarize every readable version, newest first."""
        if not self.versions_dir.is_dir():
            return []
        items: list[dict] = []
        for path in self.versions_dir.iterdir():
            if not path.is_file() or path.name.startswith("."):
                continue
            version_id = _strip_suffix(path.name)
            if version_id is None:
                continue
            try:
                record = self._read_record(path)
            except (OSError, EOFError, ValueError) as exc:
                logger.debug("skipping unreadable version %s: %s", path.name, exc)
                continue
            stat = path.stat()
            fc = record.get("featureCollection") or {}
            features = fc.get("features") if isinstance(fc, dict) else None
            ts = record.get("ts")
            if not isinstance(ts, (int, float)):
                ts = parse_version_stamp(version_id) or int(stat.st_mtime * 1000)
            items.append(
                {
                    "id": version_id,
                    "ts": ts,
                    "message": record.get("message") or "",
                    "user": record.get("user") or "",
                    "size": stat.st_size,
                    "featureCount": len(features) if isinstance(features, list) else 0,
                }
            )
        items.sort(key=lambda v: (v["ts"], v["id"]), reverse=True)
        return items

    # -- internals ----------------------------------------------------------

    def _put(self, data: bytes, suffix: str, version_id: str | None) -> str:
        self.versions_dir.mkdir(parents=True, exist_ok=True)
        with geoedit_lock(self.locks_dir, _LOCK_KEY, timeout=self.lock_timeout):
            if version_id is None:
                version_id = self._allocate_id(version_stamp())
            elif not _VERSION_ID_RE.match(version_id) or self._find(version_id) is not None:
                raise ValueError(f"Version id '{version_id}' is invalid or already taken")
            atomic_write(self.versions_dir / f"{version_id}{suffix}", data)
        return version_id

    def _allocate_id(self, stamp: str) -> str:
        candidate = stamp
        n = 1
        while self._find(candidate) is not None:
            candidate = f"{stamp}-{n}"
            n += 1
        return candidate

    def _find(self, version_id: str) -> Path | None:
        if not _VERSION_ID_RE.match(version_id):
            return None
        for suffix in (".json.gz", ".json"):
            path = self.versions_dir / f"{version_id}{suffix}"
            if path.is_file():
                return path
        return None

    @staticmethod
    def _read_record(path: Path) -> dict:
        raw = path.read_bytes()
        if path.name.endswith(".gz"):
            raw = gzip.decompress(raw)
        record = json.loads(raw.decode("utf-8"))
        if not isinstance(record, dict):
            raise ValueError("version record is not a JSON object")
        return record


def _strip_suffix(name: str) -> str | None:
    for suffix in (".json.gz", ".json"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return None
