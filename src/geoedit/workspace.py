"""A project directory: its config, stores, and the sessions opened on it."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from geoedit.core.config import GeoEditConfig, load_config, resolve_config
from geoedit.core.errors import GeoEditRootError
from geoedit.core.features import normalize_features
from geoedit.core.ids import generate_session_id
from geoedit.core.scheduling import Scheduler
from geoedit.recorder import AuditLogTransport, AuditRecorder
from geoedit.session import EditSession
from geoedit.storage.audit import AuditLog
from geoedit.storage.fs import GEOEDIT_DIR, find_root
from geoedit.storage.save import SaveResult
from geoedit.storage.versions import VersionStore
from geoedit.viewport import ViewListener, ViewportTracker

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"


class Workspace:
    """Everything stored under one ``.geoedit/`` directory."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.config: GeoEditConfig = self._load_config()
        self.versions = VersionStore(data_dir)
        self.audit = AuditLog(data_dir)

    @classmethod
    def discover(cls, start: Path | None = None) -> Workspace:
        """Open the workspace enclosing *start* (or ``GEOEDIT_ROOT``).

        Raises:
            GeoEditRootError: If no ``.geoedit/`` directory can be found.
        """
        root = find_root(start)
        if root is None:
            raise GeoEditRootError("Not a geoedit project (no .geoedit/ found)")
        return cls(root / GEOEDIT_DIR)

    def _load_config(self) -> GeoEditConfig:
        path = self.data_dir / CONFIG_FILE
        try:
            return resolve_config(load_config(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return resolve_config()
        except json.JSONDecodeError as exc:
            logger.warning("ignoring unreadable %s: %s", path, exc)
            return resolve_config()

    def open_session(
        self,
        user: str | None = None,
        *,
        scheduler: Scheduler | None = None,
        install_teardown: bool = True,
    ) -> EditSession:
        """Start an edit session on the current collection, audited into this workspace."""
        session_id = generate_session_id()
        recorder = AuditRecorder(
            AuditLogTransport(self.audit),
            session_id,
            user or self.config["default_user"],
            scheduler=scheduler,
            debounce_ms=self.config["audit_debounce_ms"],
        )
        if install_teardown:
            recorder.install_teardown_hook()
        session = EditSession(
            self.versions.get_current(),
            session_id=session_id,
            user=user,
            recorder=recorder,
            config=dict(self.config),
        )
        logger.info("opened session %s for %s (%d features)", session_id, session.user, len(session))
        return session

    def save(self, session: EditSession, message: str | None = None) -> SaveResult:
        return session.save(self.versions, self.audit, message)

    def viewport(
        self,
        session: EditSession | None = None,
        listener: ViewListener | None = None,
        *,
        scheduler: Scheduler | None = None,
    ) -> ViewportTracker:
        """Build a viewport tracker over a session's features (or the current collection)."""
        if session is not None:
            features = session.features
        else:
            features = normalize_features(self.versions.get_current())
        return ViewportTracker(features, listener, scheduler=scheduler, config=dict(self.config))
