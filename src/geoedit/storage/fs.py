"""Atomic file writes, directory management, and root discovery."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from geoedit.core.errors import GeoEditRootError

GEOEDIT_DIR = ".geoedit"
GEOEDIT_ROOT_ENV = "GEOEDIT_ROOT"


def _fsync_directory(path: Path) -> None:
    """Fsync a directory to ensure metadata (e.g. renames) is durable.

    Some platforms (notably macOS HFS+) may not support fsync on directory
    file descriptors, so ``OSError`` is silently ignored.
    """
    try:
        fd = os.open(str(path), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        pass


def atomic_write(path: Path, content: str | bytes) -> None:
    """Write content to path atomically via temp file + fsync + rename.

    The temp file is created in the same directory as the target so that
    ``os.replace()`` stays on one filesystem.  Readers see either the old
    file or the new one, never a partial write.

    Raises:
        FileNotFoundError: If the parent directory does not exist.
    """
    parent = path.parent
    if not parent.is_dir():
        raise FileNotFoundError(f"Parent directory does not exist: {parent}")

    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".tmp.")
    closed = False
    try:
        # os.write() can short-write; loop until all bytes are flushed.
        mv = memoryview(data)
        while mv:
            written = os.write(fd, mv)
            mv = mv[written:]
        os.fsync(fd)
        os.close(fd)
        closed = True
        os.replace(tmp_path, path)
        _fsync_directory(parent)
    except BaseException:
        if not closed:
            os.close(fd)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def jsonl_append(path: Path, lines: str) -> None:
    """Append newline-terminated JSONL record(s) to *path*.

    The caller must already hold the appropriate lock; this function does
    no locking of its own.  Several records may be passed at once so that a
    batch lands in a single write call.
    """
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(lines)
        fh.flush()
        os.fsync(fh.fileno())
    _fsync_directory(path.parent)


def ensure_geoedit_dirs(root: Path) -> Path:
    """Create the ``.geoedit/`` directory structure under *root*.

    Returns the path of the ``.geoedit/`` directory.
    """
    data_dir = root / GEOEDIT_DIR
    for subdir in ("versions", "audit", "locks"):
        (data_dir / subdir).mkdir(parents=True, exist_ok=True)
    return data_dir


def find_root(start: Path | None = None) -> Path | None:
    """Find the project root containing ``.geoedit/``.

    Checks ``GEOEDIT_ROOT`` first.  If set, it is validated and returned
    (no fallback to walk-up).  Otherwise walks up from *start* (defaults
    to cwd).

    Returns:
        Path to the directory containing ``.geoedit/``, or None if not found.

    Raises:
        GeoEditRootError: If ``GEOEDIT_ROOT`` is set but invalid.
    """
    env_root = os.environ.get(GEOEDIT_ROOT_ENV)
    if env_root is not None:
        if not env_root:
            raise GeoEditRootError("GEOEDIT_ROOT is set but empty")
        env_path = Path(env_root)
        if not env_path.is_dir():
            raise GeoEditRootError(
                f"GEOEDIT_ROOT points to a path that does not exist: {env_root}"
            )
        if not (env_path / GEOEDIT_DIR).is_dir():
            raise GeoEditRootError(
                f"GEOEDIT_ROOT points to a directory with no {GEOEDIT_DIR}/ inside: {env_root}"
            )
        return env_path

    current = (start or Path.cwd()).resolve()
    while True:
        if (current / GEOEDIT_DIR).is_dir():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent
