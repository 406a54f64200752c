"""Tests for atomic writes, JSONL append, and root discovery."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from geoedit.core.errors import GeoEditRootError
from geoedit.storage.fs import (
    _fsync_directory,
    atomic_write,
    ensure_geoedit_dirs,
    find_root,
    jsonl_append,
)


class TestAtomicWrite:
    """atomic_write() writes content safely via temp + fsync + rename."""

    def test_writes_expected_content(self, tmp_path: Path) -> None:
        target = tmp_path / "current.json"
        atomic_write(target, '{"type": "FeatureCollection"}\n')

        assert target.read_text() == '{"type": "FeatureCollection"}\n'

    def test_writes_bytes_content(self, tmp_path: Path) -> None:
        target = tmp_path / "v.json.gz"
        data = b"\x1f\x8b\x00\x01"
        atomic_write(target, data)

        assert target.read_bytes() == data

    def test_no_temp_file_left_after_success(self, tmp_path: Path) -> None:
        target = tmp_path / "current.json"
        atomic_write(target, "content\n")

        assert list(tmp_path.iterdir()) == [target]

    def test_overwrites_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "current.json"
        target.write_text("old content\n")

        atomic_write(target, "new content\n")
        assert target.read_text() == "new content\n"

    def test_parent_directory_must_exist(self, tmp_path: Path) -> None:
        target = tmp_path / "nonexistent" / "current.json"

        with pytest.raises(FileNotFoundError, match="Parent directory does not exist"):
            atomic_write(target, "content\n")

    def test_failed_write_keeps_old_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "audit.log"
        target.write_text("old\n")

        def broken_fsync(fd: int) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(os, "fsync", broken_fsync)
        with pytest.raises(OSError, match="disk full"):
            atomic_write(target, "new\n")

        assert target.read_text() == "old\n"
        assert list(tmp_path.iterdir()) == [target]

    def test_handles_short_writes(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """os.write() can return fewer bytes than requested; atomic_write must loop."""
        target = tmp_path / "output.bin"
        payload = b"ABCDEFGHIJ"

        real_write = os.write
        call_count = 0

        def short_write(fd: int, data: bytes | memoryview) -> int:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                n = max(1, len(data) // 2)
                return real_write(fd, bytes(data[:n]))
            return real_write(fd, bytes(data))

        monkeypatch.setattr(os, "write", short_write)
        atomic_write(target, payload)

        assert target.read_bytes() == payload
        assert call_count >= 2


class TestJsonlAppend:
    """jsonl_append() appends newline-terminated records to a JSONL file."""

    def test_creates_file_if_not_exists(self, tmp_path: Path) -> None:
        target = tmp_path / "audit.log"
        jsonl_append(target, '{"type":"create"}\n')

        assert target.read_text() == '{"type":"create"}\n'

    def test_appends_not_overwrites(self, tmp_path: Path) -> None:
        target = tmp_path / "audit.log"
        target.write_text('{"n":1}\n')

        jsonl_append(target, '{"n":2}\n')

        assert target.read_text() == '{"n":1}\n{"n":2}\n'

    def test_batch_in_one_call(self, tmp_path: Path) -> None:
        target = tmp_path / "audit.log"
        jsonl_append(target, '{"n":1}\n{"n":2}\n{"n":3}\n')

        lines = target.read_text().strip().split("\n")
        assert [json.loads(line)["n"] for line in lines] == [1, 2, 3]


class TestFsyncDirectory:
    """_fsync_directory() syncs directory metadata for durability."""

    def test_called_during_atomic_write(self, tmp_path: Path) -> None:
        target = tmp_path / "output.json"
        with patch("geoedit.storage.fs._fsync_directory") as mock_fsync:
            atomic_write(target, "content\n")
        mock_fsync.assert_called_once_with(tmp_path)

    def test_called_during_jsonl_append(self, tmp_path: Path) -> None:
        target = tmp_path / "audit.log"
        with patch("geoedit.storage.fs._fsync_directory") as mock_fsync:
            jsonl_append(target, '{"ok":true}\n')
        mock_fsync.assert_called_once_with(tmp_path)

    def test_does_not_raise_on_oserror(self, tmp_path: Path) -> None:
        with patch("geoedit.storage.fs.os.open", side_effect=OSError("not supported")):
            _fsync_directory(tmp_path)


class TestEnsureDirs:
    def test_creates_layout(self, tmp_path: Path) -> None:
        data_dir = ensure_geoedit_dirs(tmp_path)
        assert data_dir == tmp_path / ".geoedit"
        for sub in ("versions", "audit", "locks"):
            assert (data_dir / sub).is_dir()

    def test_idempotent(self, tmp_path: Path) -> None:
        ensure_geoedit_dirs(tmp_path)
        ensure_geoedit_dirs(tmp_path)
        assert (tmp_path / ".geoedit" / "audit").is_dir()


class TestFindRoot:
    def test_walks_up_from_subdirectory(
        self, initialized_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("GEOEDIT_ROOT", raising=False)
        nested = initialized_root / "a" / "b"
        nested.mkdir(parents=True)
        assert find_root(nested) == initialized_root.resolve()

    def test_none_when_absent(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GEOEDIT_ROOT", raising=False)
        assert find_root(tmp_path) is None

    def test_env_var_wins(
        self, initialized_root: Path, tmp_path_factory: pytest.TempPathFactory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        elsewhere = tmp_path_factory.mktemp("elsewhere")
        monkeypatch.setenv("GEOEDIT_ROOT", str(initialized_root))
        assert find_root(elsewhere) == initialized_root

    def test_env_var_without_data_dir(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("GEOEDIT_ROOT", str(tmp_path))
        with pytest.raises(GeoEditRootError, match="no .geoedit/"):
            find_root()

    def test_env_var_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEOEDIT_ROOT", "")
        with pytest.raises(GeoEditRootError, match="empty"):
            find_root()

    def test_env_var_missing_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEOEDIT_ROOT", str(tmp_path / "gone"))
        with pytest.raises(GeoEditRootError, match="does not exist"):
            find_root()
