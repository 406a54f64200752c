"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from geoedit.core.scheduling import ManualScheduler


@pytest.fixture()
def geoedit_root(tmp_path: Path) -> Path:
    """Return a temporary directory suitable for initializing .geoedit/ in."""
    return tmp_path


@pytest.fixture()
def initialized_root(geoedit_root: Path) -> Path:
    """Return a temporary directory with .geoedit/ already initialized."""
    from geoedit.core.config import default_config, serialize_config
    from geoedit.storage.fs import GEOEDIT_DIR, atomic_write, ensure_geoedit_dirs

    ensure_geoedit_dirs(geoedit_root)
    atomic_write(geoedit_root / GEOEDIT_DIR / "config.json", serialize_config(default_config()))
    return geoedit_root


@pytest.fixture()
def data_dir(initialized_root: Path) -> Path:
    """Return the .geoedit/ directory of an initialized root."""
    return initialized_root / ".geoedit"


@pytest.fixture()
def scheduler() -> ManualScheduler:
    """Return a virtual-clock scheduler; time only moves on advance()."""
    return ManualScheduler()


@pytest.fixture()
def sample_collection() -> dict:
    """Three named points around Athens, uids a/b/c."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [23.70, 37.95]},
                "properties": {"uid": "a", "name": ["Alpha"], "purpose": ["swim"]},
            },
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [23.7002, 37.9501]},
                "properties": {"uid": "b", "name": ["Beta"], "area_size": [120.5]},
            },
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [23.80, 38.00]},
                "properties": {"uid": "c", "name": "Gamma", "tags": {"k": "v"}},
            },
        ],
    }


@pytest.fixture()
def cli_runner() -> CliRunner:
    """Return a Click CliRunner for invoking CLI commands."""
    return CliRunner()


@pytest.fixture()
def cli_env(initialized_root: Path) -> dict[str, str]:
    """Return env dict with GEOEDIT_ROOT pointing to initialized_root."""
    return {"GEOEDIT_ROOT": str(initialized_root)}


@pytest.fixture()
def invoke(cli_runner: CliRunner, cli_env: dict[str, str]):
    """Return a helper that invokes CLI commands with the right environment.

    Usage::

        result = invoke("versions")
    """
    from geoedit.cli.main import cli

    def _invoke(*args: str, **kwargs):
        return cli_runner.invoke(cli, list(args), env=cli_env, **kwargs)

    return _invoke


@pytest.fixture()
def invoke_json(invoke):
    """Like invoke, but appends --json and parses the response.

    Returns (parsed_dict, exit_code) tuple.
    """

    def _invoke_json(*args: str) -> tuple[dict, int]:
        result = invoke(*args, "--json")
        parsed = json.loads(result.output)
        return parsed, result.exit_code

    return _invoke_json
