"""Shared CLI helpers and output utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

import click

from geoedit.core.errors import GeoEditRootError
from geoedit.storage.fs import GEOEDIT_DIR, find_root
from geoedit.workspace import Workspace


# ---------------------------------------------------------------------------
# Root & config
# ---------------------------------------------------------------------------


def require_root(is_json: bool = False) -> Path:
    """Find .geoedit/ directory or exit with error."""
    try:
        root = find_root()
    except GeoEditRootError as e:
        output_error(str(e), "NOT_INITIALIZED", is_json)
    if root is None:
        output_error(
            "Not a geoedit project (no .geoedit/ found). Run 'geoedit init' first.",
            "NOT_INITIALIZED",
            is_json,
        )
    return root / GEOEDIT_DIR


def require_workspace(is_json: bool = False) -> Workspace:
    return Workspace(require_root(is_json))


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def json_envelope(ok: bool, *, data: object = None, error: object = None) -> str:
    """Build a structured JSON output envelope."""
    result: dict = {"ok": ok}
    if data is not None:
        result["data"] = data
    if error is not None:
        result["error"] = error
    return json.dumps(result, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def json_error_obj(code: str, message: str) -> dict:
    """Build an error object for the JSON envelope."""
    return {"code": code, "message": message}


def output_error(message: str, code: str, is_json: bool, exit_code: int = 1) -> NoReturn:
    """Print error and exit. JSON errors go to stdout; human errors to stderr."""
    if is_json:
        click.echo(json_envelope(False, error=json_error_obj(code, message)))
    else:
        click.echo(f"Error: {message}", err=True)
    raise SystemExit(exit_code)


def output_result(*, data: object, human_message: str, is_json: bool) -> None:
    """Print success result in the appropriate format."""
    if is_json:
        click.echo(json_envelope(True, data=data))
    else:
        click.echo(human_message)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def parse_floats(raw: str, count: int, what: str, is_json: bool) -> list[float]:
    """Parse ``count`` comma-separated numbers or exit with INVALID_ARGUMENT."""
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != count:
        output_error(
            f"Invalid {what}: '{raw}'. Expected {count} comma-separated numbers.",
            "INVALID_ARGUMENT",
            is_json,
        )
    try:
        return [float(p) for p in parts]
    except ValueError:
        output_error(f"Invalid {what}: '{raw}'. Not a number.", "INVALID_ARGUMENT", is_json)
