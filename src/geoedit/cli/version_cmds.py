"""CLI commands for the collection and its saved versions."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import click

from geoedit.cli.helpers import output_error, output_result, require_workspace
from geoedit.cli.main import cli
from geoedit.core.errors import ValidationError, VersionNotFound
from geoedit.core.features import first_name
from geoedit.storage.save import import_collection
from geoedit.storage.versions import serialize_collection


def _format_ts(ts_ms: int | float) -> str:
    moment = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


# ---------------------------------------------------------------------------
# geoedit upload
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--user", default=None, help="User recorded on the upload version.")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def upload(file: Path, user: str | None, output_json: bool) -> None:
    """Import a GeoJSON FeatureCollection as a new version and make it current."""
    workspace = require_workspace(output_json)

    try:
        version_id = import_collection(
            workspace.versions,
            file.read_bytes(),
            user=user or workspace.config["default_user"],
        )
    except ValidationError as e:
        output_error(str(e), "VALIDATION_ERROR", output_json)

    count = len(workspace.versions.get_current().get("features", []))
    output_result(
        data={"version_id": version_id, "featureCount": count},
        human_message=f"Uploaded {count} feature(s) as version {version_id}",
        is_json=output_json,
    )


# ---------------------------------------------------------------------------
# geoedit current
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def current(output_json: bool) -> None:
    """Show the current collection."""
    workspace = require_workspace(output_json)
    fc = workspace.versions.get_current()
    features = fc.get("features", [])

    if output_json:
        output_result(data=fc, human_message="", is_json=True)
        return

    click.echo(f"{len(features)} feature(s)")
    for feature in features:
        props = feature.get("properties") or {}
        coords = (feature.get("geometry") or {}).get("coordinates") or []
        where = f"{coords[0]:.6f},{coords[1]:.6f}" if len(coords) >= 2 else "?"
        click.echo(f"  {props.get('uid', '-')}  {where}  {first_name(feature) or '(no name)'}")


# ---------------------------------------------------------------------------
# geoedit versions
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def versions(output_json: bool) -> None:
    """List saved versions, newest first."""
    workspace = require_workspace(output_json)
    items = workspace.versions.list_versions()

    if output_json:
        output_result(data=items, human_message="", is_json=True)
        return

    if not items:
        click.echo("No saved versions.")
        return
    for v in items:
        who = f" by {v['user']}" if v["user"] else ""
        click.echo(
            f"{v['id']}  {_format_ts(v['ts'])}  {v['featureCount']:>5d} features  "
            f"{v['message']}{who}"
        )


# ---------------------------------------------------------------------------
# geoedit export
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("version_id")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    default=None,
    help="Write to FILE instead of stdout.",
)
def export(version_id: str, output: Path | None) -> None:
    """Write the FeatureCollection of a saved version."""
    workspace = require_workspace(False)

    try:
        record = workspace.versions.get_version(version_id)
    except VersionNotFound as e:
        output_error(str(e), "NOT_FOUND", False)

    fc = record.get("featureCollection")
    if not isinstance(fc, dict):
        output_error(f"Version '{version_id}' holds no FeatureCollection", "CORRUPT", False)

    text = serialize_collection(fc)
    if output is None:
        click.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Wrote {len(fc.get('features', []))} feature(s) to {output}", err=True)
