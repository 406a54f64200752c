"""CLI commands for map views: clusters and distances."""

from __future__ import annotations

import click

from geoedit.cli.helpers import output_error, output_result, parse_floats, require_workspace
from geoedit.cli.main import cli
from geoedit.core.errors import ValidationError
from geoedit.core.features import validate_coordinates
from geoedit.core.merge import haversine_m


def _display_coords(item: dict, jitter: dict) -> list[float]:
    uid = (item.get("properties") or {}).get("uid")
    if uid in jitter:
        return list(jitter[uid])
    return list(item["geometry"]["coordinates"][:2])


# ---------------------------------------------------------------------------
# geoedit clusters
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--bbox", required=True, help="Viewport as WEST,SOUTH,EAST,NORTH.")
@click.option("--zoom", type=float, required=True, help="Map zoom level.")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def clusters(bbox: str, zoom: float, output_json: bool) -> None:
    """Show the clusters and points visible in a viewport."""
    box = parse_floats(bbox, 4, "bbox", output_json)
    workspace = require_workspace(output_json)

    try:
        tracker = workspace.viewport()
    except ValidationError as e:
        output_error(str(e), "VALIDATION_ERROR", output_json)
    items, jitter = tracker.refresh(box, zoom)

    if output_json:
        data = {
            "zoom": tracker.zoom,
            "details": tracker.details_visible,
            "items": [
                {**item, "displayCoordinates": _display_coords(item, jitter)} for item in items
            ],
        }
        output_result(data=data, human_message="", is_json=True)
        return

    click.echo(f"{len(items)} item(s) at zoom {tracker.zoom}")
    for item in items:
        props = item.get("properties") or {}
        lon, lat = _display_coords(item, jitter)
        if props.get("cluster"):
            target = tracker.expansion_zoom(props["cluster_id"], zoom)
            click.echo(
                f"  cluster {props['cluster_id']:<6d} {props['point_count_abbreviated']:>6s} points"
                f"  {lon:.6f},{lat:.6f}  (expands at z{target})"
            )
        else:
            mark = " ~" if props.get("uid") in jitter else ""
            click.echo(f"  point   {props.get('uid', '-')}  {lon:.6f},{lat:.6f}{mark}")


# ---------------------------------------------------------------------------
# geoedit distance
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("a")
@click.argument("b")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def distance(a: str, b: str, output_json: bool) -> None:
    """Great-circle distance in meters between two LON,LAT points."""
    points = []
    for raw in (a, b):
        lon, lat = parse_floats(raw, 2, "point", output_json)
        try:
            points.append(validate_coordinates(lon, lat))
        except ValidationError as e:
            output_error(str(e), "INVALID_ARGUMENT", output_json)

    meters = haversine_m(points[0], points[1])
    output_result(
        data={"meters": meters},
        human_message=f"{meters:.1f} m",
        is_json=output_json,
    )
