"""CLI commands for the audit log (recent, commit)."""

from __future__ import annotations

from datetime import datetime, timezone

import click

from geoedit.cli.helpers import output_error, output_result, require_workspace
from geoedit.cli.main import cli
from geoedit.storage.audit import RECENT_DEFAULT_LIMIT, RECENT_MAX_LIMIT
from geoedit.storage.locks import LockTimeout


def _format_entry(entry: dict) -> str:
    ts = entry.get("ts")
    when = (
        datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        if isinstance(ts, (int, float))
        else "?"
    )
    mark = "*" if entry.get("committed") is True else " "
    return f"{mark} {when}  {entry.get('user') or '-':<12s} {entry.get('summary', '')}"


# ---------------------------------------------------------------------------
# Audit command group
# ---------------------------------------------------------------------------


@cli.group()
def audit() -> None:
    """Inspect and commit the shared audit log."""


# ---------------------------------------------------------------------------
# geoedit audit recent
# ---------------------------------------------------------------------------


@audit.command("recent")
@click.option(
    "--limit",
    type=int,
    default=RECENT_DEFAULT_LIMIT,
    show_default=True,
    help=f"Number of trailing log lines to scan (1-{RECENT_MAX_LIMIT}).",
)
@click.option("--user", default=None, help="Only entries by this user.")
@click.option(
    "--committed/--uncommitted",
    "committed",
    default=None,
    help="Only committed (or only uncommitted) entries.",
)
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def audit_recent(
    limit: int,
    user: str | None,
    committed: bool | None,
    output_json: bool,
) -> None:
    """Show the most recent audit entries, oldest first."""
    workspace = require_workspace(output_json)
    entries = workspace.audit.recent(limit, user=user, committed=committed)

    if output_json:
        output_result(data={"entries": entries}, human_message="", is_json=True)
        return

    if not entries:
        click.echo("No audit entries.")
        return
    for entry in entries:
        click.echo(_format_entry(entry))


# ---------------------------------------------------------------------------
# geoedit audit commit
# ---------------------------------------------------------------------------


@audit.command("commit")
@click.argument("session_id")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def audit_commit(session_id: str, output_json: bool) -> None:
    """Mark every uncommitted entry of SESSION_ID as committed."""
    workspace = require_workspace(output_json)
    try:
        updated = workspace.audit.commit(session_id)
    except LockTimeout as e:
        output_error(str(e), "LOCKED", output_json)
    output_result(
        data={"updated": updated},
        human_message=f"Committed {updated} audit entr{'y' if updated == 1 else 'ies'}",
        is_json=output_json,
    )
