"""CLI entry point and commands."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from geoedit.core.config import default_config, serialize_config
from geoedit.storage.fs import GEOEDIT_DIR, atomic_write, ensure_geoedit_dirs


@click.group()
@click.version_option(package_name="geoedit", prog_name="geoedit")
@click.option("--verbose", "-v", is_flag=True, help="Log progress messages to stderr.")
def cli(verbose: bool) -> None:
    """geoedit: collaborative point-dataset editing engine."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


@cli.command()
@click.option(
    "--path",
    "target_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to initialize geoedit in (defaults to current directory).",
)
@click.option(
    "--user",
    default=None,
    help="Default user name recorded in audit entries. Saved to config.",
)
def init(target_path: str, user: str | None) -> None:
    """Initialize a new geoedit project."""
    root = Path(target_path)
    data_dir = root / GEOEDIT_DIR

    # Idempotency: if .geoedit/ already exists as a directory, skip
    if data_dir.is_dir():
        click.echo(f"geoedit already initialized in {GEOEDIT_DIR}/")
        return

    if data_dir.exists():
        raise click.ClickException(
            f"Cannot initialize: '{GEOEDIT_DIR}' exists but is not a directory. "
            "Remove it and try again."
        )

    try:
        ensure_geoedit_dirs(root)
        config: dict = dict(default_config())
        if user:
            config["default_user"] = user.strip()[:40]
        atomic_write(data_dir / "config.json", serialize_config(config))
    except PermissionError:
        raise click.ClickException(f"Permission denied: cannot create {GEOEDIT_DIR}/ in {root}")
    except OSError as e:
        raise click.ClickException(f"Failed to initialize geoedit: {e}")

    click.echo(f"geoedit initialized in {GEOEDIT_DIR}/")
    if user:
        click.echo(f"Default user: {config['default_user']}")


# ---------------------------------------------------------------------------
# Register command modules (must be after cli is defined)
# ---------------------------------------------------------------------------

from geoedit.cli import version_cmds as _version_cmds  # noqa: E402, F401
from geoedit.cli import audit_cmds as _audit_cmds  # noqa: E402, F401
from geoedit.cli import map_cmds as _map_cmds  # noqa: E402, F401


if __name__ == "__main__":
    cli()
