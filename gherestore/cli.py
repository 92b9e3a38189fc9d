# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command line entry point: ``ghe-restore``.

Exit codes:
    0  restore complete
    1  aborted (declined, invalid argument, incompatible combination,
       unsupported port, step failure)
    2  missing or invalid configuration
    8  data directory failure
"""

import asyncio
import sys
from typing import List

import click
import structlog
import typer

from gherestore import __version__
from gherestore.config import RestoreOptions
from gherestore.core import run_restore
from gherestore.env import create_config_from_env
from gherestore.exceptions import RestoreError, StepFailure
from gherestore.logs import configure_logging

logger = structlog.get_logger()

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Restore a backup snapshot onto a GitHub Enterprise Server appliance.",
)


def prompt_confirmation(message: str) -> bool:
    """Show a warning and require the operator to type 'yes'."""
    typer.echo(message, err=True)
    try:
        answer = typer.prompt(
            "Type 'yes' to continue", default="", show_default=False, err=True
        )
    except click.exceptions.Abort:
        return False
    return answer.strip() == "yes"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ghe-restore {__version__}")
        raise typer.Exit(code=0)


@app.command()
def restore(
    host: str | None = typer.Argument(
        None,
        help="Appliance to restore onto (host[:port]). Defaults to GHE_RESTORE_HOST.",
        show_default=False,
    ),
    config: bool = typer.Option(
        False, "--config", "-c", help="Also restore appliance settings and license."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Don't prompt for confirmation before restoring."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output."),
    skip_mysql: bool = typer.Option(
        False,
        "--skip-mysql",
        help="Skip the MySQL restore when an external database is configured.",
    ),
    snapshot: str | None = typer.Option(
        None,
        "--snapshot",
        "-s",
        help="Snapshot id to restore (default: the most recent snapshot).",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Restore a snapshot from the backup data directory onto <host>."""
    try:
        restore_config = create_config_from_env(host, verbose=verbose)
    except RestoreError as e:
        typer.echo(f"Error: {e.message}", err=True)
        for detail in e.details.get("errors", []):
            typer.echo(f"  - {detail}", err=True)
        raise typer.Exit(code=e.exit_code)

    configure_logging(restore_config.verbose, restore_config.verbose_log)

    options = RestoreOptions(
        snapshot_id=snapshot,
        restore_settings=config,
        force=force,
        skip_mysql=skip_mysql,
    )

    try:
        result = asyncio.run(
            run_restore(restore_config, options, confirm=prompt_confirmation)
        )
    except RestoreError as e:
        typer.echo(f"Error: {e.message}", err=True)
        if isinstance(e, StepFailure) and e.output:
            typer.echo(e.output, err=True)
        raise typer.Exit(code=e.exit_code)

    typer.echo(f"Restore of {result.host} from snapshot {result.snapshot_id} finished.")
    if result.soft_failures:
        typer.echo(
            f"Completed with warnings from: {', '.join(result.soft_failures)}", err=True
        )
    for notice in result.notices:
        typer.echo(notice)


def main(argv: List[str] | None = None) -> int:
    """
    Console script entry point.

    Usage errors exit with status 1 rather than click's default of 2, which
    is reserved for missing configuration.
    """
    try:
        rv = app(args=argv, prog_name="ghe-restore", standalone_mode=False)
    except click.UsageError as e:
        e.show()
        return 1
    except click.exceptions.Abort:
        typer.echo("Aborted.", err=True)
        return 1
    return rv if isinstance(rv, int) else 0


if __name__ == "__main__":
    sys.exit(main())
