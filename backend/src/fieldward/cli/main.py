"""Fieldward CLI entry point."""

import os

import click

from fieldward.core.security_log import configure_logging


@click.group()
@click.option(
    "--log-level",
    default=lambda: os.environ.get("FIELDWARD_LOG_LEVEL", "WARNING"),
    show_default="FIELDWARD_LOG_LEVEL or WARNING",
    help="Root log level.",
)
def cli(log_level: str):
    """Fieldward - metadata-driven access control CLI."""
    configure_logging(log_level)


# Register subcommand groups
from fieldward.cli.db_cmd import db  # noqa: E402
from fieldward.cli.metadata_cmd import metadata  # noqa: E402
from fieldward.cli.rls_cmd import permissions, rls  # noqa: E402

cli.add_command(metadata)
cli.add_command(rls)
cli.add_command(permissions)
cli.add_command(db)
