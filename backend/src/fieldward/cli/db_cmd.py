"""Database commands."""

import click

from fieldward.cli.paths import resolve_settings
from fieldward.metadata.loader import EntityRegistry
from fieldward.persistence.config import create_db_engine
from fieldward.persistence.schema import create_schema


@click.group()
def db():
    """Database commands."""
    pass


@db.command()
def init():
    """Create tables for every entity plus the audit table."""
    settings = resolve_settings()
    registry = EntityRegistry(settings.metadata_path).load_all()
    engine = create_db_engine(settings.database)
    try:
        tables = create_schema(engine, registry, settings.audit_table)
    finally:
        engine.dispose()
    for table in tables:
        click.echo(f"  {table}")
    click.echo(click.style(f"Ensured {len(tables)} tables", fg="green"))
