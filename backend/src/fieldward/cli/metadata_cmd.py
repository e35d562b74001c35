"""Metadata CLI commands - validate and show."""

import click

from fieldward.cli.paths import resolve_settings
from fieldward.hooks import register_builtin_hooks
from fieldward.metadata.loader import EntityRegistry
from fieldward.metadata.validator import validate_metadata_dir
from fieldward.rls.compiler import describe_policy


@click.group()
def metadata():
    """Metadata commands."""
    pass


@metadata.command()
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
def validate(strict: bool):
    """Validate entity YAML against the JSON Schema and cross-references."""
    settings = resolve_settings()
    metadata_path = settings.metadata_path
    if not metadata_path.exists():
        click.echo(f"Error: Metadata directory not found at {metadata_path}", err=True)
        raise SystemExit(1)

    register_builtin_hooks()
    issues = validate_metadata_dir(metadata_path, strict=strict)
    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(
            click.style(
                f"\n{len(errors)} error(s) found"
                + (f", {len(warnings)} warning(s)" if warnings else ""),
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    registry = EntityRegistry(metadata_path).load_all()
    for entity in registry:
        policy = "none" if entity.rls_policy is None else f"{len(entity.rls_policy)} roles"
        click.echo(
            f"  {entity.name:<18} {entity.table_name:<18} "
            f"{len(entity.fields)} fields, rls: {policy}"
        )
    click.echo(click.style(f"\nAll metadata is valid ({len(registry)} entities)", fg="green"))


@metadata.command()
@click.argument("entity_name")
def show(entity_name: str):
    """Show fields, relationships, RLS and dependents of one entity."""
    settings = resolve_settings()
    registry = EntityRegistry(settings.metadata_path).load_all()
    entity = registry.lookup(entity_name)
    if entity is None:
        click.echo(
            f"Error: Unknown entity '{entity_name}'. "
            f"Valid entities: {', '.join(registry.list_entities())}",
            err=True,
        )
        raise SystemExit(1)

    click.echo(click.style(f"{entity.display_name} ({entity.name})", bold=True))
    click.echo(f"  table:       {entity.table_name}")
    click.echo(f"  primary key: {entity.primary_key}")
    click.echo(f"  resource:    {entity.resource}")

    click.echo("\nFields:")
    for f in entity.fields:
        flags = [flag for flag, on in (("required", f.required), ("readOnly", f.read_only)) if on]
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"  {f.name:<24} {f.type}{suffix}")

    click.echo("\nPermissions:")
    for operation in ("create", "read", "update", "delete"):
        level = entity.permissions.for_operation(operation)
        click.echo(f"  {operation:<8} {level or 'disabled'}")

    if entity.rls_policy is not None:
        click.echo("\nRow-level security:")
        for role, policy in entity.rls_policy.items():
            click.echo(f"  {role:<12} {describe_policy(policy)}")

    if entity.relationships:
        click.echo("\nRelationships:")
        for rel in entity.relationships:
            click.echo(f"  {rel.name:<16} {rel.kind} {rel.table} via {rel.foreign_key}")

    if entity.dependents:
        click.echo("\nDependents (deleted first):")
        for dep in entity.dependents:
            poly = (
                f" where {dep.polymorphic.column} = '{dep.polymorphic.value}'"
                if dep.polymorphic
                else ""
            )
            click.echo(f"  {dep.table}.{dep.foreign_key}{poly}")
