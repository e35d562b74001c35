"""RLS and permission inspection commands."""

import click

from fieldward.auth.permissions import PermissionMatrix
from fieldward.auth.roles import ROLE_HIERARCHY
from fieldward.cli.paths import resolve_settings
from fieldward.metadata.loader import EntityRegistry
from fieldward.rls.compiler import compile_filter, describe
from fieldward.rls.context import SecurityContext

# Placeholder identity used to render example clauses
_SAMPLE_IDS = {"user_id": 1, "customer_profile_id": 1, "technician_profile_id": 1}

_role_option = click.option(
    "--role",
    required=True,
    type=click.Choice(list(ROLE_HIERARCHY)),
    help="Role to evaluate.",
)


def _load() -> tuple[EntityRegistry, PermissionMatrix]:
    registry = EntityRegistry(resolve_settings().metadata_path).load_all()
    return registry, PermissionMatrix.from_registry(registry)


@click.group()
def rls():
    """Row-level security commands."""
    pass


@rls.command()
@_role_option
@click.option("--entity", "entity_name", default=None, help="Limit output to one entity.")
def explain(role: str, entity_name: str | None):
    """Show the filter each entity applies to ROLE."""
    registry, matrix = _load()
    if entity_name:
        entity = registry.lookup(entity_name)
        if entity is None:
            click.echo(f"Error: Unknown entity '{entity_name}'", err=True)
            raise SystemExit(1)
        entities = [entity]
    else:
        entities = list(registry)

    for entity in entities:
        policy = matrix.rls_policy(role, entity.resource)
        context = SecurityContext(
            filter_config=policy, role=role, resource=entity.resource, **_SAMPLE_IDS
        )
        result = compile_filter(context, entity)
        clause = result.clause or "(no filter)"
        readable = matrix.has_permission(role, entity.resource, "read")
        colour = "green" if readable and clause != "1=0" else "yellow"
        click.echo(click.style(f"{entity.resource:<18}", fg=colour) + f" {describe(policy)}")
        click.echo(f"{'':<18} WHERE {clause}" + ("" if readable else "  (read not permitted)"))


@click.group()
def permissions():
    """Permission matrix commands."""
    pass


@permissions.command("show")
@_role_option
def show_permissions(role: str):
    """List the operations ROLE may perform on each entity."""
    _, matrix = _load()
    for resource in matrix.resources():
        allowed = matrix.get_allowed_operations(role, resource)
        click.echo(f"{resource:<18} {', '.join(allowed) if allowed else '-'}")
