"""Resolution of handler references into environment variables and permissions.

Everything here is pure computation over the declared handlers: table names
are deterministic, so no remote lookup is needed.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .exceptions import WiringError
from .models import DeployTaskContext, HandlerDescriptor, HandlerKind, PermissionStatement
from .naming import parameter_path, resource_name

TABLE_CLIENT_ACTIONS = (
    "dynamodb:GetItem",
    "dynamodb:PutItem",
    "dynamodb:DeleteItem",
    "dynamodb:Query",
    "dynamodb:Scan",
    "dynamodb:UpdateItem",
    "dynamodb:BatchGetItem",
    "dynamodb:BatchWriteItem",
)

PARAMETER_ACTIONS = (
    "ssm:GetParameter",
    "ssm:GetParameters",
)

TABLE_ENV_PREFIX = "EFF_TABLE_"
PARAM_ENV_PREFIX = "EFF_PARAM_"


def build_table_name_map(
    handlers: Iterable[HandlerDescriptor], project: str, stage: str
) -> dict[str, str]:
    """Map each table handler's export name to its deterministic table name."""
    return {
        h.export_name: resource_name(project, stage, h.name)
        for h in handlers
        if h.kind is HandlerKind.TABLE
    }


def table_arn(region: str, name: str) -> str:
    return f"arn:aws:dynamodb:{region}:*:table/{name}"


def parameter_arn(region: str, path: str) -> str:
    return f"arn:aws:ssm:{region}:*:parameter{path}"


def base_environment(project: str, stage: str, handler: str) -> dict[str, str]:
    """Variables every deployed function receives."""
    return {"EFF_PROJECT": project, "EFF_STAGE": stage, "EFF_HANDLER": handler}


def declared_statement(permissions: Sequence[str]) -> PermissionStatement | None:
    """Statement for the actions a handler declares itself, on any resource."""
    if not permissions:
        return None
    return PermissionStatement(actions=tuple(permissions))


def merge_statements(
    *groups: Iterable[PermissionStatement | None],
) -> tuple[PermissionStatement, ...]:
    """Concatenate statement groups, dropping empty and duplicate statements."""
    merged: list[PermissionStatement] = []
    for group in groups:
        for statement in group:
            if statement is not None and statement not in merged:
                merged.append(statement)
    return tuple(merged)


@dataclass(frozen=True)
class HandlerWiring:
    """
    Resolved references of one handler.

    Attributes:
        environment: Variables pointing at referenced tables and parameters
        statements: Minimal permissions to use them
        param_paths: Parameter-store paths referenced
    """

    environment: dict[str, str] = field(default_factory=dict)
    statements: tuple[PermissionStatement, ...] = ()
    param_paths: tuple[str, ...] = ()


def resolve_wiring(
    handler: HandlerDescriptor,
    ctx: DeployTaskContext,
    table_names: Mapping[str, str] | None = None,
) -> HandlerWiring:
    """
    Resolve a handler's table dependencies and parameter references.

    Each table dependency yields ``EFF_TABLE_{export}`` and the table client
    actions on that table and its indexes only. Each parameter yields
    ``EFF_PARAM_{prop}`` holding its path and read access to that path.

    Args:
        handler: Handler to resolve
        ctx: Run context holding the table-name map
        table_names: Overrides ``ctx.table_names``

    Returns:
        The resolved environment, statements and parameter paths

    Raises:
        WiringError: If a dependency names no declared table handler
    """
    tables = ctx.table_names if table_names is None else table_names
    environment: dict[str, str] = {}
    statements: list[PermissionStatement] = []

    resources: list[str] = []
    for dep in handler.deps:
        name = tables.get(dep)
        if name is None:
            raise WiringError(handler.name, dep, "No table handler is declared under this name")
        environment[f"{TABLE_ENV_PREFIX}{dep}"] = name
        arn = table_arn(ctx.region, name)
        resources.extend((arn, f"{arn}/index/*"))
    if resources:
        statements.append(PermissionStatement(TABLE_CLIENT_ACTIONS, tuple(resources)))

    paths: list[str] = []
    for ref in handler.params:
        path = parameter_path(ctx.project, ctx.stage, ref.key)
        environment[f"{PARAM_ENV_PREFIX}{ref.prop}"] = path
        paths.append(path)
    if paths:
        statements.append(
            PermissionStatement(
                PARAMETER_ACTIONS, tuple(parameter_arn(ctx.region, p) for p in paths)
            )
        )

    return HandlerWiring(environment, tuple(statements), tuple(paths))
