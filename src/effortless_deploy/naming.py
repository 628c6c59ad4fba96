"""Resource naming utilities.

This module provides centralized validation and derivation of resource names.
Project, stage and handler names must satisfy the most restrictive rules of
the resources derived from them:
- Alphanumeric characters and hyphens only
- Must start with a letter
- Combined ``{project}-{stage}-{handler}`` at most 64 characters (IAM role
  and Lambda function name limit)
"""

import os
import re

from .exceptions import ValidationError

DEFAULT_STAGE = "dev"
"""Stage used when neither an explicit stage nor ``EFF_STAGE`` is set."""

STAGE_ENV_VAR = "EFF_STAGE"
"""Environment variable for overriding the default stage."""

DEFAULT_REGION = "eu-central-1"
"""Region used when neither an explicit region nor an env var is set."""

REGION_ENV_VARS = ("EFF_REGION", "AWS_REGION", "AWS_DEFAULT_REGION")
"""Environment variables consulted for the region, in order."""

MAX_RESOURCE_NAME_LENGTH = 64

SHARED_API_HANDLER = "api"
"""Handler tag value of the HTTP API shared by every handler of a stage."""

# Name validation pattern:
# - Alphanumeric and hyphens only
# - Must start with a letter
NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")


def validate_name(name: str, field: str = "name") -> None:
    """
    Validate a project, stage or handler identifier.

    Args:
        name: The user-provided identifier
        field: Field label used in error messages

    Raises:
        ValidationError: If the name contains invalid characters
    """
    if not name:
        raise ValidationError(field, name, "Name cannot be empty")

    # Check for common invalid characters with helpful messages
    if "_" in name:
        raise ValidationError(
            field,
            name,
            "Contains underscore. Use hyphens instead (e.g., 'send-mail' not 'send_mail')",
        )
    if " " in name:
        raise ValidationError(
            field,
            name,
            "Contains spaces. Use hyphens instead (e.g., 'my-app' not 'my app')",
        )

    if not NAME_PATTERN.match(name):
        raise ValidationError(
            field,
            name,
            "Must start with a letter and contain only alphanumeric characters and hyphens.",
        )


def validate_handler_name(name: str, field: str = "handler name") -> None:
    """Validate a handler name, which must not collide with the shared API's tag value."""
    validate_name(name, field)
    if name == SHARED_API_HANDLER:
        raise ValidationError(field, name, "Reserved for the shared HTTP API")


def resource_name(project: str, stage: str, handler: str, suffix: str | None = None) -> str:
    """
    Derive the deterministic name of a handler-owned resource.

    Args:
        project: Project name
        stage: Stage name
        handler: Handler name
        suffix: Optional suffix appended with a hyphen (e.g. ``site``, ``ws``)

    Returns:
        ``{project}-{stage}-{handler}`` or ``{project}-{stage}-{handler}-{suffix}``

    Raises:
        ValidationError: If the derived name exceeds the resource name limit
    """
    name = f"{project}-{stage}-{handler}"
    if suffix:
        name = f"{name}-{suffix}"
    if len(name) > MAX_RESOURCE_NAME_LENGTH:
        raise ValidationError(
            "resource name",
            name,
            f"Too long. Exceeds {MAX_RESOURCE_NAME_LENGTH} characters; "
            "shorten the project, stage or handler name.",
        )
    return name


def project_name(project: str, stage: str, suffix: str | None = None) -> str:
    """Derive the name of a resource shared by every handler of a project stage."""
    name = f"{project}-{stage}"
    return f"{name}-{suffix}" if suffix else name


def queue_name(project: str, stage: str, handler: str) -> str:
    """FIFO queue names must carry the ``.fifo`` suffix."""
    return f"{resource_name(project, stage, handler)}.fifo"


def bucket_name(project: str, stage: str, handler: str) -> str:
    """S3 bucket names are lowercase only."""
    return resource_name(project, stage, handler, "site").lower()


def parameter_path(project: str, stage: str, key: str) -> str:
    """Parameter-store path for an external configuration value."""
    return f"/{project}/{stage}/{key.lstrip('/')}"


def resolve_stage(stage: str | None = None) -> str:
    """Resolve stage from explicit arg, env var, or default.

    Resolution order: ``stage`` arg → ``EFF_STAGE`` env var → ``"dev"``.

    Args:
        stage: Explicit stage name, or ``None`` to use env/default.

    Returns:
        Validated stage name.
    """
    name = stage or os.environ.get(STAGE_ENV_VAR) or DEFAULT_STAGE
    validate_name(name, "stage")
    return name


def resolve_region(region: str | None = None) -> str:
    """Resolve region from explicit arg, env vars, or default."""
    if region:
        return region
    for var in REGION_ENV_VARS:
        value = os.environ.get(var)
        if value:
            return value
    return DEFAULT_REGION
