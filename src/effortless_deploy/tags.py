"""Ownership tags stamped on every managed resource.

Tags are the only durable record of what a project stage owns; the inventory
and cleanup read them back through the tagging service.
"""

from typing import Literal

from .models import TagContext

TAG_PREFIX = "effortless:"
PROJECT_TAG_KEY = f"{TAG_PREFIX}project"
STAGE_TAG_KEY = f"{TAG_PREFIX}stage"
HANDLER_TAG_KEY = f"{TAG_PREFIX}handler"
TYPE_TAG_KEY = f"{TAG_PREFIX}type"

REQUIRED_TAG_KEYS = (PROJECT_TAG_KEY, STAGE_TAG_KEY, HANDLER_TAG_KEY, TYPE_TAG_KEY)

ResourceType = Literal[
    "lambda",
    "iam-role",
    "dynamodb",
    "api-gateway",
    "sqs",
    "s3-bucket",
    "cloudfront-distribution",
]


def make_tags(ctx: TagContext, resource_type: ResourceType) -> dict[str, str]:
    """
    Build the ownership tag set for one resource.

    Args:
        ctx: Project, stage and handler identity
        resource_type: Resource type recorded in the ``type`` tag

    Returns:
        Dict of the four required tags
    """
    return {
        PROJECT_TAG_KEY: ctx.project,
        STAGE_TAG_KEY: ctx.stage,
        HANDLER_TAG_KEY: ctx.handler,
        TYPE_TAG_KEY: resource_type,
    }


def to_tag_list(tags: dict[str, str]) -> list[dict[str, str]]:
    """Convert to the ``[{"Key": ..., "Value": ...}]`` shape most services use."""
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def from_tag_list(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags or []}


def missing_tags(current: dict[str, str] | None, desired: dict[str, str]) -> dict[str, str]:
    """Return the desired tags that are absent or carry a different value."""
    current = current or {}
    return {k: v for k, v in desired.items() if current.get(k) != v}
