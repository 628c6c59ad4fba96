"""Tag-based inventory of previously deployed resources.

There is no local state file: what a project stage owns is whatever the
tagging service reports for its project and stage tags. Tags can lag the
real resource state by the tagging service's propagation delay.
"""

import logging
from collections.abc import Iterable, Sequence

from .clients import Capability, paginate
from .infra.roles import RoleReconciler
from .models import ResourceRecord
from .naming import SHARED_API_HANDLER
from .tags import HANDLER_TAG_KEY, PROJECT_TAG_KEY, STAGE_TAG_KEY

logger = logging.getLogger(__name__)


async def find_resources(
    tagging: Capability,
    project: str,
    stage: str,
    handler: str | None = None,
    resource_types: Sequence[str] | None = None,
) -> list[ResourceRecord]:
    """
    Query the tagging service for resources of a project stage.

    Args:
        tagging: Tagging-query capability of one region
        project: Project name
        stage: Stage name
        handler: Restrict to one handler
        resource_types: Tagging-service type filters (e.g. ``"lambda:function"``)

    Returns:
        One record per tagged resource
    """
    tag_filters = [
        {"Key": PROJECT_TAG_KEY, "Values": [project]},
        {"Key": STAGE_TAG_KEY, "Values": [stage]},
    ]
    if handler is not None:
        tag_filters.append({"Key": HANDLER_TAG_KEY, "Values": [handler]})

    params: dict[str, object] = {"TagFilters": tag_filters}
    if resource_types:
        params["ResourceTypeFilters"] = list(resource_types)

    return [
        ResourceRecord.from_tag_mapping(mapping)
        async for mapping in paginate(
            tagging, "get_resources", "ResourceTagMappingList", token_key="PaginationToken", **params
        )
    ]


class ResourceInventory:
    """
    Lists the resources of a project stage across regions.

    Args:
        taggers: Tagging-query capabilities, one per region to scan (the
            deploy region plus ``us-east-1`` for CDN resources)
        roles: Role reconciler used to list roles, which the tagging
            service does not cover
    """

    def __init__(
        self,
        taggers: Sequence[Capability],
        roles: RoleReconciler | None = None,
    ) -> None:
        self._taggers = list(taggers)
        self._roles = roles

    async def list_resources(self, project: str, stage: str) -> list[ResourceRecord]:
        """Flat, ARN-deduplicated list of every owned resource."""
        seen: dict[str, ResourceRecord] = {}
        for tagging in self._taggers:
            for record in await find_resources(tagging, project, stage):
                seen.setdefault(record.arn, record)
        if self._roles is not None:
            for record in await self._roles.list_managed(project, stage):
                seen.setdefault(record.arn, record)
        logger.debug("Inventory of %s/%s: %d resources", project, stage, len(seen))
        return list(seen.values())

    async def by_handler(self, project: str, stage: str) -> dict[str, list[ResourceRecord]]:
        return self.group_by_handler(await self.list_resources(project, stage))

    @staticmethod
    def group_by_handler(records: Iterable[ResourceRecord]) -> dict[str, list[ResourceRecord]]:
        """
        Group records by their handler tag.

        Records without a handler tag are grouped under ``""`` rather than
        dropped.
        """
        groups: dict[str, list[ResourceRecord]] = {}
        for record in records:
            groups.setdefault(record.handler or "", []).append(record)
        return groups

    @staticmethod
    def find_orphaned(
        records: Iterable[ResourceRecord], declared: Iterable[str]
    ) -> list[ResourceRecord]:
        """Records whose handler is no longer declared; shared API resources never are."""
        names = set(declared) | {SHARED_API_HANDLER}
        return [r for r in records if r.handler and r.handler not in names]
