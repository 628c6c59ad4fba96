"""Explicit deletion of deployed resources found through the inventory."""

import logging
from collections.abc import Iterable

from .models import ResourceRecord
from .naming import project_name
from .services import DeployServices

logger = logging.getLogger(__name__)

# Routing first so nothing invokes a function being deleted; roles last
# because functions run as them.
DELETE_ORDER = (
    "api-gateway",
    "lambda",
    "sqs",
    "dynamodb",
    "cloudfront-distribution",
    "s3-bucket",
    "iam-role",
)


def _order(record: ResourceRecord) -> int:
    try:
        return DELETE_ORDER.index(record.type)
    except ValueError:
        return len(DELETE_ORDER)


class ResourceCleaner:
    """Deletes inventory records in a dependency-safe order."""

    def __init__(self, services: DeployServices) -> None:
        self.services = services

    @staticmethod
    def plan(records: Iterable[ResourceRecord]) -> list[ResourceRecord]:
        """Order records for deletion; unknown types go last."""
        return sorted(records, key=_order)

    async def delete(
        self, records: Iterable[ResourceRecord], dry_run: bool = False
    ) -> list[ResourceRecord]:
        """
        Delete the given records.

        Args:
            records: Inventory records to delete
            dry_run: Only log what would be deleted

        Returns:
            The records that were (or, in a dry run, would be) deleted
        """
        done: list[ResourceRecord] = []
        for record in self.plan(records):
            if dry_run:
                logger.info("[dry run] Would delete %s %s", record.type, record.arn)
                done.append(record)
                continue
            if await self.delete_one(record):
                done.append(record)
        return done

    async def delete_one(self, record: ResourceRecord) -> bool:
        services = self.services
        resource_id = record.resource_id
        if record.type == "api-gateway":
            return await services.http.delete_api(resource_id)
        if record.type == "lambda":
            return await services.functions.delete(resource_id)
        if record.type == "sqs":
            return await services.queues.delete(resource_id)
        if record.type == "dynamodb":
            return await services.tables.delete(resource_id)
        if record.type == "cloudfront-distribution":
            return await services.cdn.disable_and_delete(resource_id)
        if record.type == "s3-bucket":
            return await services.buckets.delete(resource_id)
        if record.type == "iam-role":
            return await services.roles.delete(resource_id)

        logger.warning("Skipping %s: unknown resource type '%s'", record.arn, record.type)
        return False

    async def delete_layer(self, project: str, stage: str, dry_run: bool = False) -> int:
        """Delete every version of the project stage's dependency layer."""
        name = project_name(project, stage, "deps")
        if dry_run:
            versions = await self.services.layers.list_versions(name)
            for version in versions:
                logger.info("[dry run] Would delete layer %s version %s", name, version["Version"])
            return len(versions)
        return await self.services.layers.delete_all_versions(name)

    async def delete_shared(self, project: str, stage: str, dry_run: bool = False) -> list[str]:
        """
        Delete the untagged CDN resources shared by a stage's static sites.

        Must run after the distributions using them are gone.
        """
        rewrite = project_name(project, stage, "url-rewrite")
        oac = project_name(project, stage, "oac")
        if dry_run:
            logger.info("[dry run] Would delete CDN function %s and access control %s", rewrite, oac)
            return [rewrite, oac]

        deleted: list[str] = []
        if await self.services.cdn.delete_url_rewrite_function(rewrite):
            deleted.append(rewrite)
        if await self.services.cdn.delete_oac(oac):
            deleted.append(oac)
        return deleted
