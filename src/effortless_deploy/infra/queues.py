"""FIFO queue reconciliation."""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..clients import Capability
from ..exceptions import ServiceError
from ..models import EnsureResult, EnsureStatus, QueueIdentity
from ..tags import missing_tags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSpec:
    """Desired state of one FIFO queue."""

    name: str
    tags: dict[str, str] = field(default_factory=dict)
    visibility_timeout: int = 30
    retention_period: int = 345600
    content_based_deduplication: bool = True

    def attributes(self) -> dict[str, str]:
        """Mutable attributes, in the string form SQS reports them."""
        return {
            "VisibilityTimeout": str(self.visibility_timeout),
            "MessageRetentionPeriod": str(self.retention_period),
            "ContentBasedDeduplication": "true" if self.content_based_deduplication else "false",
        }


class QueueReconciler:
    """Converges FIFO queues by name."""

    def __init__(self, sqs: Capability) -> None:
        self._sqs = sqs

    async def get_url(self, name: str) -> str | None:
        try:
            response = await self._sqs.call("get_queue_url", QueueName=name)
        except ServiceError as e:
            if e.is_not_found:
                return None
            raise
        return response["QueueUrl"]

    async def _attributes(self, url: str) -> dict[str, Any]:
        response = await self._sqs.call("get_queue_attributes", QueueUrl=url, AttributeNames=["All"])
        return response.get("Attributes") or {}

    async def ensure(self, spec: QueueSpec) -> EnsureResult[QueueIdentity]:
        """
        Create the queue or set only the attributes that differ.

        Returns:
            EnsureResult with the queue URL and ARN
        """
        if not spec.name.endswith(".fifo"):
            raise ValueError(f"FIFO queue name must end with '.fifo': {spec.name}")

        url = await self.get_url(spec.name)
        if url is None:
            logger.info("Creating queue %s", spec.name)
            created = await self._sqs.call(
                "create_queue",
                QueueName=spec.name,
                Attributes={"FifoQueue": "true", **spec.attributes()},
                tags=spec.tags,
            )
            url = created["QueueUrl"]
            attributes = await self._attributes(url)
            return EnsureResult(QueueIdentity(url, attributes["QueueArn"]), EnsureStatus.CREATED)

        attributes = await self._attributes(url)
        status = EnsureStatus.UNCHANGED
        changes = {k: v for k, v in spec.attributes().items() if attributes.get(k) != v}
        if changes:
            logger.info("Updating queue %s: %s", spec.name, sorted(changes))
            await self._sqs.call("set_queue_attributes", QueueUrl=url, Attributes=changes)
            status = EnsureStatus.UPDATED

        response = await self._sqs.call("list_queue_tags", QueueUrl=url)
        new_tags = missing_tags(response.get("Tags"), spec.tags)
        if new_tags:
            await self._sqs.call("tag_queue", QueueUrl=url, Tags=new_tags)

        return EnsureResult(QueueIdentity(url, attributes["QueueArn"]), status)

    async def delete(self, name: str) -> bool:
        """
        Delete a queue.

        Returns:
            True if deleted, False if it did not exist
        """
        url = await self.get_url(name)
        if url is None:
            return False
        try:
            await self._sqs.call("delete_queue", QueueUrl=url)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted queue %s", name)
        return True
