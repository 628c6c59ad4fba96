"""DynamoDB table reconciliation.

Every table shares one fixed single-table schema:

- ``pk`` (partition) and ``sk`` (sort) string keys
- ``tag`` entity-type discriminator, indexed with ``pk`` by ``tag-pk-index``
- ``data`` payload and ``ttl`` expiry attributes (not part of the key schema)

Stream, index and TTL are converged independently on existing tables, so a
table created by hand or by an older release still ends up complete.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..clients import Capability, paginate
from ..exceptions import ServiceError
from ..models import EnsureResult, EnsureStatus, TableIdentity
from ..tags import from_tag_list, missing_tags, to_tag_list
from ..waiter import TABLE_ACTIVE, WaitOutcome, WaitSpec, wait_until

logger = logging.getLogger(__name__)

PARTITION_KEY = "pk"
SORT_KEY = "sk"
TAG_ATTRIBUTE = "tag"
DATA_ATTRIBUTE = "data"
TTL_ATTRIBUTE = "ttl"
TAG_INDEX_NAME = "tag-pk-index"

KEY_SCHEMA = [
    {"AttributeName": PARTITION_KEY, "KeyType": "HASH"},
    {"AttributeName": SORT_KEY, "KeyType": "RANGE"},
]

ATTRIBUTE_DEFINITIONS = [
    {"AttributeName": PARTITION_KEY, "AttributeType": "S"},
    {"AttributeName": SORT_KEY, "AttributeType": "S"},
    {"AttributeName": TAG_ATTRIBUTE, "AttributeType": "S"},
]

TAG_INDEX = {
    "IndexName": TAG_INDEX_NAME,
    "KeySchema": [
        {"AttributeName": TAG_ATTRIBUTE, "KeyType": "HASH"},
        {"AttributeName": PARTITION_KEY, "KeyType": "RANGE"},
    ],
    "Projection": {"ProjectionType": "ALL"},
}


@dataclass(frozen=True)
class TableSpec:
    """Desired state of one table."""

    name: str
    tags: dict[str, str] = field(default_factory=dict)
    stream_view: str = "NEW_AND_OLD_IMAGES"
    billing_mode: str = "PAY_PER_REQUEST"


def _classify_table(table: dict[str, Any]) -> WaitOutcome:
    status = table.get("TableStatus")
    if status == "ACTIVE":
        return WaitOutcome.SATISFIED
    if status in ("CREATING", "UPDATING"):
        return WaitOutcome.PENDING
    return WaitOutcome.FAILED


def _identity(table: dict[str, Any]) -> TableIdentity:
    return TableIdentity(
        name=table["TableName"],
        arn=table["TableArn"],
        stream_arn=table.get("LatestStreamArn"),
    )


class TableReconciler:
    """Converges tables by name."""

    def __init__(self, dynamodb: Capability, *, active_wait: WaitSpec = TABLE_ACTIVE) -> None:
        self._dynamodb = dynamodb
        self._active_wait = active_wait

    async def describe(self, name: str) -> dict[str, Any] | None:
        try:
            response = await self._dynamodb.call("describe_table", TableName=name)
        except ServiceError as e:
            if e.is_not_found:
                return None
            raise
        return response["Table"]

    async def wait_active(self, name: str) -> dict[str, Any]:
        async def probe() -> dict[str, Any]:
            response = await self._dynamodb.call("describe_table", TableName=name)
            return response["Table"]

        return await wait_until(
            probe,
            _classify_table,
            self._active_wait,
            description=f"table {name} to become ACTIVE",
            status_of=lambda t: t.get("TableStatus"),
        )

    async def ensure(self, spec: TableSpec) -> EnsureResult[TableIdentity]:
        """
        Create the table or converge stream, index, TTL and tags.

        Args:
            spec: Desired table state

        Returns:
            EnsureResult with the table identity including its stream ARN
        """
        table = await self.describe(spec.name)

        if table is None:
            logger.info("Creating table %s", spec.name)
            await self._dynamodb.call(
                "create_table",
                TableName=spec.name,
                KeySchema=KEY_SCHEMA,
                AttributeDefinitions=ATTRIBUTE_DEFINITIONS,
                GlobalSecondaryIndexes=[TAG_INDEX],
                BillingMode=spec.billing_mode,
                StreamSpecification={"StreamEnabled": True, "StreamViewType": spec.stream_view},
                Tags=to_tag_list(spec.tags),
            )
            table = await self.wait_active(spec.name)
            await self._ensure_ttl(spec.name)
            return EnsureResult(_identity(table), EnsureStatus.CREATED)

        if table.get("TableStatus") != "ACTIVE":
            table = await self.wait_active(spec.name)

        changed = False
        changed |= await self._ensure_stream(spec, table)
        changed |= await self._ensure_index(spec, table)
        changed |= await self._ensure_ttl(spec.name)
        await self._ensure_tags(table["TableArn"], spec.tags)

        if changed:
            # Stream ARN only exists after the stream was enabled
            table = await self.describe(spec.name) or table
            return EnsureResult(_identity(table), EnsureStatus.UPDATED)
        return EnsureResult(_identity(table), EnsureStatus.UNCHANGED)

    async def _ensure_stream(self, spec: TableSpec, table: dict[str, Any]) -> bool:
        stream = table.get("StreamSpecification") or {}
        if stream.get("StreamEnabled"):
            if stream.get("StreamViewType") != spec.stream_view:
                logger.warning(
                    "Table %s streams %s, not %s; disable the stream to change its view type",
                    spec.name,
                    stream.get("StreamViewType"),
                    spec.stream_view,
                )
            return False

        logger.info("Enabling stream on table %s", spec.name)
        await self._dynamodb.call(
            "update_table",
            TableName=spec.name,
            StreamSpecification={"StreamEnabled": True, "StreamViewType": spec.stream_view},
        )
        await self.wait_active(spec.name)
        return True

    async def _ensure_index(self, spec: TableSpec, table: dict[str, Any]) -> bool:
        indexes = table.get("GlobalSecondaryIndexes") or []
        if any(index.get("IndexName") == TAG_INDEX_NAME for index in indexes):
            return False

        logger.info("Adding index %s to table %s", TAG_INDEX_NAME, spec.name)
        await self._dynamodb.call(
            "update_table",
            TableName=spec.name,
            AttributeDefinitions=ATTRIBUTE_DEFINITIONS,
            GlobalSecondaryIndexUpdates=[{"Create": TAG_INDEX}],
        )
        await self.wait_active(spec.name)
        return True

    async def _ensure_ttl(self, name: str) -> bool:
        response = await self._dynamodb.call("describe_time_to_live", TableName=name)
        description = response.get("TimeToLiveDescription") or {}
        status = description.get("TimeToLiveStatus")
        attribute = description.get("AttributeName")

        if status == "ENABLING":
            return False
        if status == "ENABLED":
            if attribute != TTL_ATTRIBUTE:
                logger.warning(
                    "Table %s expires items on '%s', not '%s'; leaving TTL as is",
                    name,
                    attribute,
                    TTL_ATTRIBUTE,
                )
            return False

        logger.info("Enabling TTL on table %s", name)
        await self._dynamodb.call(
            "update_time_to_live",
            TableName=name,
            TimeToLiveSpecification={"Enabled": True, "AttributeName": TTL_ATTRIBUTE},
        )
        await self.wait_active(name)
        return True

    async def _ensure_tags(self, arn: str, tags: dict[str, str]) -> None:
        current = [
            t
            async for t in paginate(
                self._dynamodb, "list_tags_of_resource", "Tags", ResourceArn=arn
            )
        ]
        new_tags = missing_tags(from_tag_list(current), tags)
        if new_tags:
            await self._dynamodb.call("tag_resource", ResourceArn=arn, Tags=to_tag_list(new_tags))

    async def delete(self, name: str) -> bool:
        """
        Delete a table.

        Returns:
            True if deleted, False if it did not exist
        """
        try:
            await self._dynamodb.call("delete_table", TableName=name)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted table %s", name)
        return True
