"""Tests for table reconciliation."""

import pytest

from effortless_deploy.clients import AwsClients
from effortless_deploy.exceptions import TerminalStateError
from effortless_deploy.infra.tables import TAG_INDEX_NAME, TableReconciler, TableSpec
from effortless_deploy.models import EnsureStatus
from effortless_deploy.tags import REQUIRED_TAG_KEYS
from effortless_deploy.waiter import WaitSpec
from tests.fixtures.fakes import FakeDynamoDB
from tests.fixtures.services import FAST_WAIT

TAGS = {
    "effortless:project": "shop",
    "effortless:stage": "dev",
    "effortless:handler": "orders",
    "effortless:type": "dynamodb",
}

UPDATE_ACTIONS = ("update_table", "update_time_to_live", "create_table", "tag_resource")


@pytest.fixture
def dynamodb() -> FakeDynamoDB:
    return FakeDynamoDB()


@pytest.fixture
def tables(dynamodb) -> TableReconciler:
    return TableReconciler(dynamodb, active_wait=FAST_WAIT)


def updates(dynamodb: FakeDynamoDB) -> list[str]:
    return [a for a in dynamodb.actions() if a in UPDATE_ACTIONS]


class TestTableReconciler:
    """Test TableReconciler with an in-memory table service."""

    async def test_create(self, tables, dynamodb) -> None:
        result = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert result.status is EnsureStatus.CREATED
        assert result.identity.name == "shop-dev-orders"
        assert result.identity.stream_arn is not None
        create = dynamodb.params("create_table")[0]
        assert create["BillingMode"] == "PAY_PER_REQUEST"
        assert create["GlobalSecondaryIndexes"][0]["IndexName"] == TAG_INDEX_NAME
        assert {t["Key"] for t in create["Tags"]} == set(REQUIRED_TAG_KEYS)
        assert dynamodb.ttl["shop-dev-orders"]["TimeToLiveStatus"] == "ENABLED"

    async def test_converges_bare_table_with_three_updates(self, tables, dynamodb) -> None:
        """A table missing stream, index and TTL needs exactly three updates, then none."""
        dynamodb.add_table("shop-dev-orders", tags=TAGS)

        first = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert first.status is EnsureStatus.UPDATED
        assert updates(dynamodb) == ["update_table", "update_table", "update_time_to_live"]
        assert first.identity.stream_arn is not None

        dynamodb.reset_calls()
        second = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert second.status is EnsureStatus.UNCHANGED
        assert updates(dynamodb) == []

    async def test_complete_table_is_unchanged(self, tables, dynamodb) -> None:
        dynamodb.add_table("shop-dev-orders", stream=True, index=True, ttl=True, tags=TAGS)

        result = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert result.status is EnsureStatus.UNCHANGED
        assert dynamodb.writes() == []

    async def test_only_missing_ttl(self, tables, dynamodb) -> None:
        dynamodb.add_table("shop-dev-orders", stream=True, index=True, tags=TAGS)

        result = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert result.status is EnsureStatus.UPDATED
        assert updates(dynamodb) == ["update_time_to_live"]

    async def test_ttl_on_other_attribute_is_left_alone(self, tables, dynamodb) -> None:
        dynamodb.add_table("shop-dev-orders", stream=True, index=True, tags=TAGS)
        dynamodb.ttl["shop-dev-orders"] = {"TimeToLiveStatus": "ENABLED", "AttributeName": "exp"}

        result = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert result.status is EnsureStatus.UNCHANGED

    async def test_missing_tags_are_added(self, tables, dynamodb) -> None:
        dynamodb.add_table("shop-dev-orders", stream=True, index=True, ttl=True)

        result = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert result.status is EnsureStatus.UNCHANGED
        assert len(dynamodb.params("tag_resource")[0]["Tags"]) == 4

    async def test_waits_for_creating_table(self, dynamodb) -> None:
        table = dynamodb.add_table("shop-dev-orders", stream=True, index=True, ttl=True, tags=TAGS)
        creating = {"Table": {**table, "TableStatus": "CREATING"}}
        active = {"Table": dict(table)}
        dynamodb.script("describe_table", creating, creating, active)

        reconciler = TableReconciler(dynamodb, active_wait=WaitSpec(5, 0))
        result = await reconciler.ensure(TableSpec("shop-dev-orders", TAGS))

        assert result.status is EnsureStatus.UNCHANGED
        assert dynamodb.count("describe_table") == 3

    async def test_deleting_table_is_terminal(self, dynamodb) -> None:
        table = dynamodb.add_table("shop-dev-orders")
        dynamodb.script("describe_table", {"Table": {**table, "TableStatus": "DELETING"}})

        reconciler = TableReconciler(dynamodb, active_wait=WaitSpec(5, 0))
        with pytest.raises(TerminalStateError):
            await reconciler.ensure(TableSpec("shop-dev-orders", TAGS))

    async def test_delete(self, tables, dynamodb) -> None:
        dynamodb.add_table("shop-dev-orders")

        assert await tables.delete("shop-dev-orders") is True
        assert await tables.delete("shop-dev-orders") is False


class TestTableReconcilerMoto:
    """Test TableReconciler against moto's DynamoDB."""

    async def test_create_then_unchanged(self, mock_dynamodb) -> None:
        async with AwsClients("us-east-1") as clients:
            tables = TableReconciler(await clients.get("dynamodb"), active_wait=FAST_WAIT)

            created = await tables.ensure(TableSpec("shop-dev-orders", TAGS))
            again = await tables.ensure(TableSpec("shop-dev-orders", TAGS))

        assert created.status is EnsureStatus.CREATED
        assert created.identity.stream_arn
        assert again.status is EnsureStatus.UNCHANGED
        assert again.identity.arn == created.identity.arn

    async def test_delete_missing_table(self, mock_dynamodb) -> None:
        async with AwsClients("us-east-1") as clients:
            tables = TableReconciler(await clients.get("dynamodb"), active_wait=FAST_WAIT)

            assert await tables.delete("nope") is False
