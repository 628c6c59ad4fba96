"""Tests for FIFO queue reconciliation."""

import pytest

from effortless_deploy.infra.queues import QueueReconciler, QueueSpec
from effortless_deploy.models import EnsureStatus
from tests.fixtures.fakes import FakeSqs

TAGS = {"effortless:handler": "jobs", "effortless:type": "sqs"}


@pytest.fixture
def sqs() -> FakeSqs:
    return FakeSqs()


@pytest.fixture
def queues(sqs) -> QueueReconciler:
    return QueueReconciler(sqs)


class TestQueueReconciler:
    """Test QueueReconciler."""

    async def test_name_must_end_with_fifo(self, queues) -> None:
        with pytest.raises(ValueError, match=".fifo"):
            await queues.ensure(QueueSpec("shop-dev-jobs"))

    async def test_create(self, queues, sqs) -> None:
        result = await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS))

        assert result.status is EnsureStatus.CREATED
        assert result.identity.url.endswith("/shop-dev-jobs.fifo")
        assert result.identity.arn.endswith(":shop-dev-jobs.fifo")
        attributes = sqs.params("create_queue")[0]["Attributes"]
        assert attributes["FifoQueue"] == "true"
        assert attributes["ContentBasedDeduplication"] == "true"
        assert sqs.params("create_queue")[0]["tags"] == TAGS

    async def test_second_ensure_writes_nothing(self, queues, sqs) -> None:
        await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS))
        sqs.reset_calls()

        result = await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS))

        assert result.status is EnsureStatus.UNCHANGED
        assert sqs.writes() == []

    async def test_updates_only_changed_attributes(self, queues, sqs) -> None:
        await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS))
        sqs.reset_calls()

        result = await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS, visibility_timeout=120))

        assert result.status is EnsureStatus.UPDATED
        assert sqs.params("set_queue_attributes")[0]["Attributes"] == {"VisibilityTimeout": "120"}

    async def test_missing_tags_are_added(self, queues, sqs) -> None:
        await queues.ensure(QueueSpec("shop-dev-jobs.fifo", {}))

        await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS))

        assert sqs.queues["shop-dev-jobs.fifo"]["tags"] == TAGS

    async def test_delete(self, queues, sqs) -> None:
        await queues.ensure(QueueSpec("shop-dev-jobs.fifo", TAGS))

        assert await queues.delete("shop-dev-jobs.fifo") is True
        assert await queues.delete("shop-dev-jobs.fifo") is False
