"""Tests for dependency layer reconciliation."""

import pytest

from effortless_deploy.infra.layers import LayerReconciler, layer_description
from effortless_deploy.models import EnsureStatus
from tests.fixtures.fakes import FakeLambda, not_found
from tests.fixtures.services import code


@pytest.fixture
def lambda_client() -> FakeLambda:
    return FakeLambda()


@pytest.fixture
def layers(lambda_client) -> LayerReconciler:
    return LayerReconciler(lambda_client)


class TestLayerReconciler:
    """Test LayerReconciler."""

    async def test_publish_then_reuse(self, layers, lambda_client) -> None:
        artifact = code("deps-v1")

        first = await layers.ensure("shop-dev-deps", artifact, ["python3.12"], ["arm64"])
        second = await layers.ensure("shop-dev-deps", artifact, ["python3.12"], ["arm64"])

        assert first.status is EnsureStatus.CREATED
        assert second.status is EnsureStatus.UNCHANGED
        assert second.identity == first.identity
        assert lambda_client.count("publish_layer_version") == 1

    async def test_new_content_publishes_new_version(self, layers, lambda_client) -> None:
        await layers.ensure("shop-dev-deps", code("deps-v1"), ["python3.12"], ["arm64"])

        result = await layers.ensure("shop-dev-deps", code("deps-v2"), ["python3.12"], ["arm64"])

        assert result.status is EnsureStatus.CREATED
        assert result.identity.endswith(":2")

    async def test_description_carries_hash(self, layers, lambda_client) -> None:
        artifact = code("deps")
        await layers.ensure("shop-dev-deps", artifact, ["python3.12"], ["arm64"])

        params = lambda_client.params("publish_layer_version")[0]
        assert params["Description"] == layer_description(artifact)
        assert artifact.hex_digest in params["Description"]
        assert params["CompatibleArchitectures"] == ["arm64"]

    async def test_delete_all_versions(self, layers, lambda_client) -> None:
        await layers.ensure("shop-dev-deps", code("a"), ["python3.12"], ["arm64"])
        await layers.ensure("shop-dev-deps", code("b"), ["python3.12"], ["arm64"])

        assert await layers.delete_all_versions("shop-dev-deps") == 2
        assert await layers.list_versions("shop-dev-deps") == []

    async def test_delete_skips_vanished_versions(self, layers, lambda_client) -> None:
        await layers.ensure("shop-dev-deps", code("a"), ["python3.12"], ["arm64"])
        lambda_client.script("delete_layer_version", not_found())

        assert await layers.delete_all_versions("shop-dev-deps") == 0
