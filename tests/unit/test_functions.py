"""Tests for function reconciliation."""

import pytest

from effortless_deploy.exceptions import ServiceError, TerminalStateError
from effortless_deploy.infra.functions import (
    FunctionReconciler,
    FunctionSpec,
    code_changed,
    configuration_changes,
)
from effortless_deploy.models import EnsureStatus
from tests.fixtures.fakes import FakeLambda, conflict, invalid
from tests.fixtures.services import FAST_WAIT, code

ROLE_ARN = "arn:aws:iam::123456789012:role/shop-dev-api-role"


def make_spec(**overrides) -> FunctionSpec:
    values = {
        "name": "shop-dev-api",
        "role_arn": ROLE_ARN,
        "code": code(),
        "tags": {"effortless:handler": "api"},
        "environment": {"EFF_STAGE": "dev"},
    }
    values.update(overrides)
    return FunctionSpec(**values)


@pytest.fixture
def lambda_client() -> FakeLambda:
    return FakeLambda()


@pytest.fixture
def reconciler(lambda_client) -> FunctionReconciler:
    return FunctionReconciler(lambda_client, active_wait=FAST_WAIT, role_wait=FAST_WAIT)


class TestConfigurationChanges:
    """Test the configuration diff."""

    def test_no_changes(self) -> None:
        spec = make_spec(layers=("arn:layer:1",))
        current = {
            "MemorySize": spec.memory,
            "Timeout": spec.timeout,
            "Handler": spec.entry,
            "Runtime": spec.runtime,
            "Role": spec.role_arn,
            "Layers": [{"Arn": "arn:layer:1"}],
            "Environment": {"Variables": {"EFF_STAGE": "dev"}},
        }
        assert configuration_changes(current, spec) == {}

    def test_only_changed_fields(self) -> None:
        spec = make_spec(memory=512)
        current = {
            "MemorySize": 256,
            "Timeout": spec.timeout,
            "Handler": spec.entry,
            "Runtime": spec.runtime,
            "Role": spec.role_arn,
            "Environment": {"Variables": {"EFF_STAGE": "dev"}},
        }
        assert configuration_changes(current, spec) == {"MemorySize": 512}

    def test_removed_env_var_is_a_change(self) -> None:
        spec = make_spec(environment={})
        current = {
            "MemorySize": spec.memory,
            "Timeout": spec.timeout,
            "Handler": spec.entry,
            "Runtime": spec.runtime,
            "Role": spec.role_arn,
            "Environment": {"Variables": {"OLD": "1"}},
        }
        assert configuration_changes(current, spec) == {"Environment": {"Variables": {}}}

    def test_layer_order_is_ignored(self) -> None:
        spec = make_spec(layers=("b", "a"))
        current = {"Layers": [{"Arn": "a"}, {"Arn": "b"}]}
        assert "Layers" not in configuration_changes(current, spec)

    def test_code_changed_on_architecture(self) -> None:
        spec = make_spec(architecture="arm64")
        assert code_changed({"CodeSha256": spec.code.sha256}, spec)
        assert not code_changed(
            {"CodeSha256": spec.code.sha256, "Architectures": ["arm64"]}, spec
        )


class TestFunctionReconciler:
    """Test FunctionReconciler.ensure."""

    async def test_create_then_unchanged(self, reconciler, lambda_client) -> None:
        spec = make_spec()

        created = await reconciler.ensure(spec)
        lambda_client.reset_calls()
        again = await reconciler.ensure(spec)

        assert created.status is EnsureStatus.CREATED
        assert again.status is EnsureStatus.UNCHANGED
        assert again.identity == created.identity
        assert lambda_client.writes() == []

    async def test_create_sends_tags_and_environment(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec(layers=("arn:layer:1",)))

        params = lambda_client.params("create_function")[0]
        assert params["Tags"] == {"effortless:handler": "api"}
        assert params["Environment"] == {"Variables": {"EFF_STAGE": "dev"}}
        assert params["Layers"] == ["arn:layer:1"]

    async def test_update_sends_only_changed_fields(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec())
        lambda_client.reset_calls()

        result = await reconciler.ensure(make_spec(memory=1024))

        assert result.status is EnsureStatus.UPDATED
        assert lambda_client.params("update_function_configuration") == [
            {"FunctionName": "shop-dev-api", "MemorySize": 1024}
        ]
        assert lambda_client.count("update_function_code") == 0

    async def test_code_update(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec())
        lambda_client.reset_calls()

        result = await reconciler.ensure(make_spec(code=code("changed")))

        assert result.status is EnsureStatus.UPDATED
        assert lambda_client.count("update_function_code") == 1
        assert lambda_client.count("update_function_configuration") == 0

    async def test_configuration_conflict_waits_and_retries_once(
        self, reconciler, lambda_client
    ) -> None:
        await reconciler.ensure(make_spec())
        lambda_client.script(
            "update_function_configuration",
            conflict(message="The operation cannot be performed at this time"),
            {},
        )

        result = await reconciler.ensure(make_spec(timeout=60))

        assert result.status is EnsureStatus.UPDATED
        assert lambda_client.count("update_function_configuration") == 2

    async def test_second_conflict_propagates(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec())
        lambda_client.script("update_function_configuration", conflict())

        with pytest.raises(ServiceError) as exc_info:
            await reconciler.ensure(make_spec(timeout=60))

        assert exc_info.value.is_conflict
        assert lambda_client.count("update_function_configuration") == 2

    async def test_create_retries_until_role_is_assumable(self, reconciler, lambda_client) -> None:
        role_not_ready = invalid(
            message="The role defined for the function cannot be assumed by Lambda."
        )
        lambda_client.script(
            "create_function",
            role_not_ready,
            lambda **params: FakeLambda.create_function(lambda_client, **params),
        )

        result = await reconciler.ensure(make_spec())

        assert result.status is EnsureStatus.CREATED
        assert lambda_client.count("create_function") == 2

    async def test_other_validation_errors_are_fatal(self, reconciler, lambda_client) -> None:
        lambda_client.script("create_function", invalid(message="Unsupported runtime"))

        with pytest.raises(ServiceError):
            await reconciler.ensure(make_spec())

        assert lambda_client.count("create_function") == 1

    async def test_failed_state_is_terminal(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec())
        lambda_client.script(
            "get_function_configuration", {"State": "Active", "LastUpdateStatus": "Failed"}
        )

        with pytest.raises(TerminalStateError):
            await reconciler.ensure(make_spec(memory=512))

    async def test_missing_tags_are_added(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec())
        lambda_client.reset_calls()

        await reconciler.ensure(make_spec(tags={"effortless:handler": "api", "effortless:x": "y"}))

        assert lambda_client.params("tag_resource")[0]["Tags"] == {"effortless:x": "y"}

    async def test_delete(self, reconciler, lambda_client) -> None:
        await reconciler.ensure(make_spec())

        assert await reconciler.delete("shop-dev-api") is True
        assert await reconciler.delete("shop-dev-api") is False
