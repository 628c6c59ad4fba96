"""Tests for API Gateway reconciliation."""

import pytest

from effortless_deploy.infra.apigateway import (
    HttpApiReconciler,
    WebSocketApiReconciler,
    grant_invoke,
    integration_of,
    integration_uri,
)
from effortless_deploy.models import EnsureStatus
from tests.fixtures.fakes import FakeApiGateway, FakeLambda

FUNCTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:shop-dev-users"
OTHER_ARN = "arn:aws:lambda:us-east-1:123456789012:function:shop-dev-orders"


@pytest.fixture
def apigateway() -> FakeApiGateway:
    return FakeApiGateway()


@pytest.fixture
def lambda_client() -> FakeLambda:
    return FakeLambda()


@pytest.fixture
def http(apigateway, lambda_client) -> HttpApiReconciler:
    return HttpApiReconciler(apigateway, lambda_client, "us-east-1")


@pytest.fixture
def websocket(apigateway, lambda_client) -> WebSocketApiReconciler:
    return WebSocketApiReconciler(apigateway, lambda_client, "us-east-1")


class TestHelpers:
    """Test URI and target helpers."""

    def test_integration_uri(self) -> None:
        assert integration_uri("eu-west-1", FUNCTION_ARN) == (
            "arn:aws:apigateway:eu-west-1:lambda:path/2015-03-31/functions/"
            f"{FUNCTION_ARN}/invocations"
        )

    def test_integration_of(self) -> None:
        assert integration_of({"Target": "integrations/abc"}) == "abc"
        assert integration_of({"Target": "something/else"}) is None
        assert integration_of({}) is None

    async def test_grant_invoke_tolerates_existing_statement(self, lambda_client) -> None:
        assert await grant_invoke(lambda_client, FUNCTION_ARN, "sid", "arn:source") is True
        assert await grant_invoke(lambda_client, FUNCTION_ARN, "sid", "arn:source") is False


class TestHttpApiReconciler:
    """Test the shared HTTP API."""

    async def test_create_api_with_auto_deploy_stage(self, http, apigateway) -> None:
        result = await http.ensure_api("shop-dev", {"effortless:handler": "api"})

        assert result.status is EnsureStatus.CREATED
        assert result.identity.endpoint.startswith(f"https://{result.identity.api_id}.")
        stage = apigateway.params("create_stage")[0]
        assert stage["StageName"] == "$default"
        assert stage["AutoDeploy"] is True

    async def test_api_is_found_by_name(self, http, apigateway) -> None:
        created = await http.ensure_api("shop-dev", {"effortless:handler": "api"})
        apigateway.reset_calls()

        again = await http.ensure_api("shop-dev", {"effortless:handler": "api"})

        assert again.status is EnsureStatus.UNCHANGED
        assert again.identity == created.identity
        assert apigateway.writes() == []

    async def test_websocket_api_with_same_name_is_ignored(self, http, apigateway) -> None:
        apigateway.add_api("shop-dev", protocol="WEBSOCKET")

        result = await http.ensure_api("shop-dev", {})

        assert result.status is EnsureStatus.CREATED
        assert len(apigateway.apis) == 2

    async def test_add_route(self, http, apigateway, lambda_client) -> None:
        api = (await http.ensure_api("shop-dev", {})).identity

        result = await http.add_route(api.api_id, "GET /users", FUNCTION_ARN)

        assert result.status is EnsureStatus.CREATED
        assert apigateway.route_keys(api.api_id) == {"GET /users"}
        integration = apigateway.params("create_integration")[0]
        assert integration["IntegrationType"] == "AWS_PROXY"
        assert integration["PayloadFormatVersion"] == "2.0"
        permission = lambda_client.params("add_permission")[0]
        assert permission["Principal"] == "apigateway.amazonaws.com"
        assert permission["SourceArn"].endswith(f":{api.api_id}/*/*")

    async def test_add_route_twice_is_unchanged(self, http, apigateway) -> None:
        api = (await http.ensure_api("shop-dev", {})).identity
        await http.add_route(api.api_id, "GET /users", FUNCTION_ARN)

        result = await http.add_route(api.api_id, "GET /users", FUNCTION_ARN)

        assert result.status is EnsureStatus.UNCHANGED
        assert apigateway.count("create_route") == 1
        assert apigateway.count("create_integration") == 1

    async def test_routes_sharing_a_function_share_an_integration(self, http, apigateway) -> None:
        api = (await http.ensure_api("shop-dev", {})).identity

        await http.add_route(api.api_id, "GET /users", FUNCTION_ARN)
        await http.add_route(api.api_id, "POST /users", FUNCTION_ARN)

        assert len(apigateway.integrations[api.api_id]) == 1
        assert apigateway.route_keys(api.api_id) == {"GET /users", "POST /users"}

    async def test_route_is_retargeted(self, http, apigateway) -> None:
        api = (await http.ensure_api("shop-dev", {})).identity
        await http.add_route(api.api_id, "GET /users", FUNCTION_ARN)

        result = await http.add_route(api.api_id, "GET /users", OTHER_ARN)

        assert result.status is EnsureStatus.CREATED
        assert apigateway.count("update_route") == 1
        assert apigateway.count("create_route") == 1

    async def test_delete_missing_route(self, http, apigateway) -> None:
        api = (await http.ensure_api("shop-dev", {})).identity

        assert await http.delete_route(api.api_id, "route-x") is False
        assert await http.delete_integration(api.api_id, "int-x") is False

    async def test_delete_api(self, http) -> None:
        api = (await http.ensure_api("shop-dev", {})).identity

        assert await http.delete_api(api.api_id) is True
        assert await http.delete_api(api.api_id) is False


class TestWebSocketApiReconciler:
    """Test per-handler WebSocket APIs."""

    async def test_create_api_and_routes(self, websocket, apigateway, lambda_client) -> None:
        api = await websocket.ensure_api("shop-dev-chat", {})

        assert api.status is EnsureStatus.CREATED
        assert api.identity.endpoint == (
            f"wss://{api.identity.api_id}.execute-api.us-east-1.amazonaws.com/production"
        )
        create = apigateway.params("create_api")[0]
        assert create["ProtocolType"] == "WEBSOCKET"
        assert create["RouteSelectionExpression"] == "$request.body.action"

        routes = await websocket.ensure_routes(
            api.identity.api_id, FUNCTION_ARN, ["$connect", "$disconnect", "$default"]
        )

        assert routes.status is EnsureStatus.CREATED
        assert apigateway.route_keys(api.identity.api_id) == {
            "$connect",
            "$disconnect",
            "$default",
        }
        assert "PayloadFormatVersion" not in apigateway.params("create_integration")[0]
        assert lambda_client.params("add_permission")[0]["SourceArn"].endswith(
            f":{api.identity.api_id}/*"
        )

    async def test_routes_are_unchanged_on_second_run(self, websocket, apigateway) -> None:
        api = (await websocket.ensure_api("shop-dev-chat", {})).identity
        keys = ["$connect", "$disconnect", "$default"]
        await websocket.ensure_routes(api.api_id, FUNCTION_ARN, keys)
        apigateway.reset_calls()

        result = await websocket.ensure_routes(api.api_id, FUNCTION_ARN, keys)

        assert result.status is EnsureStatus.UNCHANGED
        assert apigateway.writes() == []
        assert apigateway.count("get_routes") == 1
