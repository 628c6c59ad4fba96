"""API Gateway v2 reconciliation: HTTP and WebSocket APIs, integrations, routes.

APIs are located by name, integrations by their target invocation URI and
routes by their route key, so repeated runs reuse what exists instead of
creating duplicates.
"""

import logging
from collections.abc import Sequence
from typing import Any

from ..clients import Capability, paginate
from ..exceptions import ServiceError
from ..models import ApiIdentity, EnsureResult, EnsureStatus
from ..tags import missing_tags

logger = logging.getLogger(__name__)

HTTP_STAGE = "$default"
WEBSOCKET_STAGE = "production"
WEBSOCKET_ROUTE_SELECTION = "$request.body.action"


def integration_uri(region: str, function_arn: str) -> str:
    """Invocation URI API Gateway uses to call a Lambda function."""
    return (
        f"arn:aws:apigateway:{region}:lambda:path/2015-03-31/functions/"
        f"{function_arn}/invocations"
    )


def api_arn(region: str, api_id: str) -> str:
    return f"arn:aws:apigateway:{region}::/apis/{api_id}"


def account_of(arn: str) -> str:
    return arn.split(":")[4]


def execute_api_arn(region: str, account: str, api_id: str, suffix: str = "*/*") -> str:
    return f"arn:aws:execute-api:{region}:{account}:{api_id}/{suffix}"


def integration_of(route: dict[str, Any]) -> str | None:
    """Integration id a route targets, if any."""
    target = route.get("Target") or ""
    prefix = "integrations/"
    return target[len(prefix) :] if target.startswith(prefix) else None


async def grant_invoke(
    lambda_client: Capability,
    function_arn: str,
    statement_id: str,
    source_arn: str,
) -> bool:
    """
    Allow API Gateway to invoke a function.

    Returns:
        True if the permission was added, False if it already existed
    """
    try:
        await lambda_client.call(
            "add_permission",
            FunctionName=function_arn,
            StatementId=statement_id,
            Action="lambda:InvokeFunction",
            Principal="apigateway.amazonaws.com",
            SourceArn=source_arn,
        )
    except ServiceError as e:
        if e.is_conflict:
            return False
        raise
    logger.debug("Granted %s invoke on %s", statement_id, function_arn)
    return True


class RoutingReconciler:
    """Operations shared by HTTP and WebSocket APIs."""

    protocol = "HTTP"

    def __init__(self, apigateway: Capability, lambda_client: Capability, region: str) -> None:
        self._apigateway = apigateway
        self._lambda = lambda_client
        self.region = region

    async def find_api(self, name: str) -> dict[str, Any] | None:
        async for api in paginate(self._apigateway, "get_apis", "Items"):
            if api.get("Name") == name and api.get("ProtocolType", self.protocol) == self.protocol:
                return api
        return None

    async def _sync_api_tags(self, api: dict[str, Any], tags: dict[str, str]) -> None:
        new_tags = missing_tags(api.get("Tags"), tags)
        if new_tags:
            await self._apigateway.call(
                "tag_resource", ResourceArn=api_arn(self.region, api["ApiId"]), Tags=new_tags
            )

    def _integration_params(self) -> dict[str, Any]:
        return {"PayloadFormatVersion": "2.0"}

    async def ensure_integration(self, api_id: str, function_arn: str) -> EnsureResult[str]:
        """Reuse the integration targeting this function, or create it."""
        uri = integration_uri(self.region, function_arn)
        async for integration in paginate(
            self._apigateway, "get_integrations", "Items", ApiId=api_id
        ):
            if integration.get("IntegrationUri") == uri:
                return EnsureResult(integration["IntegrationId"], EnsureStatus.UNCHANGED)

        created = await self._apigateway.call(
            "create_integration",
            ApiId=api_id,
            IntegrationType="AWS_PROXY",
            IntegrationUri=uri,
            IntegrationMethod="POST",
            **self._integration_params(),
        )
        logger.info("Created integration %s on API %s", created["IntegrationId"], api_id)
        return EnsureResult(created["IntegrationId"], EnsureStatus.CREATED)

    async def list_routes(self, api_id: str) -> list[dict[str, Any]]:
        return [r async for r in paginate(self._apigateway, "get_routes", "Items", ApiId=api_id)]

    async def ensure_route(
        self,
        api_id: str,
        route_key: str,
        integration_id: str,
        routes: Sequence[dict[str, Any]] | None = None,
    ) -> EnsureResult[str]:
        """
        Create a route or retarget it when its integration changed.

        Args:
            api_id: API id
            route_key: ``"{METHOD} {path}"`` or a WebSocket lifecycle key
            integration_id: Integration the route must target
            routes: Current route listing, to avoid re-listing per route

        Returns:
            EnsureResult with the route id
        """
        target = f"integrations/{integration_id}"
        if routes is None:
            routes = await self.list_routes(api_id)

        for route in routes:
            if route.get("RouteKey") != route_key:
                continue
            if route.get("Target") == target:
                return EnsureResult(route["RouteId"], EnsureStatus.UNCHANGED)
            logger.info("Retargeting route %s to %s", route_key, target)
            await self._apigateway.call(
                "update_route", ApiId=api_id, RouteId=route["RouteId"], Target=target
            )
            return EnsureResult(route["RouteId"], EnsureStatus.UPDATED)

        created = await self._apigateway.call(
            "create_route", ApiId=api_id, RouteKey=route_key, Target=target
        )
        logger.info("Created route %s on API %s", route_key, api_id)
        return EnsureResult(created["RouteId"], EnsureStatus.CREATED)

    async def delete_route(self, api_id: str, route_id: str) -> bool:
        try:
            await self._apigateway.call("delete_route", ApiId=api_id, RouteId=route_id)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def delete_integration(self, api_id: str, integration_id: str) -> bool:
        try:
            await self._apigateway.call(
                "delete_integration", ApiId=api_id, IntegrationId=integration_id
            )
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def delete_api(self, api_id: str) -> bool:
        try:
            await self._apigateway.call("delete_api", ApiId=api_id)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted API %s", api_id)
        return True


class HttpApiReconciler(RoutingReconciler):
    """The HTTP API shared by every HTTP, app and authorizer handler of a stage."""

    protocol = "HTTP"

    async def ensure_api(self, name: str, tags: dict[str, str]) -> EnsureResult[ApiIdentity]:
        """
        Locate the API by name or create it with its auto-deploying stage.

        Returns:
            EnsureResult with the API id and endpoint
        """
        api = await self.find_api(name)
        if api is not None:
            await self._sync_api_tags(api, tags)
            identity = ApiIdentity(api["ApiId"], api.get("ApiEndpoint") or self.url(api["ApiId"]))
            return EnsureResult(identity, EnsureStatus.UNCHANGED)

        logger.info("Creating HTTP API %s", name)
        created = await self._apigateway.call(
            "create_api",
            Name=name,
            ProtocolType="HTTP",
            CorsConfiguration={
                "AllowOrigins": ["*"],
                "AllowMethods": ["*"],
                "AllowHeaders": ["*"],
            },
            Tags=tags,
        )
        api_id = created["ApiId"]
        await self._apigateway.call(
            "create_stage", ApiId=api_id, StageName=HTTP_STAGE, AutoDeploy=True
        )
        identity = ApiIdentity(api_id, created.get("ApiEndpoint") or self.url(api_id))
        return EnsureResult(identity, EnsureStatus.CREATED)

    async def add_route(self, api_id: str, route_key: str, function_arn: str) -> EnsureResult[str]:
        """Wire one route to a function: integration, route and invoke permission."""
        integration = await self.ensure_integration(api_id, function_arn)
        route = await self.ensure_route(api_id, route_key, integration.identity)
        await grant_invoke(
            self._lambda,
            function_arn,
            f"apigateway-{api_id}",
            execute_api_arn(self.region, account_of(function_arn), api_id),
        )
        return EnsureResult(
            route.identity, EnsureStatus.combine(integration.status, route.status)
        )

    def url(self, api_id: str, path: str = "") -> str:
        return f"https://{api_id}.execute-api.{self.region}.amazonaws.com{path}"


class WebSocketApiReconciler(RoutingReconciler):
    """One isolated WebSocket API per WebSocket handler."""

    protocol = "WEBSOCKET"

    def _integration_params(self) -> dict[str, Any]:
        # WebSocket Lambda proxy integrations only support payload format 1.0
        return {}

    async def ensure_api(self, name: str, tags: dict[str, str]) -> EnsureResult[ApiIdentity]:
        api = await self.find_api(name)
        if api is not None:
            await self._sync_api_tags(api, tags)
            identity = ApiIdentity(api["ApiId"], self.url(api["ApiId"]))
            return EnsureResult(identity, EnsureStatus.UNCHANGED)

        logger.info("Creating WebSocket API %s", name)
        created = await self._apigateway.call(
            "create_api",
            Name=name,
            ProtocolType="WEBSOCKET",
            RouteSelectionExpression=WEBSOCKET_ROUTE_SELECTION,
            Tags=tags,
        )
        api_id = created["ApiId"]
        await self._apigateway.call(
            "create_stage", ApiId=api_id, StageName=WEBSOCKET_STAGE, AutoDeploy=True
        )
        return EnsureResult(ApiIdentity(api_id, self.url(api_id)), EnsureStatus.CREATED)

    async def ensure_routes(
        self,
        api_id: str,
        function_arn: str,
        route_keys: Sequence[str],
    ) -> EnsureResult[str]:
        """Point every lifecycle route at the handler's function."""
        integration = await self.ensure_integration(api_id, function_arn)
        routes = await self.list_routes(api_id)
        statuses = [integration.status]
        for route_key in route_keys:
            route = await self.ensure_route(api_id, route_key, integration.identity, routes)
            statuses.append(route.status)
        await grant_invoke(
            self._lambda,
            function_arn,
            f"apigateway-ws-{api_id}",
            execute_api_arn(self.region, account_of(function_arn), api_id, "*"),
        )
        return EnsureResult(integration.identity, EnsureStatus.combine(*statuses))

    def url(self, api_id: str) -> str:
        return f"wss://{api_id}.execute-api.{self.region}.amazonaws.com/{WEBSOCKET_STAGE}"
