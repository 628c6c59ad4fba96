"""Lambda REQUEST authorizers on the shared HTTP API."""

import logging
from dataclasses import dataclass
from typing import Any

from ..clients import Capability, paginate
from ..exceptions import ServiceError
from ..models import EnsureResult, EnsureStatus
from .apigateway import account_of, execute_api_arn, grant_invoke, integration_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizerSpec:
    """Desired authorizer."""

    name: str
    function_arn: str
    identity_source: tuple[str, ...] = ("$request.header.Authorization",)
    result_ttl: int = 0


class AuthorizerReconciler:
    """Converges authorizers by name."""

    def __init__(self, apigateway: Capability, lambda_client: Capability, region: str) -> None:
        self._apigateway = apigateway
        self._lambda = lambda_client
        self.region = region

    def _desired(self, spec: AuthorizerSpec) -> dict[str, Any]:
        return {
            "AuthorizerType": "REQUEST",
            "AuthorizerUri": integration_uri(self.region, spec.function_arn),
            "AuthorizerPayloadFormatVersion": "2.0",
            "EnableSimpleResponses": True,
            "IdentitySource": list(spec.identity_source),
            "AuthorizerResultTtlInSeconds": spec.result_ttl,
        }

    async def list_authorizers(self, api_id: str) -> list[dict[str, Any]]:
        return [
            a async for a in paginate(self._apigateway, "get_authorizers", "Items", ApiId=api_id)
        ]

    async def find(self, api_id: str, name: str) -> dict[str, Any] | None:
        for authorizer in await self.list_authorizers(api_id):
            if authorizer.get("Name") == name:
                return authorizer
        return None

    async def ensure(self, api_id: str, spec: AuthorizerSpec) -> EnsureResult[str]:
        """
        Create the authorizer or update only its differing fields, then grant invoke.

        Returns:
            EnsureResult with the authorizer id
        """
        desired = self._desired(spec)
        current = await self.find(api_id, spec.name)

        if current is None:
            logger.info("Creating authorizer %s on API %s", spec.name, api_id)
            created = await self._apigateway.call(
                "create_authorizer", ApiId=api_id, Name=spec.name, **desired
            )
            authorizer_id = created["AuthorizerId"]
            status = EnsureStatus.CREATED
        else:
            authorizer_id = current["AuthorizerId"]
            changes = {k: v for k, v in desired.items() if current.get(k) != v}
            if changes:
                logger.info("Updating authorizer %s: %s", spec.name, sorted(changes))
                await self._apigateway.call(
                    "update_authorizer", ApiId=api_id, AuthorizerId=authorizer_id, **changes
                )
                status = EnsureStatus.UPDATED
            else:
                status = EnsureStatus.UNCHANGED

        await grant_invoke(
            self._lambda,
            spec.function_arn,
            f"authorizer-{api_id}",
            execute_api_arn(
                self.region, account_of(spec.function_arn), api_id, "authorizers/*"
            ),
        )
        return EnsureResult(authorizer_id, status)

    async def delete(self, api_id: str, authorizer_id: str) -> bool:
        try:
            await self._apigateway.call(
                "delete_authorizer", ApiId=api_id, AuthorizerId=authorizer_id
            )
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        return True
