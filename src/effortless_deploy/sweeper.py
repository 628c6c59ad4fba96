"""Removal of resources no longer declared.

Runs after a fully successful batch. Deletes are idempotent: a target that
is already gone counts as deleted.
"""

import logging
from collections.abc import Iterable

from .infra.apigateway import HttpApiReconciler, integration_of
from .infra.authorizers import AuthorizerReconciler
from .infra.functions import FunctionReconciler
from .infra.roles import RoleReconciler
from .inventory import ResourceInventory
from .models import AppConfig, HandlerDescriptor, HttpConfig

logger = logging.getLogger(__name__)

# Functions go before the roles they run as
PRUNE_ORDER = ("lambda", "iam-role")


def active_route_keys(handlers: Iterable[HandlerDescriptor]) -> set[str]:
    """Route keys of the shared HTTP API that the declared handlers own."""
    keys: set[str] = set()
    for handler in handlers:
        if isinstance(handler.config, HttpConfig):
            keys.add(handler.config.route_key)
        elif isinstance(handler.config, AppConfig):
            keys.update(handler.config.route_keys)
    return keys


class StaleResourceSweeper:
    """
    Deletes stale routes, unused integrations and undeclared functions and roles.

    Tables, buckets and queues of undeclared handlers hold data and are left
    for explicit cleanup.
    """

    def __init__(
        self,
        http: HttpApiReconciler,
        authorizers: AuthorizerReconciler,
        functions: FunctionReconciler,
        roles: RoleReconciler,
        inventory: ResourceInventory,
    ) -> None:
        self._http = http
        self._authorizers = authorizers
        self._functions = functions
        self._roles = roles
        self._inventory = inventory

    async def sweep_routes(self, api_id: str, active: set[str]) -> list[str]:
        """
        Delete routes outside the active set, then their now-unused integrations.

        An integration is deleted only when no remaining route targets it,
        and at most once even if several deleted routes shared it.

        Args:
            api_id: Shared HTTP API id
            active: Route keys that must remain

        Returns:
            Sorted keys of the deleted routes
        """
        routes = await self._http.list_routes(api_id)
        stale = [r for r in routes if r.get("RouteKey") not in active]
        if not stale:
            logger.debug("No stale routes on API %s", api_id)
            return []

        candidates: set[str] = set()
        for route in stale:
            logger.info("Deleting stale route %s", route["RouteKey"])
            await self._http.delete_route(api_id, route["RouteId"])
            integration_id = integration_of(route)
            if integration_id:
                candidates.add(integration_id)

        remaining = await self._http.list_routes(api_id)
        in_use = {integration_of(r) for r in remaining}
        for integration_id in sorted(candidates - in_use):
            logger.info("Deleting unused integration %s", integration_id)
            await self._http.delete_integration(api_id, integration_id)

        return sorted(r["RouteKey"] for r in stale)

    async def sweep_authorizers(self, api_id: str, active: set[str]) -> list[str]:
        """Delete authorizers whose names are not in ``active``."""
        deleted: list[str] = []
        for authorizer in await self._authorizers.list_authorizers(api_id):
            if authorizer.get("Name") in active:
                continue
            logger.info("Deleting stale authorizer %s", authorizer.get("Name"))
            await self._authorizers.delete(api_id, authorizer["AuthorizerId"])
            deleted.append(authorizer["Name"])
        return sorted(deleted)

    async def prune_orphans(self, project: str, stage: str, declared: Iterable[str]) -> list[str]:
        """
        Delete functions and roles tagged with a handler that is no longer declared.

        Returns:
            ``"{type}:{name}"`` of each deleted resource
        """
        records = await self._inventory.list_resources(project, stage)
        orphans = [
            r for r in ResourceInventory.find_orphaned(records, declared) if r.type in PRUNE_ORDER
        ]
        orphans.sort(key=lambda r: PRUNE_ORDER.index(r.type))

        pruned: list[str] = []
        for record in orphans:
            name = record.resource_id
            if record.type == "lambda":
                deleted = await self._functions.delete(name)
            else:
                deleted = await self._roles.delete(name)
            if deleted:
                logger.info("Pruned %s %s of removed handler %s", record.type, name, record.handler)
                pruned.append(f"{record.type}:{name}")
        return pruned
