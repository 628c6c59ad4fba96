"""Per-handler deploy pipelines.

One pipeline converges everything a single handler owns. Its steps run
strictly in sequence because each consumes the previous step's output
(role ARN, then function ARN, then trigger target). Any failure is wrapped
in ``DeployError`` naming the handler and the resource kind being converged.
"""

import logging
import time
from collections.abc import Awaitable, Sequence
from pathlib import Path
from typing import TypeVar

from .exceptions import DeployError
from .infra.authorizers import AuthorizerSpec
from .infra.cloudfront import DistributionSpec
from .infra.event_sources import EventSourceSpec
from .infra.functions import FunctionSpec
from .infra.queues import QueueSpec
from .infra.tables import TableSpec
from .models import (
    ApiIdentity,
    AppConfig,
    AuthorizerConfig,
    DeployTaskContext,
    EnsureResult,
    EnsureStatus,
    FifoQueueConfig,
    HandlerDescriptor,
    HandlerKind,
    HandlerResult,
    HttpConfig,
    PermissionStatement,
    StaticSiteConfig,
    TableConfig,
    WebSocketConfig,
)
from .naming import bucket_name, queue_name, resource_name
from .services import DeployServices
from .tags import ResourceType, make_tags
from .wiring import (
    TABLE_CLIENT_ACTIONS,
    base_environment,
    declared_statement,
    merge_statements,
    resolve_wiring,
    table_arn,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STREAM_READ_ACTIONS = (
    "dynamodb:DescribeStream",
    "dynamodb:GetRecords",
    "dynamodb:GetShardIterator",
    "dynamodb:ListStreams",
)

QUEUE_CONSUMER_ACTIONS = (
    "sqs:ReceiveMessage",
    "sqs:DeleteMessage",
    "sqs:GetQueueAttributes",
)

WEBSOCKET_ACTIONS = ("execute-api:ManageConnections",)

QUEUE_RESPONSE_TYPES = ("ReportBatchItemFailures",)

AUTHORIZER_DEFAULT_TIMEOUT = 10


class HandlerPipeline:
    """
    Converges the resources of one handler.

    Args:
        handler: Handler to deploy
        ctx: Shared, read-only run context
        services: Reconcilers
    """

    def __init__(
        self,
        handler: HandlerDescriptor,
        ctx: DeployTaskContext,
        services: DeployServices,
    ) -> None:
        self.handler = handler
        self.ctx = ctx
        self.services = services
        self.name = resource_name(ctx.project, ctx.stage, handler.name)
        self.role_name = resource_name(ctx.project, ctx.stage, handler.name, "role")

    def tags(self, resource_type: ResourceType) -> dict[str, str]:
        return make_tags(self.ctx.tag_context(self.handler.name), resource_type)

    async def step(self, resource_kind: str, awaitable: Awaitable[T]) -> T:
        """Await one step, attributing any failure to this handler and resource kind."""
        try:
            return await awaitable
        except DeployError:
            raise
        except Exception as e:
            raise DeployError(self.handler.name, resource_kind, e) from e

    def require_api(self) -> ApiIdentity:
        if self.ctx.api is None:
            raise DeployError(
                self.handler.name, "api-gateway", ValueError("No shared HTTP API was provisioned")
            )
        return self.ctx.api

    async def run(self) -> HandlerResult:
        """Run the kind-specific pipeline and report its outcome."""
        started = time.monotonic()
        kind = self.handler.kind
        if kind is HandlerKind.HTTP:
            status, identity, url = await self._deploy_http()
        elif kind is HandlerKind.APP:
            status, identity, url = await self._deploy_app()
        elif kind is HandlerKind.TABLE:
            status, identity, url = await self._deploy_table()
        elif kind is HandlerKind.FIFO_QUEUE:
            status, identity, url = await self._deploy_queue()
        elif kind is HandlerKind.WEBSOCKET:
            status, identity, url = await self._deploy_websocket()
        elif kind is HandlerKind.AUTHORIZER:
            status, identity, url = await self._deploy_authorizer()
        elif kind is HandlerKind.STATIC_SITE:
            status, identity, url = await self._deploy_site()
        else:  # pragma: no cover
            raise DeployError(self.handler.name, "handler", ValueError(f"Unknown kind {kind}"))

        return HandlerResult(
            name=self.handler.name,
            kind=kind,
            status=status,
            identity=identity,
            url=url,
            duration=time.monotonic() - started,
        )

    # -------------------------------------------------------------------------
    # Function
    # -------------------------------------------------------------------------

    async def deploy_function(
        self,
        extra_statements: Sequence[PermissionStatement] = (),
        extra_env: dict[str, str] | None = None,
        default_timeout: int | None = None,
    ) -> EnsureResult[str]:
        """
        Ensure the handler's role, then its function.

        The role carries the declared permissions, the wiring-derived
        permissions and any kind-specific ``extra_statements``.

        Returns:
            EnsureResult with the function ARN; CREATED or UPDATED if either
            the role or the function changed
        """
        handler = self.handler
        ctx = self.ctx
        settings = handler.function
        defaults = ctx.defaults

        try:
            wiring = resolve_wiring(handler, ctx)
        except Exception as e:
            raise DeployError(handler.name, "wiring", e) from e

        statements = merge_statements(
            [declared_statement(settings.permissions)], wiring.statements, extra_statements
        )
        role = await self.step(
            "iam-role",
            self.services.roles.ensure(self.role_name, statements, self.tags("iam-role")),
        )

        assert handler.code is not None
        spec = FunctionSpec(
            name=self.name,
            role_arn=role.identity,
            code=handler.code,
            tags=self.tags("lambda"),
            memory=settings.memory or defaults.memory,
            timeout=settings.timeout or default_timeout or defaults.timeout,
            entry=settings.entry or defaults.entry,
            runtime=settings.runtime or defaults.runtime,
            architecture=settings.architecture or defaults.architecture,
            layers=(ctx.layer_arn,) if ctx.layer_arn else (),
            environment={
                **base_environment(ctx.project, ctx.stage, handler.name),
                **wiring.environment,
                **(extra_env or {}),
            },
        )
        function = await self.step("lambda", self.services.functions.ensure(spec))
        return EnsureResult(function.identity, EnsureStatus.combine(role.status, function.status))

    # -------------------------------------------------------------------------
    # Kinds
    # -------------------------------------------------------------------------

    async def _deploy_http(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, HttpConfig)
        api = self.require_api()

        function = await self.deploy_function()
        route = await self.step(
            "api-gateway",
            self.services.http.add_route(api.api_id, config.route_key, function.identity),
        )
        return (
            EnsureStatus.combine(function.status, route.status),
            function.identity,
            f"{api.endpoint}{config.path}",
        )

    async def _deploy_app(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, AppConfig)
        api = self.require_api()

        function = await self.deploy_function()
        statuses = [function.status]
        for route_key in config.route_keys:
            route = await self.step(
                "api-gateway",
                self.services.http.add_route(api.api_id, route_key, function.identity),
            )
            statuses.append(route.status)
        return EnsureStatus.combine(*statuses), function.identity, f"{api.endpoint}{config.path}"

    async def _deploy_table(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, TableConfig)

        table = await self.step(
            "dynamodb",
            self.services.tables.ensure(
                TableSpec(self.name, self.tags("dynamodb"), stream_view=config.stream_view)
            ),
        )
        if not self.handler.has_function:
            return table.status, table.identity.arn, None

        stream_arn = table.identity.stream_arn
        if not stream_arn:
            raise DeployError(
                self.handler.name, "dynamodb", ValueError(f"Table {self.name} has no stream")
            )
        own_table = table_arn(self.ctx.region, self.name)
        function = await self.deploy_function(
            extra_statements=[
                PermissionStatement(STREAM_READ_ACTIONS, (stream_arn,)),
                PermissionStatement(TABLE_CLIENT_ACTIONS, (own_table, f"{own_table}/index/*")),
            ],
            extra_env={"EFF_TABLE_NAME": self.name},
        )
        mapping = await self.step(
            "event-source-mapping",
            self.services.event_sources.ensure(
                EventSourceSpec(
                    function_arn=function.identity,
                    source_arn=stream_arn,
                    batch_size=config.batch_size,
                    batch_window=config.batch_window,
                    starting_position=config.starting_position,
                )
            ),
        )
        return (
            EnsureStatus.combine(table.status, function.status, mapping.status),
            function.identity,
            None,
        )

    async def _deploy_queue(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, FifoQueueConfig)

        queue = await self.step(
            "sqs",
            self.services.queues.ensure(
                QueueSpec(
                    name=queue_name(self.ctx.project, self.ctx.stage, self.handler.name),
                    tags=self.tags("sqs"),
                    visibility_timeout=config.visibility_timeout,
                    retention_period=config.retention_period,
                    content_based_deduplication=config.content_based_deduplication,
                )
            ),
        )
        function = await self.deploy_function(
            extra_statements=[PermissionStatement(QUEUE_CONSUMER_ACTIONS, (queue.identity.arn,))],
            extra_env={"EFF_QUEUE_URL": queue.identity.url},
        )
        mapping = await self.step(
            "event-source-mapping",
            self.services.event_sources.ensure(
                EventSourceSpec(
                    function_arn=function.identity,
                    source_arn=queue.identity.arn,
                    batch_size=config.batch_size,
                    batch_window=config.batch_window,
                    response_types=QUEUE_RESPONSE_TYPES,
                )
            ),
        )
        return (
            EnsureStatus.combine(queue.status, function.status, mapping.status),
            function.identity,
            queue.identity.url,
        )

    async def _deploy_websocket(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, WebSocketConfig)
        websocket = self.services.websocket

        api = await self.step(
            "api-gateway",
            websocket.ensure_api(
                resource_name(self.ctx.project, self.ctx.stage, self.handler.name, "ws"),
                self.tags("api-gateway"),
            ),
        )
        api_id = api.identity.api_id
        function = await self.deploy_function(
            extra_statements=[
                PermissionStatement(
                    WEBSOCKET_ACTIONS, (f"arn:aws:execute-api:{self.ctx.region}:*:{api_id}/*",)
                )
            ],
            extra_env={"EFF_WS_API_ID": api_id, "EFF_WS_URL": api.identity.endpoint},
        )
        routes = await self.step(
            "api-gateway", websocket.ensure_routes(api_id, function.identity, config.route_keys)
        )
        return (
            EnsureStatus.combine(api.status, function.status, routes.status),
            function.identity,
            api.identity.endpoint,
        )

    async def _deploy_authorizer(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, AuthorizerConfig)
        api = self.require_api()

        function = await self.deploy_function(default_timeout=AUTHORIZER_DEFAULT_TIMEOUT)
        authorizer = await self.step(
            "authorizer",
            self.services.authorizers.ensure(
                api.api_id,
                AuthorizerSpec(
                    name=self.name,
                    function_arn=function.identity,
                    identity_source=config.identity_source,
                    result_ttl=config.result_ttl,
                ),
            ),
        )
        return EnsureStatus.combine(function.status, authorizer.status), function.identity, None

    async def _deploy_site(self) -> tuple[EnsureStatus, str, str | None]:
        config = self.handler.config
        assert isinstance(config, StaticSiteConfig)
        ctx = self.ctx
        services = self.services

        if ctx.oac_id is None:
            raise DeployError(
                self.handler.name, "cloudfront", ValueError("No origin access control provisioned")
            )
        if not config.spa and ctx.url_rewrite_arn is None:
            raise DeployError(
                self.handler.name, "cloudfront", ValueError("No url-rewrite function provisioned")
            )

        bucket = bucket_name(ctx.project, ctx.stage, self.handler.name)
        bucket_result = await self.step(
            "s3-bucket", services.buckets.ensure(bucket, self.tags("s3-bucket"))
        )

        certificate_arn = None
        aliases: tuple[str, ...] = ()
        if config.domain:
            certificate_arn = await self.step("acm", services.certificates.find(config.domain))
            aliases = (config.domain,)

        distribution = await self.step(
            "cloudfront-distribution",
            services.cdn.ensure_distribution(
                DistributionSpec(
                    ctx=ctx.tag_context(self.handler.name),
                    bucket=bucket,
                    bucket_region=ctx.region,
                    oac_id=ctx.oac_id,
                    index=config.index,
                    spa=config.spa,
                    url_rewrite_arn=None if config.spa else ctx.url_rewrite_arn,
                    aliases=aliases,
                    certificate_arn=certificate_arn,
                    tags=self.tags("cloudfront-distribution"),
                )
            ),
        )
        dist = distribution.identity
        policy_status = await self.step(
            "s3-bucket", services.buckets.put_oac_policy(bucket, dist.arn)
        )
        synced = await self.step(
            "s3-bucket", services.buckets.sync_files(bucket, Path(config.directory))
        )
        if synced.changed and distribution.status is not EnsureStatus.CREATED:
            await self.step("cloudfront-distribution", services.cdn.invalidate(dist.distribution_id))

        status = EnsureStatus.combine(bucket_result.status, distribution.status, policy_status)
        if status is EnsureStatus.UNCHANGED and synced.changed:
            status = EnsureStatus.UPDATED
        return status, dist.distribution_id, f"https://{config.domain or dist.domain_name}"
