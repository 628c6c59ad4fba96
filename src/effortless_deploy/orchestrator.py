"""Deployment orchestration across handlers.

Shared resources (dependency layer, shared HTTP API, CDN access control and
rewrite function) are ensured once, before any handler task starts, and are
passed to every task through a read-only ``DeployTaskContext``. Handler
pipelines then run concurrently under a fixed bound. Stale routes and
orphaned functions are swept only after every handler succeeded.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from .artifacts import CodeArtifact
from .exceptions import DeployBatchError, DeployError, ServiceError, ValidationError
from .models import (
    DeployResult,
    DeployTaskContext,
    FunctionDefaults,
    HandlerDescriptor,
    HandlerKind,
    HandlerResult,
    StaticSiteConfig,
    TagContext,
)
from .naming import (
    SHARED_API_HANDLER,
    parameter_path,
    project_name,
    resource_name,
    validate_name,
)
from .pipelines import HandlerPipeline
from .progress import DeployProgress
from .services import DeployServices
from .sweeper import StaleResourceSweeper, active_route_keys
from .tags import make_tags
from .wiring import build_table_name_map

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONCURRENCY = 5

# Kinds served through the shared HTTP API
SHARED_API_KINDS = frozenset({HandlerKind.HTTP, HandlerKind.APP, HandlerKind.AUTHORIZER})

# Handler name reported for failures of shared, project-level resources
SHARED_HANDLER = "(shared)"


@dataclass(frozen=True)
class DeployOptions:
    """
    Behavior of one deploy run.

    Attributes:
        concurrency: Maximum handler pipelines in flight
        fail_fast: Abort the batch on the first handler failure; otherwise
            let every handler finish and raise ``DeployBatchError``
        sweep_routes: Delete routes and authorizers no longer declared
        prune_orphans: Delete functions and roles of undeclared handlers
    """

    concurrency: int = DEFAULT_CONCURRENCY
    fail_fast: bool = True
    sweep_routes: bool = True
    prune_orphans: bool = True

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValidationError("concurrency", self.concurrency, "Must be at least 1")


@dataclass(frozen=True)
class DeployRequest:
    """What to deploy: the handlers of one project stage."""

    project: str
    stage: str
    region: str
    handlers: tuple[HandlerDescriptor, ...]
    layer: CodeArtifact | None = None
    defaults: FunctionDefaults = field(default_factory=FunctionDefaults)

    def __post_init__(self) -> None:
        validate_name(self.project, "project")
        validate_name(self.stage, "stage")
        if not isinstance(self.handlers, tuple):
            object.__setattr__(self, "handlers", tuple(self.handlers))


def check_unique_names(handlers: Sequence[HandlerDescriptor]) -> None:
    """Handler names own resource names, so two handlers may not share one."""
    seen: set[str] = set()
    for handler in handlers:
        if handler.name in seen:
            raise ValidationError("handler name", handler.name, "Declared more than once")
        seen.add(handler.name)


class DeployOrchestrator:
    """
    Drives a batch of handler deployments to completion.

    Args:
        services: Reconcilers bound to the run's capabilities
        options: Run options
        emit: Receives progress lines (default: INFO log)
    """

    def __init__(
        self,
        services: DeployServices,
        options: DeployOptions | None = None,
        emit: Callable[[str], None] | None = None,
    ) -> None:
        self.services = services
        self.options = options or DeployOptions()
        self._emit = emit
        self.sweeper = StaleResourceSweeper(
            services.http,
            services.authorizers,
            services.functions,
            services.roles,
            services.inventory,
        )

    async def _shared(self, resource_kind: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except Exception as e:
            raise DeployError(SHARED_HANDLER, resource_kind, e) from e

    async def prepare(self, request: DeployRequest) -> DeployTaskContext:
        """Ensure the resources shared by every handler and build the run context."""
        project, stage = request.project, request.stage
        kinds = {h.kind for h in request.handlers}
        services = self.services

        layer_arn = None
        if request.layer is not None:
            layer = await self._shared(
                "lambda-layer",
                services.layers.ensure(
                    project_name(project, stage, "deps"),
                    request.layer,
                    [request.defaults.runtime],
                    [request.defaults.architecture],
                ),
            )
            layer_arn = layer.identity

        api = None
        if kinds & SHARED_API_KINDS:
            shared = TagContext(project, stage, SHARED_API_HANDLER)
            result = await self._shared(
                "api-gateway",
                services.http.ensure_api(
                    project_name(project, stage), make_tags(shared, "api-gateway")
                ),
            )
            api = result.identity

        oac_id = None
        url_rewrite_arn = None
        sites = [h.config for h in request.handlers if isinstance(h.config, StaticSiteConfig)]
        if sites:
            oac = await self._shared(
                "cloudfront", services.cdn.ensure_oac(project_name(project, stage, "oac"))
            )
            oac_id = oac.identity
            if any(not site.spa for site in sites):
                rewrite = await self._shared(
                    "cloudfront",
                    services.cdn.ensure_url_rewrite_function(
                        project_name(project, stage, "url-rewrite")
                    ),
                )
                url_rewrite_arn = rewrite.identity

        return DeployTaskContext(
            project=project,
            stage=stage,
            region=request.region,
            table_names=build_table_name_map(request.handlers, project, stage),
            layer_arn=layer_arn,
            api=api,
            defaults=request.defaults,
            oac_id=oac_id,
            url_rewrite_arn=url_rewrite_arn,
        )

    async def check_parameters(self, request: DeployRequest) -> list[str]:
        """Warn about referenced parameters that do not exist; never fails the deploy."""
        paths = [
            parameter_path(request.project, request.stage, ref.key)
            for h in request.handlers
            for ref in h.params
        ]
        if not paths:
            return []
        try:
            missing = await self.services.parameters.missing(paths)
        except ServiceError as e:
            logger.warning("Could not check parameters: %s", e)
            return []
        for path in missing:
            logger.warning("Parameter %s does not exist; functions reading it will fail", path)
        return missing

    async def deploy(self, request: DeployRequest) -> DeployResult:
        """
        Deploy every handler of the request.

        Returns:
            Per-handler results in declaration order, plus the shared API
            identity and whatever the sweep removed

        Raises:
            ValidationError: If two handlers share a name
            DeployError: In fail-fast mode, the first handler failure
            DeployBatchError: Otherwise, all handler failures together
        """
        check_unique_names(request.handlers)
        ctx = await self.prepare(request)
        await self.check_parameters(request)

        results = await self.run_handlers(request.handlers, ctx)
        order = {h.name: i for i, h in enumerate(request.handlers)}
        results.sort(key=lambda r: order[r.name])

        outcome = DeployResult(handlers=results)
        if ctx.api is not None:
            outcome.api_id = ctx.api.api_id
            outcome.api_url = ctx.api.endpoint

        if self.options.sweep_routes:
            outcome.swept_routes = await self._sweep(request, ctx)
        if self.options.prune_orphans:
            outcome.pruned = await self.sweeper.prune_orphans(
                request.project, request.stage, [h.name for h in request.handlers]
            )
        return outcome

    async def run_handlers(
        self, handlers: Sequence[HandlerDescriptor], ctx: DeployTaskContext
    ) -> list[HandlerResult]:
        """Run one pipeline per handler, at most ``options.concurrency`` at a time."""
        semaphore = asyncio.Semaphore(self.options.concurrency)
        progress = DeployProgress(len(handlers), self._emit)

        async def run_one(handler: HandlerDescriptor) -> HandlerResult:
            started = time.monotonic()
            try:
                async with semaphore:
                    result = await HandlerPipeline(handler, ctx, self.services).run()
            except DeployError:
                progress.fail(handler.name, handler.kind, time.monotonic() - started)
                raise
            progress.record(result)
            return result

        if self.options.fail_fast:
            try:
                async with asyncio.TaskGroup() as group:
                    tasks = [group.create_task(run_one(h)) for h in handlers]
            except ExceptionGroup as e:
                # The first failure cancelled the rest
                raise e.exceptions[0] from None
            return [task.result() for task in tasks]

        outcomes = await asyncio.gather(*(run_one(h) for h in handlers), return_exceptions=True)
        results: list[HandlerResult] = []
        failures: list[DeployError] = []
        for item in outcomes:
            if isinstance(item, DeployError):
                failures.append(item)
            elif isinstance(item, BaseException):
                raise item
            else:
                results.append(item)
        if failures:
            raise DeployBatchError(failures, results)
        return results

    async def _sweep(self, request: DeployRequest, ctx: DeployTaskContext) -> list[str]:
        if ctx.api is not None:
            api_id = ctx.api.api_id
        else:
            # The last route-serving handler may just have been removed
            existing = await self.services.http.find_api(
                project_name(request.project, request.stage)
            )
            if existing is None:
                return []
            api_id = existing["ApiId"]

        swept = await self.sweeper.sweep_routes(api_id, active_route_keys(request.handlers))
        await self.sweeper.sweep_authorizers(
            api_id,
            {
                resource_name(request.project, request.stage, h.name)
                for h in request.handlers
                if h.kind is HandlerKind.AUTHORIZER
            },
        )
        return swept
