"""Lambda function reconciliation."""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..artifacts import CodeArtifact
from ..clients import Capability
from ..exceptions import ErrorKind, ServiceError
from ..models import (
    DEFAULT_ARCHITECTURE,
    DEFAULT_ENTRY,
    DEFAULT_MEMORY,
    DEFAULT_RUNTIME,
    DEFAULT_TIMEOUT,
    EnsureResult,
    EnsureStatus,
)
from ..tags import missing_tags
from ..waiter import FUNCTION_ACTIVE, ROLE_PROPAGATION, WaitOutcome, WaitSpec, wait_until

logger = logging.getLogger(__name__)

# Lambda reports no architecture for functions created before arm64 support
LEGACY_ARCHITECTURE = "x86_64"

# Message Lambda returns while a freshly created role is not yet assumable
ROLE_NOT_READY_MARKER = "cannot be assumed by Lambda"


@dataclass(frozen=True)
class FunctionSpec:
    """Desired state of one function."""

    name: str
    role_arn: str
    code: CodeArtifact
    tags: dict[str, str] = field(default_factory=dict)
    memory: int = DEFAULT_MEMORY
    timeout: int = DEFAULT_TIMEOUT
    entry: str = DEFAULT_ENTRY
    runtime: str = DEFAULT_RUNTIME
    architecture: str = DEFAULT_ARCHITECTURE
    layers: tuple[str, ...] = ()
    environment: dict[str, str] = field(default_factory=dict)


def code_changed(current: dict[str, Any], spec: FunctionSpec) -> bool:
    """Code must be re-uploaded when its hash or the target architecture differs."""
    architecture = (current.get("Architectures") or [LEGACY_ARCHITECTURE])[0]
    return current.get("CodeSha256") != spec.code.sha256 or architecture != spec.architecture


def configuration_changes(current: dict[str, Any], spec: FunctionSpec) -> dict[str, Any]:
    """
    Compute the configuration fields that differ from the desired state.

    Layers compare as sets; environment variables compare over the union
    of both key sets.

    Args:
        current: ``Configuration`` block returned by ``get_function``
        spec: Desired function state

    Returns:
        Only the changed fields, shaped as ``update_function_configuration`` input
    """
    changes: dict[str, Any] = {}
    if current.get("MemorySize") != spec.memory:
        changes["MemorySize"] = spec.memory
    if current.get("Timeout") != spec.timeout:
        changes["Timeout"] = spec.timeout
    if current.get("Handler") != spec.entry:
        changes["Handler"] = spec.entry
    if current.get("Runtime") != spec.runtime:
        changes["Runtime"] = spec.runtime
    if current.get("Role") != spec.role_arn:
        changes["Role"] = spec.role_arn

    current_layers = sorted(layer["Arn"] for layer in current.get("Layers") or [])
    if current_layers != sorted(spec.layers):
        changes["Layers"] = list(spec.layers)

    current_env = (current.get("Environment") or {}).get("Variables") or {}
    keys = set(current_env) | set(spec.environment)
    if any(current_env.get(k) != spec.environment.get(k) for k in keys):
        changes["Environment"] = {"Variables": dict(spec.environment)}

    return changes


def _classify_active(config: dict[str, Any]) -> WaitOutcome:
    state = config.get("State")
    last_update = config.get("LastUpdateStatus")
    if state == "Failed" or last_update == "Failed":
        return WaitOutcome.FAILED
    if state == "Active" and last_update in (None, "Successful"):
        return WaitOutcome.SATISFIED
    return WaitOutcome.PENDING


class FunctionReconciler:
    """
    Converges Lambda functions by name.

    Code and configuration are updated through separate calls because Lambda
    rejects a configuration update while a code update is still applying.
    """

    def __init__(
        self,
        lambda_client: Capability,
        *,
        active_wait: WaitSpec = FUNCTION_ACTIVE,
        role_wait: WaitSpec = ROLE_PROPAGATION,
    ) -> None:
        self._lambda = lambda_client
        self._active_wait = active_wait
        self._role_wait = role_wait

    async def get(self, name: str) -> dict[str, Any] | None:
        """Return the ``get_function`` response, or None if the function does not exist."""
        try:
            return await self._lambda.call("get_function", FunctionName=name)
        except ServiceError as e:
            if e.is_not_found:
                return None
            raise

    async def ensure(self, spec: FunctionSpec) -> EnsureResult[str]:
        """
        Create the function or update only what differs.

        Args:
            spec: Desired function state

        Returns:
            EnsureResult with the function ARN
        """
        existing = await self.get(spec.name)
        if existing is None:
            return await self._create(spec)

        config = existing["Configuration"]
        arn = config["FunctionArn"]
        status = EnsureStatus.UNCHANGED

        if code_changed(config, spec):
            logger.info("Updating code of function %s (%d bytes)", spec.name, spec.code.size)
            await self._lambda.call(
                "update_function_code",
                FunctionName=spec.name,
                ZipFile=spec.code.content,
                Architectures=[spec.architecture],
            )
            await self.wait_active(spec.name)
            status = EnsureStatus.UPDATED

        changes = configuration_changes(config, spec)
        if changes:
            logger.info("Updating configuration of function %s: %s", spec.name, sorted(changes))
            await self._update_configuration(spec.name, changes)
            await self.wait_active(spec.name)
            status = EnsureStatus.UPDATED
        else:
            logger.debug("Function %s configuration unchanged", spec.name)

        tags = missing_tags(existing.get("Tags"), spec.tags)
        if tags:
            await self._lambda.call("tag_resource", Resource=arn, Tags=tags)

        return EnsureResult(arn, status)

    async def _create(self, spec: FunctionSpec) -> EnsureResult[str]:
        params: dict[str, Any] = {
            "FunctionName": spec.name,
            "Role": spec.role_arn,
            "Code": {"ZipFile": spec.code.content},
            "Handler": spec.entry,
            "Runtime": spec.runtime,
            "MemorySize": spec.memory,
            "Timeout": spec.timeout,
            "Architectures": [spec.architecture],
            "Tags": dict(spec.tags),
        }
        if spec.environment:
            params["Environment"] = {"Variables": dict(spec.environment)}
        if spec.layers:
            params["Layers"] = list(spec.layers)

        async def attempt() -> dict[str, Any] | None:
            try:
                return await self._lambda.call("create_function", **params)
            except ServiceError as e:
                # A role created moments ago is not yet visible to Lambda
                if e.kind is ErrorKind.VALIDATION and ROLE_NOT_READY_MARKER in e.message:
                    return None
                raise

        logger.info("Creating function %s", spec.name)
        created = await wait_until(
            attempt,
            lambda r: WaitOutcome.PENDING if r is None else WaitOutcome.SATISFIED,
            self._role_wait,
            description=f"role of function {spec.name} to become assumable",
            status_of=lambda r: "role not assumable" if r is None else "created",
        )
        assert created is not None
        await self.wait_active(spec.name)
        return EnsureResult(created["FunctionArn"], EnsureStatus.CREATED)

    async def _update_configuration(self, name: str, changes: dict[str, Any]) -> None:
        try:
            await self._lambda.call("update_function_configuration", FunctionName=name, **changes)
        except ServiceError as e:
            if not e.is_conflict:
                raise
            # Still applying the code update: wait once, retry once
            logger.info("Function %s still updating, retrying configuration update", name)
            await self.wait_active(name)
            await self._lambda.call("update_function_configuration", FunctionName=name, **changes)

    async def wait_active(self, name: str) -> dict[str, Any]:
        """Wait until the function is Active and its last update succeeded."""
        return await wait_until(
            lambda: self._lambda.call("get_function_configuration", FunctionName=name),
            _classify_active,
            self._active_wait,
            description=f"function {name} to become active",
            status_of=lambda c: f"{c.get('State')}/{c.get('LastUpdateStatus')}",
        )

    async def delete(self, name: str) -> bool:
        """
        Delete a function.

        Returns:
            True if deleted, False if it did not exist
        """
        try:
            await self._lambda.call("delete_function", FunctionName=name)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted function %s", name)
        return True
