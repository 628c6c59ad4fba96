"""Event-source mapping reconciliation (table streams and queues)."""

import logging
from dataclasses import dataclass
from typing import Any

from ..clients import Capability, paginate
from ..models import EnsureResult, EnsureStatus

logger = logging.getLogger(__name__)

_DISABLED_STATES = ("Disabled", "Disabling")


@dataclass(frozen=True)
class EventSourceSpec:
    """
    Desired mapping from an event source to a function.

    Attributes:
        function_arn: Consuming function
        source_arn: Stream or queue ARN
        batch_size: Maximum records per invocation
        batch_window: Maximum batching window in seconds (None = service default)
        starting_position: Stream read position; None for queues
        response_types: Function response types (e.g. ``ReportBatchItemFailures``)
        enabled: Whether the mapping should poll
    """

    function_arn: str
    source_arn: str
    batch_size: int
    batch_window: int | None = None
    starting_position: str | None = None
    response_types: tuple[str, ...] = ()
    enabled: bool = True


def mapping_changes(current: dict[str, Any], spec: EventSourceSpec) -> dict[str, Any]:
    """Return the ``update_event_source_mapping`` fields that differ."""
    changes: dict[str, Any] = {}
    if current.get("BatchSize") != spec.batch_size:
        changes["BatchSize"] = spec.batch_size
    if spec.batch_window is not None and (
        current.get("MaximumBatchingWindowInSeconds", 0) != spec.batch_window
    ):
        changes["MaximumBatchingWindowInSeconds"] = spec.batch_window
    enabled = current.get("State") not in _DISABLED_STATES
    if enabled != spec.enabled:
        changes["Enabled"] = spec.enabled
    if sorted(current.get("FunctionResponseTypes") or []) != sorted(spec.response_types):
        changes["FunctionResponseTypes"] = list(spec.response_types)
    return changes


class EventSourceReconciler:
    """Converges the single mapping between one source and one function."""

    def __init__(self, lambda_client: Capability) -> None:
        self._lambda = lambda_client

    async def find(self, function_arn: str, source_arn: str) -> dict[str, Any] | None:
        async for mapping in paginate(
            self._lambda,
            "list_event_source_mappings",
            "EventSourceMappings",
            token_key="NextMarker",
            token_param="Marker",
            FunctionName=function_arn,
            EventSourceArn=source_arn,
        ):
            return mapping
        return None

    async def ensure(self, spec: EventSourceSpec) -> EnsureResult[str]:
        """
        Create the mapping or update only the differing fields.

        Returns:
            EnsureResult with the mapping UUID
        """
        current = await self.find(spec.function_arn, spec.source_arn)

        if current is None:
            params: dict[str, Any] = {
                "FunctionName": spec.function_arn,
                "EventSourceArn": spec.source_arn,
                "BatchSize": spec.batch_size,
                "Enabled": spec.enabled,
            }
            if spec.starting_position:
                params["StartingPosition"] = spec.starting_position
            if spec.batch_window is not None:
                params["MaximumBatchingWindowInSeconds"] = spec.batch_window
            if spec.response_types:
                params["FunctionResponseTypes"] = list(spec.response_types)

            logger.info("Creating event source mapping %s -> %s", spec.source_arn, spec.function_arn)
            created = await self._lambda.call("create_event_source_mapping", **params)
            return EnsureResult(created["UUID"], EnsureStatus.CREATED)

        changes = mapping_changes(current, spec)
        if not changes:
            return EnsureResult(current["UUID"], EnsureStatus.UNCHANGED)

        logger.info("Updating event source mapping %s: %s", current["UUID"], sorted(changes))
        await self._lambda.call("update_event_source_mapping", UUID=current["UUID"], **changes)
        return EnsureResult(current["UUID"], EnsureStatus.UPDATED)
