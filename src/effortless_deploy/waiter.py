"""Bounded polling for asynchronous remote state transitions.

The waiter knows nothing about resources. Callers supply a probe that reads
the current remote state and a classifier that maps it to an outcome; the
classifier is where transient states are told apart from terminal ones.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from .exceptions import TerminalStateError, WaiterTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WaitOutcome(Enum):
    """Classification of one probe result."""

    SATISFIED = "satisfied"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class WaitSpec:
    """
    Timing of one polling wait.

    Attributes:
        max_attempts: Number of probes before giving up
        interval: Seconds slept between probes
    """

    max_attempts: int
    interval: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")

    @property
    def budget(self) -> float:
        """Worst-case seconds spent sleeping."""
        return (self.max_attempts - 1) * self.interval


TABLE_ACTIVE = WaitSpec(max_attempts=15, interval=2.0)
FUNCTION_ACTIVE = WaitSpec(max_attempts=15, interval=2.0)
DISTRIBUTION_DEPLOYED = WaitSpec(max_attempts=90, interval=10.0)
ROLE_PROPAGATION = WaitSpec(max_attempts=10, interval=2.0)


async def wait_until(
    probe: Callable[[], Awaitable[T]],
    classify: Callable[[T], WaitOutcome],
    spec: WaitSpec,
    *,
    description: str = "resource",
    status_of: Callable[[T], Any] | None = None,
) -> T:
    """
    Poll until the classifier reports the probe result as satisfied.

    Args:
        probe: Reads the current remote state (may have side effects)
        classify: Maps a probe result to satisfied, pending or failed
        spec: Attempt bound and interval
        description: What is being waited for, used in errors and logs
        status_of: Extracts the status reported in errors (default: the result)

    Returns:
        The first probe result classified as satisfied

    Raises:
        TerminalStateError: As soon as a probe result is classified as failed
        WaiterTimeoutError: After ``spec.max_attempts`` probes without success
    """
    last_status: Any = None
    for attempt in range(1, spec.max_attempts + 1):
        result = await probe()
        last_status = status_of(result) if status_of else result
        outcome = classify(result)

        if outcome is WaitOutcome.SATISFIED:
            if attempt > 1:
                logger.debug("%s ready after %d attempts", description, attempt)
            return result
        if outcome is WaitOutcome.FAILED:
            raise TerminalStateError(description, last_status)

        if attempt < spec.max_attempts:
            logger.debug(
                "Waiting for %s (attempt %d/%d, status %s)",
                description,
                attempt,
                spec.max_attempts,
                last_status,
            )
            await asyncio.sleep(spec.interval)

    raise WaiterTimeoutError(description, spec.max_attempts, last_status)
