"""Capability interfaces over the AWS service clients.

Reconcilers never touch botocore directly. They receive a ``Capability`` per
service family and call named actions on it; failures arrive as
``ServiceError`` carrying an ``ErrorKind`` so convergence logic can branch on
"not found" or "conflict" without knowing each service's error codes.
"""

import asyncio
import logging
import random
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .exceptions import ErrorKind, ServiceError

logger = logging.getLogger(__name__)

GLOBAL_REGION = "us-east-1"
"""Region of global services (CloudFront, IAM, CloudFront certificates)."""

NOT_FOUND_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NotFoundException",
        "NotFound",
        "NoSuchEntity",
        "NoSuchEntityException",
        "NoSuchDistribution",
        "NoSuchOriginAccessControl",
        "NoSuchFunctionExists",
        "NoSuchBucket",
        "NoSuchKey",
        "NoSuchTagSet",
        "NoSuchBucketPolicy",
        "QueueDoesNotExist",
        "AWS.SimpleQueueService.NonExistentQueue",
        "ParameterNotFound",
    }
)

CONFLICT_CODES = frozenset(
    {
        "ResourceConflictException",
        "ConflictException",
        "ResourceInUseException",
        "EntityAlreadyExists",
        "EntityAlreadyExistsException",
        "BucketAlreadyOwnedByYou",
        "BucketAlreadyExists",
        "PreconditionFailed",
        "InvalidIfMatchVersion",
        "DistributionNotDisabled",
        "OriginAccessControlAlreadyExists",
        "FunctionAlreadyExists",
        "QueueAlreadyExists",
        "QueueNameExists",
        "OperationAborted",
        "DeleteConflict",
        "ConcurrentModification",
    }
)

VALIDATION_CODES = frozenset(
    {
        "ValidationException",
        "ValidationError",
        "BadRequestException",
        "InvalidParameterValueException",
        "InvalidParameterException",
        "InvalidParameterValue",
        "InvalidArgument",
        "InvalidInput",
        "MalformedPolicyDocument",
        "InvalidAttributeValue",
        "InvalidAttributeName",
        "IllegalUpdate",
        "InvalidViewerCertificate",
        "CNAMEAlreadyExists",
    }
)

THROTTLING_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "ThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "RequestThrottledException",
        "SlowDown",
        "ProvisionedThroughputExceededException",
        "LimitExceededException",
        "TooManyUpdates",
    }
)

_STATUS_KINDS = {
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    412: ErrorKind.CONFLICT,
    400: ErrorKind.VALIDATION,
    429: ErrorKind.THROTTLING,
}


def classify_error_code(code: str, status: int | None = None) -> ErrorKind:
    """
    Map a remote error code to an ``ErrorKind``.

    Known codes win; unknown codes fall back on the HTTP status.

    Args:
        code: Remote error code
        status: HTTP status code of the response, if known

    Returns:
        The classified error kind
    """
    if code in NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if code in CONFLICT_CODES:
        return ErrorKind.CONFLICT
    if code in THROTTLING_CODES:
        return ErrorKind.THROTTLING
    if code in VALIDATION_CODES:
        return ErrorKind.VALIDATION
    if status is not None:
        return _STATUS_KINDS.get(status, ErrorKind.OTHER)
    return ErrorKind.OTHER


def to_service_error(error: ClientError, service: str, action: str) -> ServiceError:
    """Convert a botocore ``ClientError`` into a classified ``ServiceError``."""
    details = error.response.get("Error", {})
    code = str(details.get("Code", "Unknown"))
    message = str(details.get("Message", "")) or str(error)
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return ServiceError(
        classify_error_code(code, status),
        code,
        message,
        service=service,
        action=action,
        cause=error,
    )


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with jitter for throttled calls.

    Attributes:
        max_attempts: Total attempts including the first call
        base_delay: Delay before the second attempt, in seconds
        max_delay: Cap on any single delay, in seconds
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        """Seconds to sleep after failed attempt number ``attempt`` (1-based)."""
        backoff = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return random.uniform(0, backoff)


NO_RETRY = RetryPolicy(max_attempts=1)


class Capability(Protocol):
    """Executes a named remote action with keyword input."""

    async def call(self, action: str, **params: Any) -> dict[str, Any]: ...


class ServiceClient:
    """
    Capability backed by one aioboto3 client.

    Throttled calls are retried according to ``retry``; every other failure
    is raised immediately as ``ServiceError``.
    """

    def __init__(self, service: str, client: Any, retry: RetryPolicy | None = None) -> None:
        self.service = service
        self._client = client
        self._retry = retry or RetryPolicy()

    async def call(self, action: str, **params: Any) -> dict[str, Any]:
        method = getattr(self._client, action)
        for attempt in range(1, self._retry.max_attempts + 1):
            logger.debug("%s.%s", self.service, action)
            try:
                response: dict[str, Any] = await method(**params)
                return response
            except ClientError as e:
                error = to_service_error(e, self.service, action)
                if error.kind is not ErrorKind.THROTTLING or attempt >= self._retry.max_attempts:
                    raise error from e

                wait_time = self._retry.delay(attempt)
                logger.warning(
                    "%s.%s throttled (%s), retrying in %.2fs (attempt %d/%d)",
                    self.service,
                    action,
                    error.code,
                    wait_time,
                    attempt,
                    self._retry.max_attempts,
                )
                await asyncio.sleep(wait_time)

        raise AssertionError("unreachable")  # pragma: no cover


async def paginate(
    client: Capability,
    action: str,
    result_key: str,
    *,
    token_key: str = "NextToken",
    token_param: str | None = None,
    **params: Any,
) -> AsyncIterator[Any]:
    """
    Iterate the items of a token-paginated listing action.

    Args:
        client: Capability to call
        action: Listing action name
        result_key: Response key holding the page items
        token_key: Response key holding the next-page token
        token_param: Request parameter taking the token (default: ``token_key``)
        **params: Fixed request parameters

    Yields:
        Items across all pages
    """
    token_param = token_param or token_key
    token: str | None = None
    while True:
        kwargs = dict(params)
        if token:
            kwargs[token_param] = token
        page = await client.call(action, **kwargs)
        for item in page.get(result_key) or []:
            yield item
        token = page.get(token_key)
        if not token:
            return


async def collect(iterator: AsyncIterator[Any]) -> list[Any]:
    return [item async for item in iterator]


class AwsClients:
    """
    Opens and owns the service clients of one deploy run.

    Clients are created lazily from a single ``aioboto3.Session`` and cached
    per (service, region). Supports LocalStack or other AWS-compatible
    endpoints through ``endpoint_url``.
    """

    def __init__(
        self,
        region: str,
        endpoint_url: str | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        """
        Initialize the client pool.

        Args:
            region: Deploy region
            endpoint_url: Optional endpoint URL (for LocalStack)
            retry: Throttling retry policy shared by all clients
        """
        self.region = region
        self.endpoint_url = endpoint_url
        self._retry = retry or RetryPolicy()
        self._session: aioboto3.Session | None = None
        self._raw: dict[tuple[str, str], Any] = {}
        self._clients: dict[tuple[str, str], ServiceClient] = {}
        self._lock = asyncio.Lock()

    async def get(self, service: str, region: str | None = None) -> ServiceClient:
        """Get or create the capability for ``service`` in ``region``."""
        key = (service, region or self.region)
        if key in self._clients:
            return self._clients[key]

        async with self._lock:
            if key in self._clients:
                return self._clients[key]

            if self._session is None:
                self._session = aioboto3.Session()

            kwargs: dict[str, Any] = {
                "region_name": key[1],
                # Throttling is retried by ServiceClient with jitter
                "config": Config(retries={"max_attempts": 1, "mode": "standard"}),
            }
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url

            raw = await self._session.client(service, **kwargs).__aenter__()
            self._raw[key] = raw
            self._clients[key] = ServiceClient(service, raw, self._retry)
            return self._clients[key]

    async def close(self) -> None:
        """Close every opened client."""
        raw_clients = list(self._raw.values())
        self._raw.clear()
        self._clients.clear()
        for raw in raw_clients:
            try:
                await raw.__aexit__(None, None, None)
            except Exception as e:  # noqa: BLE001
                logger.debug("Error closing client: %s", e)
        self._session = None

    async def __aenter__(self) -> "AwsClients":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
