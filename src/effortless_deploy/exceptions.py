"""Exceptions for effortless-deploy."""

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import HandlerResult


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class EffortlessError(Exception):
    """
    Base exception for all effortless-deploy errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class ConfigurationError(EffortlessError):
    """
    Base exception for configuration errors.

    Raised before any remote call is made: invalid names, malformed
    manifests, or references to handlers that are not declared.
    """

    pass


class WaiterError(EffortlessError):
    """
    Base exception for eventual-consistency waits that did not converge.
    """

    pass


# ---------------------------------------------------------------------------
# Configuration Exceptions
# ---------------------------------------------------------------------------


class ValidationError(ConfigurationError):
    """Raised when a name or manifest value is invalid."""

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} '{value}': {reason}")


class WiringError(ConfigurationError):
    """Raised when a handler references a dependency that cannot be resolved."""

    def __init__(self, handler: str, reference: str, reason: str) -> None:
        self.handler = handler
        self.reference = reference
        self.reason = reason
        super().__init__(f"Handler '{handler}' cannot use '{reference}': {reason}")


# ---------------------------------------------------------------------------
# Remote Service Exceptions
# ---------------------------------------------------------------------------


class ErrorKind(str, Enum):
    """Closed set of remote failure kinds reconcilers branch on."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    THROTTLING = "throttling"
    TIMEOUT = "timeout"
    OTHER = "other"


class ServiceError(EffortlessError):
    """
    Raised when a capability call fails with a remote error.

    Attributes:
        kind: Classified error kind
        code: Remote error code (e.g. ``ResourceNotFoundException``)
        service: Service name the call was issued against
        action: Action name (e.g. ``get_function``)
        cause: The underlying client exception, if any
    """

    def __init__(
        self,
        kind: ErrorKind,
        code: str,
        message: str,
        *,
        service: str = "",
        action: str = "",
        cause: Exception | None = None,
    ) -> None:
        self.kind = kind
        self.code = code
        self.message = message
        self.service = service
        self.action = action
        self.cause = cause
        prefix = f"{service}.{action}" if service else action
        super().__init__(f"{prefix} failed ({code}): {message}" if prefix else message)

    @property
    def is_not_found(self) -> bool:
        return self.kind is ErrorKind.NOT_FOUND

    @property
    def is_conflict(self) -> bool:
        return self.kind is ErrorKind.CONFLICT

    @property
    def is_throttling(self) -> bool:
        return self.kind is ErrorKind.THROTTLING


class CertificateNotFoundError(EffortlessError):
    """Raised when no issued certificate covers a custom domain."""

    def __init__(self, domain: str, region: str = "us-east-1") -> None:
        self.domain = domain
        self.region = region
        super().__init__(
            f'No issued ACM certificate found in {region} covering "{domain}". '
            f"Create a certificate for {domain} (or a wildcard parent) in {region}, "
            "then validate it via DNS before deploying."
        )


# ---------------------------------------------------------------------------
# Waiter Exceptions
# ---------------------------------------------------------------------------


class WaiterTimeoutError(WaiterError):
    """
    Raised when a polling wait exhausts its attempts.

    Attributes:
        description: What was being waited for
        attempts: Number of probes performed
        last_status: Last observed remote status, for diagnostics
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, description: str, attempts: int, last_status: Any) -> None:
        self.description = description
        self.attempts = attempts
        self.last_status = last_status
        super().__init__(
            f"Timed out waiting for {description} after {attempts} attempts "
            f"(last status: {last_status})"
        )


class TerminalStateError(WaiterError):
    """Raised when a polled resource reports a non-recoverable state."""

    def __init__(self, description: str, status: Any) -> None:
        self.description = description
        self.status = status
        super().__init__(f"Gave up waiting for {description}: terminal status {status}")


# ---------------------------------------------------------------------------
# Deployment Exceptions
# ---------------------------------------------------------------------------


class DeployError(EffortlessError):
    """
    Raised when one handler's pipeline fails.

    Attributes:
        handler: Handler name
        resource_kind: Resource kind being converged when the failure happened
        cause: The underlying error
    """

    def __init__(self, handler: str, resource_kind: str, cause: BaseException) -> None:
        self.handler = handler
        self.resource_kind = resource_kind
        self.cause = cause
        super().__init__(f"Deploy of handler '{handler}' failed at {resource_kind}: {cause}")


class DeployBatchError(EffortlessError):
    """
    Raised when one or more handlers failed while others were allowed to finish.

    Attributes:
        failures: One DeployError per failed handler
        results: Results of the handlers that succeeded
    """

    def __init__(
        self,
        failures: list[DeployError],
        results: list["HandlerResult"] | None = None,
    ) -> None:
        if not failures:
            raise ValueError("DeployBatchError requires at least one failure")
        self.failures = failures
        self.results = results or []
        names = ", ".join(f.handler for f in failures)
        super().__init__(
            f"{len(failures)} handler(s) failed to deploy: [{names}]. "
            f"{len(self.results)} handler(s) succeeded."
        )
