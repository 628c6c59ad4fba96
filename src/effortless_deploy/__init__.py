"""
effortless-deploy: converge serverless handlers onto AWS.

A project declares handlers (HTTP routes, tables, queues, WebSocket APIs,
authorizers, static sites). Deploying converges every remote resource they
need, idempotently and concurrently, and tags each one so later runs can find,
sweep and clean up what they own.

Example:
    from effortless_deploy import (
        AwsClients, DeployOrchestrator, DeployRequest, DeployServices, ProjectManifest,
    )

    manifest = ProjectManifest.load("effortless.yaml")
    request = DeployRequest(
        project=manifest.project,
        stage=manifest.resolve_stage(),
        region=manifest.resolve_region(),
        handlers=manifest.descriptors(),
        layer=manifest.layer_artifact(),
        defaults=manifest.defaults,
    )
    async with AwsClients(request.region) as clients:
        services = await DeployServices.from_clients(clients)
        result = await DeployOrchestrator(services).deploy(request)
"""

from ._version import __version__
from .artifacts import CodeArtifact
from .cleanup import ResourceCleaner
from .clients import AwsClients, RetryPolicy, ServiceClient
from .config import ProjectManifest
from .exceptions import (
    CertificateNotFoundError,
    ConfigurationError,
    DeployBatchError,
    DeployError,
    EffortlessError,
    ErrorKind,
    ServiceError,
    TerminalStateError,
    ValidationError,
    WaiterError,
    WaiterTimeoutError,
    WiringError,
)
from .inventory import ResourceInventory
from .models import (
    AppConfig,
    AuthorizerConfig,
    DeployResult,
    EnsureResult,
    EnsureStatus,
    FifoQueueConfig,
    FunctionDefaults,
    FunctionSettings,
    HandlerDescriptor,
    HandlerKind,
    HandlerResult,
    HttpConfig,
    ParamRef,
    ResourceRecord,
    StaticSiteConfig,
    TableConfig,
    WebSocketConfig,
)
from .orchestrator import DeployOptions, DeployOrchestrator, DeployRequest
from .services import DeployServices
from .waiter import WaitOutcome, WaitSpec, wait_until

__all__ = [
    # Version
    "__version__",
    # Main classes
    "DeployOrchestrator",
    "DeployOptions",
    "DeployRequest",
    "DeployServices",
    "AwsClients",
    "ServiceClient",
    "RetryPolicy",
    "ProjectManifest",
    "ResourceInventory",
    "ResourceCleaner",
    "CodeArtifact",
    # Models
    "HandlerDescriptor",
    "HandlerKind",
    "FunctionSettings",
    "FunctionDefaults",
    "ParamRef",
    "HttpConfig",
    "TableConfig",
    "AppConfig",
    "StaticSiteConfig",
    "FifoQueueConfig",
    "WebSocketConfig",
    "AuthorizerConfig",
    "EnsureResult",
    "EnsureStatus",
    "HandlerResult",
    "DeployResult",
    "ResourceRecord",
    # Waiter
    "WaitSpec",
    "WaitOutcome",
    "wait_until",
    # Exceptions - Base
    "EffortlessError",
    # Exceptions - Categories
    "ConfigurationError",
    "WaiterError",
    # Exceptions - Configuration
    "ValidationError",
    "WiringError",
    # Exceptions - Remote
    "ErrorKind",
    "ServiceError",
    "CertificateNotFoundError",
    # Exceptions - Waiter
    "WaiterTimeoutError",
    "TerminalStateError",
    # Exceptions - Deploy
    "DeployError",
    "DeployBatchError",
]
