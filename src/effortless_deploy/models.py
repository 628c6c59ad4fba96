"""Core models for effortless-deploy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from .artifacts import CodeArtifact
from .exceptions import ValidationError
from .naming import validate_handler_name

T = TypeVar("T")

DEFAULT_RUNTIME = "python3.12"
DEFAULT_ARCHITECTURE = "arm64"
DEFAULT_ENTRY = "index.handler"
DEFAULT_MEMORY = 256
DEFAULT_TIMEOUT = 30


class HandlerKind(str, Enum):
    """Kinds of declared handlers, each with its own trigger wiring."""

    HTTP = "http"
    TABLE = "table"
    APP = "app"
    STATIC_SITE = "site"
    FIFO_QUEUE = "queue"
    WEBSOCKET = "ws"
    AUTHORIZER = "auth"


class EnsureStatus(str, Enum):
    """Outcome of an ensure call."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"

    @classmethod
    def combine(cls, *statuses: EnsureStatus) -> EnsureStatus:
        """Roll several step outcomes into one, strongest change wins."""
        if cls.CREATED in statuses:
            return cls.CREATED
        if cls.UPDATED in statuses:
            return cls.UPDATED
        return cls.UNCHANGED


@dataclass(frozen=True)
class EnsureResult(Generic[T]):
    """
    Result of converging one remote resource.

    Attributes:
        identity: Resource identity (ARN, id or a richer identity record)
        status: Whether the resource was created, updated or left unchanged
    """

    identity: T
    status: EnsureStatus

    @property
    def changed(self) -> bool:
        return self.status is not EnsureStatus.UNCHANGED


# ---------------------------------------------------------------------------
# Handler descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionStatement:
    """One IAM allow statement."""

    actions: tuple[str, ...]
    resources: tuple[str, ...] = ("*",)

    def to_policy(self) -> dict[str, Any]:
        return {
            "Effect": "Allow",
            "Action": list(self.actions),
            "Resource": list(self.resources) if len(self.resources) > 1 else self.resources[0],
        }


@dataclass(frozen=True)
class ParamRef:
    """
    Reference to an external configuration value in the parameter store.

    Attributes:
        prop: Property name, exposed to the function as ``EFF_PARAM_{prop}``
        key: Key under ``/{project}/{stage}/``
    """

    prop: str
    key: str


@dataclass(frozen=True)
class FunctionSettings:
    """
    Function configuration shared by every kind that deploys code.

    ``None`` fields fall back to the project defaults.
    """

    memory: int | None = None
    timeout: int | None = None
    permissions: tuple[str, ...] = ()
    runtime: str | None = None
    architecture: str | None = None
    entry: str | None = None

    def __post_init__(self) -> None:
        if self.memory is not None and not 128 <= self.memory <= 10240:
            raise ValidationError("memory", self.memory, "Must be between 128 and 10240 MB")
        if self.timeout is not None and not 1 <= self.timeout <= 900:
            raise ValidationError("timeout", self.timeout, "Must be between 1 and 900 seconds")


@dataclass(frozen=True)
class HttpConfig:
    """A function served on one route of the shared HTTP API."""

    method: str = "GET"
    path: str = "/"

    @property
    def route_key(self) -> str:
        return f"{self.method.upper()} {self.path}"


@dataclass(frozen=True)
class TableConfig:
    """A table, optionally with a function consuming its change stream."""

    batch_size: int = 100
    batch_window: int | None = None
    starting_position: str = "LATEST"
    stream_view: str = "NEW_AND_OLD_IMAGES"


@dataclass(frozen=True)
class AppConfig:
    """A function serving a whole path prefix of the shared HTTP API."""

    path: str = "/"

    @property
    def route_keys(self) -> tuple[str, str]:
        base = self.path.rstrip("/")
        return (f"GET {base or '/'}", f"GET {base}/{{file+}}")


@dataclass(frozen=True)
class StaticSiteConfig:
    """A directory served from object storage through the CDN."""

    directory: str
    index: str = "index.html"
    spa: bool = False
    domain: str | None = None


@dataclass(frozen=True)
class FifoQueueConfig:
    """A FIFO queue with a consumer function."""

    batch_size: int = 10
    batch_window: int | None = None
    visibility_timeout: int = 30
    retention_period: int = 345600
    content_based_deduplication: bool = True


@dataclass(frozen=True)
class WebSocketConfig:
    """A function behind its own WebSocket API."""

    route_keys: tuple[str, ...] = ("$connect", "$disconnect", "$default")


@dataclass(frozen=True)
class AuthorizerConfig:
    """A REQUEST authorizer attached to the shared HTTP API."""

    identity_source: tuple[str, ...] = ("$request.header.Authorization",)
    result_ttl: int = 0


HandlerConfig = (
    HttpConfig
    | TableConfig
    | AppConfig
    | StaticSiteConfig
    | FifoQueueConfig
    | WebSocketConfig
    | AuthorizerConfig
)

KIND_CONFIG_TYPES: dict[HandlerKind, type] = {
    HandlerKind.HTTP: HttpConfig,
    HandlerKind.TABLE: TableConfig,
    HandlerKind.APP: AppConfig,
    HandlerKind.STATIC_SITE: StaticSiteConfig,
    HandlerKind.FIFO_QUEUE: FifoQueueConfig,
    HandlerKind.WEBSOCKET: WebSocketConfig,
    HandlerKind.AUTHORIZER: AuthorizerConfig,
}

# Kinds that are provisioned without function code
CODELESS_KINDS = frozenset({HandlerKind.TABLE, HandlerKind.STATIC_SITE})


@dataclass(frozen=True)
class HandlerDescriptor:
    """
    One declared handler.

    Attributes:
        export_name: Name the handler was declared under
        kind: Handler kind
        config: Kind-specific configuration record
        function: Function settings (ignored for static sites)
        code: Deployable code artifact (optional for tables)
        deps: Export names of tables this handler reads and writes
        params: Parameter-store references
        name: Resolved handler name, defaults to ``export_name``
    """

    export_name: str
    kind: HandlerKind
    config: HandlerConfig
    function: FunctionSettings = field(default_factory=FunctionSettings)
    code: CodeArtifact | None = None
    deps: tuple[str, ...] = ()
    params: tuple[ParamRef, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.export_name)
        validate_handler_name(self.name)

        expected = KIND_CONFIG_TYPES[self.kind]
        if not isinstance(self.config, expected):
            raise ValidationError(
                "config",
                type(self.config).__name__,
                f"Handler kind '{self.kind.value}' requires {expected.__name__}",
            )
        if self.code is None and self.kind not in CODELESS_KINDS:
            raise ValidationError(
                "code", None, f"Handler kind '{self.kind.value}' requires a code artifact"
            )

    @property
    def has_function(self) -> bool:
        return self.kind is not HandlerKind.STATIC_SITE and self.code is not None


@dataclass(frozen=True)
class FunctionDefaults:
    """Project-wide function defaults."""

    runtime: str = DEFAULT_RUNTIME
    architecture: str = DEFAULT_ARCHITECTURE
    entry: str = DEFAULT_ENTRY
    memory: int = DEFAULT_MEMORY
    timeout: int = DEFAULT_TIMEOUT


# ---------------------------------------------------------------------------
# Ownership and inventory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TagContext:
    """Identity triple stamped on every managed resource."""

    project: str
    stage: str
    handler: str


@dataclass(frozen=True)
class ResourceRecord:
    """A previously created resource, read back from the tagging service."""

    arn: str
    type: str
    tags: dict[str, str]

    @property
    def handler(self) -> str | None:
        from .tags import HANDLER_TAG_KEY

        return self.tags.get(HANDLER_TAG_KEY)

    @property
    def resource_id(self) -> str:
        """Trailing identifier of the ARN (name or id)."""
        tail = self.arn.rsplit(":", 1)[-1]
        return tail.rsplit("/", 1)[-1]

    @classmethod
    def from_tag_mapping(cls, mapping: dict[str, Any]) -> ResourceRecord:
        from .tags import TYPE_TAG_KEY

        tags = {t["Key"]: t["Value"] for t in mapping.get("Tags", [])}
        return cls(arn=mapping["ResourceARN"], type=tags.get(TYPE_TAG_KEY, "unknown"), tags=tags)


# ---------------------------------------------------------------------------
# Resource identities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiIdentity:
    api_id: str
    endpoint: str


@dataclass(frozen=True)
class TableIdentity:
    name: str
    arn: str
    stream_arn: str | None = None


@dataclass(frozen=True)
class QueueIdentity:
    url: str
    arn: str


@dataclass(frozen=True)
class DistributionIdentity:
    distribution_id: str
    arn: str
    domain_name: str


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeployTaskContext:
    """
    Inputs shared read-only by every handler task of one deploy run.

    Attributes:
        project: Project name
        stage: Stage name
        region: Deploy region
        table_names: Table handler export name to deterministic table name
        layer_arn: Dependency layer version ARN, if a layer was ensured
        api: Shared HTTP API, if any handler needs one
        defaults: Project-wide function defaults
        oac_id: Shared origin access control, if any static site is declared
        url_rewrite_arn: Shared CDN url-rewrite function, if any static site is declared
    """

    project: str
    stage: str
    region: str
    table_names: MappingProxyType[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )
    layer_arn: str | None = None
    api: ApiIdentity | None = None
    defaults: FunctionDefaults = field(default_factory=FunctionDefaults)
    oac_id: str | None = None
    url_rewrite_arn: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.table_names, MappingProxyType):
            object.__setattr__(self, "table_names", MappingProxyType(dict(self.table_names)))

    def tag_context(self, handler: str) -> TagContext:
        return TagContext(project=self.project, stage=self.stage, handler=handler)


@dataclass(frozen=True)
class HandlerResult:
    """Per-handler outcome reported to the caller."""

    name: str
    kind: HandlerKind
    status: EnsureStatus
    identity: str
    url: str | None = None
    duration: float = 0.0


@dataclass
class DeployResult:
    """Outcome of one deploy run."""

    handlers: list[HandlerResult] = field(default_factory=list)
    api_id: str | None = None
    api_url: str | None = None
    swept_routes: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)

    def by_name(self) -> dict[str, HandlerResult]:
        return {r.name: r for r in self.handlers}
