"""Per-resource-kind reconcilers."""

from .apigateway import HttpApiReconciler, WebSocketApiReconciler
from .authorizers import AuthorizerReconciler, AuthorizerSpec
from .buckets import BucketReconciler, SyncResult
from .certificates import CertificateFinder
from .cloudfront import CdnReconciler, DistributionSpec
from .event_sources import EventSourceReconciler, EventSourceSpec
from .functions import FunctionReconciler, FunctionSpec
from .layers import LayerReconciler
from .parameters import ParameterChecker
from .queues import QueueReconciler, QueueSpec
from .roles import RoleReconciler
from .tables import TableReconciler, TableSpec

__all__ = [
    "AuthorizerReconciler",
    "AuthorizerSpec",
    "BucketReconciler",
    "CdnReconciler",
    "CertificateFinder",
    "DistributionSpec",
    "EventSourceReconciler",
    "EventSourceSpec",
    "FunctionReconciler",
    "FunctionSpec",
    "HttpApiReconciler",
    "LayerReconciler",
    "ParameterChecker",
    "QueueReconciler",
    "QueueSpec",
    "RoleReconciler",
    "SyncResult",
    "TableReconciler",
    "TableSpec",
    "WebSocketApiReconciler",
]
