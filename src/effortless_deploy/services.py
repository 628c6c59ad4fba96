"""Wiring of capabilities into reconcilers."""

from dataclasses import dataclass

from .clients import GLOBAL_REGION, AwsClients, Capability
from .infra import (
    AuthorizerReconciler,
    BucketReconciler,
    CdnReconciler,
    CertificateFinder,
    EventSourceReconciler,
    FunctionReconciler,
    HttpApiReconciler,
    LayerReconciler,
    ParameterChecker,
    QueueReconciler,
    RoleReconciler,
    TableReconciler,
    WebSocketApiReconciler,
)
from .inventory import ResourceInventory
from .waiter import DISTRIBUTION_DEPLOYED, FUNCTION_ACTIVE, ROLE_PROPAGATION, TABLE_ACTIVE, WaitSpec


@dataclass(frozen=True)
class DeployServices:
    """Every reconciler one deploy run needs, built over explicit capabilities."""

    region: str
    functions: FunctionReconciler
    roles: RoleReconciler
    layers: LayerReconciler
    tables: TableReconciler
    event_sources: EventSourceReconciler
    http: HttpApiReconciler
    websocket: WebSocketApiReconciler
    authorizers: AuthorizerReconciler
    queues: QueueReconciler
    buckets: BucketReconciler
    cdn: CdnReconciler
    certificates: CertificateFinder
    parameters: ParameterChecker
    inventory: ResourceInventory

    @classmethod
    def build(
        cls,
        region: str,
        *,
        lambda_client: Capability,
        iam: Capability,
        dynamodb: Capability,
        apigateway: Capability,
        sqs: Capability,
        s3: Capability,
        cloudfront: Capability,
        acm: Capability,
        ssm: Capability,
        tagging: Capability,
        global_tagging: Capability,
        table_wait: WaitSpec = TABLE_ACTIVE,
        function_wait: WaitSpec = FUNCTION_ACTIVE,
        role_wait: WaitSpec = ROLE_PROPAGATION,
        distribution_wait: WaitSpec = DISTRIBUTION_DEPLOYED,
    ) -> "DeployServices":
        """
        Build the reconcilers from one capability per service family.

        Args:
            region: Deploy region
            global_tagging: Tagging-query capability in ``us-east-1``, where
                CDN resources are registered
            table_wait: Polling bound for table activation
            function_wait: Polling bound for function activation
            role_wait: Polling bound for new roles to become assumable
            distribution_wait: Polling bound for distribution deployment
        """
        roles = RoleReconciler(iam)
        return cls(
            region=region,
            functions=FunctionReconciler(
                lambda_client, active_wait=function_wait, role_wait=role_wait
            ),
            roles=roles,
            layers=LayerReconciler(lambda_client),
            tables=TableReconciler(dynamodb, active_wait=table_wait),
            event_sources=EventSourceReconciler(lambda_client),
            http=HttpApiReconciler(apigateway, lambda_client, region),
            websocket=WebSocketApiReconciler(apigateway, lambda_client, region),
            authorizers=AuthorizerReconciler(apigateway, lambda_client, region),
            queues=QueueReconciler(sqs),
            buckets=BucketReconciler(s3, region),
            cdn=CdnReconciler(cloudfront, global_tagging, deployed_wait=distribution_wait),
            certificates=CertificateFinder(acm, GLOBAL_REGION),
            parameters=ParameterChecker(ssm),
            inventory=ResourceInventory([tagging, global_tagging], roles),
        )

    @classmethod
    async def from_clients(cls, clients: AwsClients) -> "DeployServices":
        """Open the service clients of a run; global services live in ``us-east-1``."""
        return cls.build(
            clients.region,
            lambda_client=await clients.get("lambda"),
            iam=await clients.get("iam", GLOBAL_REGION),
            dynamodb=await clients.get("dynamodb"),
            apigateway=await clients.get("apigatewayv2"),
            sqs=await clients.get("sqs"),
            s3=await clients.get("s3"),
            cloudfront=await clients.get("cloudfront", GLOBAL_REGION),
            acm=await clients.get("acm", GLOBAL_REGION),
            ssm=await clients.get("ssm"),
            tagging=await clients.get("resourcegroupstaggingapi"),
            global_tagging=await clients.get("resourcegroupstaggingapi", GLOBAL_REGION),
        )
