"""CDN reconciliation: origin access control, edge rewrite function, distributions.

Distributions have no free-form name usable for lookup, so they are located
through their ownership tags. Every mutation carries the ETag returned by the
read (or mutation) immediately before it; ETags are never reused across runs.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..clients import Capability
from ..exceptions import ServiceError
from ..models import DistributionIdentity, EnsureResult, EnsureStatus, TagContext
from ..tags import HANDLER_TAG_KEY, PROJECT_TAG_KEY, STAGE_TAG_KEY, missing_tags, to_tag_list
from ..waiter import DISTRIBUTION_DEPLOYED, WaitOutcome, WaitSpec, wait_until

logger = logging.getLogger(__name__)

# AWS managed "CachingOptimized" cache policy
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"

URL_REWRITE_RUNTIME = "cloudfront-js-2.0"

# Rewrites /path/ to /path/index.html and /path to /path/index.html
URL_REWRITE_CODE = """\
function handler(event) {
  var request = event.request;
  var uri = request.uri;
  if (uri.endsWith('/')) {
    request.uri += 'index.html';
  } else if (!uri.includes('.')) {
    request.uri += '/index.html';
  }
  return request;
}"""

_GET_HEAD = {"Quantity": 2, "Items": ["GET", "HEAD"]}


def distribution_comment(ctx: TagContext) -> str:
    return f"effortless: {ctx.project}/{ctx.stage}/{ctx.handler}"


@dataclass(frozen=True)
class DistributionSpec:
    """
    Desired distribution in front of one site bucket.

    Attributes:
        ctx: Owning project, stage and handler
        bucket: Origin bucket name
        bucket_region: Origin bucket region
        oac_id: Origin access control the distribution signs requests with
        index: Default document
        spa: Serve the index document for 403/404 responses
        url_rewrite_arn: Viewer-request function appending ``index.html``
        aliases: Custom domain names
        certificate_arn: Certificate covering ``aliases``
        tags: Ownership tags
    """

    ctx: TagContext
    bucket: str
    bucket_region: str
    oac_id: str
    index: str = "index.html"
    spa: bool = False
    url_rewrite_arn: str | None = None
    aliases: tuple[str, ...] = ()
    certificate_arn: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def origin_id(self) -> str:
        return f"S3-{self.bucket}"

    @property
    def origin_domain(self) -> str:
        return f"{self.bucket}.s3.{self.bucket_region}.amazonaws.com"

    def custom_error_responses(self) -> dict[str, Any]:
        if not self.spa:
            return {"Quantity": 0, "Items": []}
        return {
            "Quantity": 2,
            "Items": [
                {
                    "ErrorCode": code,
                    "ResponseCode": "200",
                    "ResponsePagePath": f"/{self.index}",
                    "ErrorCachingMinTTL": 0,
                }
                for code in (403, 404)
            ],
        }

    def function_associations(self) -> dict[str, Any]:
        if not self.url_rewrite_arn:
            return {"Quantity": 0, "Items": []}
        return {
            "Quantity": 1,
            "Items": [{"FunctionARN": self.url_rewrite_arn, "EventType": "viewer-request"}],
        }

    def viewer_certificate(self) -> dict[str, Any]:
        if not self.certificate_arn:
            return {"CloudFrontDefaultCertificate": True}
        return {
            "ACMCertificateArn": self.certificate_arn,
            "SSLSupportMethod": "sni-only",
            "MinimumProtocolVersion": "TLSv1.2_2021",
        }

    def managed_config(self) -> dict[str, Any]:
        """Distribution config fields this reconciler owns."""
        return {
            "Comment": distribution_comment(self.ctx),
            "Origins": {
                "Quantity": 1,
                "Items": [
                    {
                        "Id": self.origin_id,
                        "DomainName": self.origin_domain,
                        "OriginAccessControlId": self.oac_id,
                        "S3OriginConfig": {"OriginAccessIdentity": ""},
                    }
                ],
            },
            "DefaultCacheBehavior": {
                "TargetOriginId": self.origin_id,
                "ViewerProtocolPolicy": "redirect-to-https",
                "AllowedMethods": {**_GET_HEAD, "CachedMethods": dict(_GET_HEAD)},
                "Compress": True,
                "CachePolicyId": CACHING_OPTIMIZED_POLICY_ID,
                "FunctionAssociations": self.function_associations(),
            },
            "DefaultRootObject": self.index,
            "CustomErrorResponses": self.custom_error_responses(),
            "Aliases": {"Quantity": len(self.aliases), "Items": list(self.aliases)},
            "ViewerCertificate": self.viewer_certificate(),
            "Enabled": True,
        }


def distribution_diff(current: dict[str, Any], spec: DistributionSpec) -> list[str]:
    """
    Name the managed fields of a live distribution config that differ.

    Args:
        current: ``DistributionConfig`` as returned by the CDN service
        spec: Desired distribution

    Returns:
        Sorted field names; empty when no update is needed
    """
    origins = (current.get("Origins") or {}).get("Items") or [{}]
    behavior = current.get("DefaultCacheBehavior") or {}
    diff: list[str] = []

    if origins[0].get("DomainName") != spec.origin_domain:
        diff.append("OriginDomain")
    if origins[0].get("OriginAccessControlId") != spec.oac_id:
        diff.append("OriginAccessControlId")
    if current.get("DefaultRootObject") != spec.index:
        diff.append("DefaultRootObject")
    if behavior.get("CachePolicyId") != CACHING_OPTIMIZED_POLICY_ID:
        diff.append("CachePolicyId")
    if (current.get("CustomErrorResponses") or {}).get("Quantity", 0) != (
        spec.custom_error_responses()["Quantity"]
    ):
        diff.append("CustomErrorResponses")
    if (behavior.get("FunctionAssociations") or {}).get("Quantity", 0) != (
        spec.function_associations()["Quantity"]
    ):
        diff.append("FunctionAssociations")
    if sorted((current.get("Aliases") or {}).get("Items") or []) != sorted(spec.aliases):
        diff.append("Aliases")
    if (current.get("ViewerCertificate") or {}).get("ACMCertificateArn") != spec.certificate_arn:
        diff.append("ViewerCertificate")
    return sorted(diff)


def _classify_deployed(distribution: dict[str, Any]) -> WaitOutcome:
    return WaitOutcome.SATISFIED if distribution.get("Status") == "Deployed" else WaitOutcome.PENDING


def _identity(distribution: dict[str, Any]) -> DistributionIdentity:
    return DistributionIdentity(
        distribution_id=distribution["Id"],
        arn=distribution["ARN"],
        domain_name=distribution["DomainName"],
    )


class CdnReconciler:
    """
    Converges the CDN side of static sites.

    Args:
        cloudfront: CDN capability (global, ``us-east-1``)
        tagging: Tagging-query capability in ``us-east-1``
        deployed_wait: Polling bound for distributions to finish deploying
    """

    def __init__(
        self,
        cloudfront: Capability,
        tagging: Capability,
        *,
        deployed_wait: WaitSpec = DISTRIBUTION_DEPLOYED,
    ) -> None:
        self._cloudfront = cloudfront
        self._tagging = tagging
        self._deployed_wait = deployed_wait

    # -------------------------------------------------------------------------
    # Origin access control
    # -------------------------------------------------------------------------

    async def find_oac(self, name: str) -> str | None:
        marker: str | None = None
        while True:
            params = {"Marker": marker} if marker else {}
            response = await self._cloudfront.call("list_origin_access_controls", **params)
            listing = response.get("OriginAccessControlList") or {}
            for oac in listing.get("Items") or []:
                if oac.get("Name") == name:
                    return oac["Id"]
            marker = listing.get("NextMarker")
            if not listing.get("IsTruncated") or not marker:
                return None

    async def ensure_oac(self, name: str) -> EnsureResult[str]:
        """Locate the origin access control by name or create it."""
        oac_id = await self.find_oac(name)
        if oac_id is not None:
            return EnsureResult(oac_id, EnsureStatus.UNCHANGED)

        logger.info("Creating origin access control %s", name)
        created = await self._cloudfront.call(
            "create_origin_access_control",
            OriginAccessControlConfig={
                "Name": name,
                "Description": f"Origin access control for {name}",
                "SigningProtocol": "sigv4",
                "SigningBehavior": "always",
                "OriginAccessControlOriginType": "s3",
            },
        )
        return EnsureResult(created["OriginAccessControl"]["Id"], EnsureStatus.CREATED)

    async def delete_oac(self, name: str) -> bool:
        oac_id = await self.find_oac(name)
        if oac_id is None:
            return False
        try:
            current = await self._cloudfront.call("get_origin_access_control", Id=oac_id)
            await self._cloudfront.call(
                "delete_origin_access_control", Id=oac_id, IfMatch=current["ETag"]
            )
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted origin access control %s", name)
        return True

    # -------------------------------------------------------------------------
    # URL rewrite function
    # -------------------------------------------------------------------------

    async def find_url_rewrite_function(self, name: str) -> str | None:
        marker: str | None = None
        while True:
            params = {"Marker": marker} if marker else {}
            response = await self._cloudfront.call("list_functions", **params)
            listing = response.get("FunctionList") or {}
            for function in listing.get("Items") or []:
                if function.get("Name") == name:
                    return function["FunctionMetadata"]["FunctionARN"]
            marker = listing.get("NextMarker")
            if not marker:
                return None

    async def ensure_url_rewrite_function(self, name: str) -> EnsureResult[str]:
        """Locate the viewer-request rewrite function or create and publish it."""
        arn = await self.find_url_rewrite_function(name)
        if arn is not None:
            return EnsureResult(arn, EnsureStatus.UNCHANGED)

        logger.info("Creating CDN function %s", name)
        created = await self._cloudfront.call(
            "create_function",
            Name=name,
            FunctionConfig={
                "Comment": "Append index.html to directory paths",
                "Runtime": URL_REWRITE_RUNTIME,
            },
            FunctionCode=URL_REWRITE_CODE.encode(),
        )
        await self._cloudfront.call("publish_function", Name=name, IfMatch=created["ETag"])
        return EnsureResult(
            created["FunctionSummary"]["FunctionMetadata"]["FunctionARN"], EnsureStatus.CREATED
        )

    async def delete_url_rewrite_function(self, name: str) -> bool:
        try:
            current = await self._cloudfront.call("describe_function", Name=name)
            await self._cloudfront.call("delete_function", Name=name, IfMatch=current["ETag"])
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted CDN function %s", name)
        return True

    # -------------------------------------------------------------------------
    # Distributions
    # -------------------------------------------------------------------------

    async def find_distribution(self, ctx: TagContext) -> str | None:
        """Return the id of the distribution tagged for this handler, if any."""
        response = await self._tagging.call(
            "get_resources",
            TagFilters=[
                {"Key": PROJECT_TAG_KEY, "Values": [ctx.project]},
                {"Key": STAGE_TAG_KEY, "Values": [ctx.stage]},
                {"Key": HANDLER_TAG_KEY, "Values": [ctx.handler]},
            ],
            ResourceTypeFilters=["cloudfront:distribution"],
        )
        for mapping in response.get("ResourceTagMappingList") or []:
            return mapping["ResourceARN"].rsplit("/", 1)[-1]
        return None

    async def _get(self, distribution_id: str) -> tuple[dict[str, Any], str] | None:
        try:
            response = await self._cloudfront.call("get_distribution", Id=distribution_id)
        except ServiceError as e:
            if e.is_not_found:
                return None
            raise
        return response["Distribution"], response["ETag"]

    async def _sync_tags(self, arn: str, tags: dict[str, str]) -> None:
        response = await self._cloudfront.call("list_tags_for_resource", Resource=arn)
        current = {t["Key"]: t["Value"] for t in (response.get("Tags") or {}).get("Items") or []}
        new_tags = missing_tags(current, tags)
        if new_tags:
            await self._cloudfront.call(
                "tag_resource", Resource=arn, Tags={"Items": to_tag_list(new_tags)}
            )

    async def ensure_distribution(
        self, spec: DistributionSpec
    ) -> EnsureResult[DistributionIdentity]:
        """
        Create the distribution or update it when a managed field differs.

        The update carries the ETag from the read just before it. Unmanaged
        fields of the live config are preserved.

        Returns:
            EnsureResult with the distribution id, ARN and domain name
        """
        distribution_id = await self.find_distribution(spec.ctx)
        found = await self._get(distribution_id) if distribution_id else None

        if found is not None:
            distribution, etag = found
            current = distribution["DistributionConfig"]
            diff = distribution_diff(current, spec)
            status = EnsureStatus.UNCHANGED
            if diff:
                logger.info("Updating distribution %s: %s", distribution["Id"], diff)
                managed = spec.managed_config()
                managed["DefaultCacheBehavior"] = {
                    **current.get("DefaultCacheBehavior", {}),
                    **managed["DefaultCacheBehavior"],
                }
                # A cache policy cannot be combined with legacy forwarded values
                managed["DefaultCacheBehavior"].pop("ForwardedValues", None)
                await self._cloudfront.call(
                    "update_distribution",
                    Id=distribution["Id"],
                    IfMatch=etag,
                    DistributionConfig={**current, **managed},
                )
                status = EnsureStatus.UPDATED
            else:
                logger.debug("Distribution %s is up to date", distribution["Id"])
            await self._sync_tags(distribution["ARN"], spec.tags)
            return EnsureResult(_identity(distribution), status)

        logger.info("Creating distribution for %s (first deploy may take minutes)", spec.bucket)
        ctx = spec.ctx
        created = await self._cloudfront.call(
            "create_distribution_with_tags",
            DistributionConfigWithTags={
                "DistributionConfig": {
                    "CallerReference": (
                        f"{ctx.project}-{ctx.stage}-{ctx.handler}-{int(time.time() * 1000)}"
                    ),
                    **spec.managed_config(),
                    "PriceClass": "PriceClass_All",
                    "HttpVersion": "http2and3",
                },
                "Tags": {"Items": to_tag_list(spec.tags)},
            },
        )
        return EnsureResult(_identity(created["Distribution"]), EnsureStatus.CREATED)

    async def invalidate(self, distribution_id: str, paths: tuple[str, ...] = ("/*",)) -> str:
        response = await self._cloudfront.call(
            "create_invalidation",
            DistributionId=distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": len(paths), "Items": list(paths)},
                "CallerReference": str(int(time.time() * 1000)),
            },
        )
        logger.info("Invalidated %s on distribution %s", ",".join(paths), distribution_id)
        return response["Invalidation"]["Id"]

    async def wait_deployed(self, distribution_id: str) -> dict[str, Any]:
        async def probe() -> dict[str, Any]:
            response = await self._cloudfront.call("get_distribution", Id=distribution_id)
            return response["Distribution"]

        return await wait_until(
            probe,
            _classify_deployed,
            self._deployed_wait,
            description=f"distribution {distribution_id}",
            status_of=lambda d: d.get("Status"),
        )

    async def disable_and_delete(self, distribution_id: str) -> bool:
        """
        Delete a distribution, disabling it first if needed.

        Disabling returns a new ETag which is the one the delete must carry.

        Returns:
            True if deleted, False if it did not exist
        """
        found = await self._get(distribution_id)
        if found is None:
            return False
        distribution, etag = found
        config = distribution["DistributionConfig"]

        if config.get("Enabled"):
            logger.info("Disabling distribution %s", distribution_id)
            disabled = await self._cloudfront.call(
                "update_distribution",
                Id=distribution_id,
                IfMatch=etag,
                DistributionConfig={**config, "Enabled": False},
            )
            etag = disabled["ETag"]

        await self.wait_deployed(distribution_id)

        try:
            await self._cloudfront.call("delete_distribution", Id=distribution_id, IfMatch=etag)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted distribution %s", distribution_id)
        return True
