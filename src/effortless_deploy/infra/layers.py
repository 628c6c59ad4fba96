"""Shared dependency layer reconciliation."""

import logging
from collections.abc import Sequence
from typing import Any

from ..artifacts import CodeArtifact
from ..clients import Capability, paginate
from ..exceptions import ServiceError
from ..models import EnsureResult, EnsureStatus

logger = logging.getLogger(__name__)

HASH_MARKER = "hash:"


def layer_description(artifact: CodeArtifact) -> str:
    return f"effortless dependency layer {HASH_MARKER}{artifact.hex_digest}"


class LayerReconciler:
    """
    Publishes a layer version only when its content is new.

    Layer versions are immutable, so "update" means publishing a new
    version; the content hash is recorded in the version description and
    looked up on the next run.
    """

    def __init__(self, lambda_client: Capability) -> None:
        self._lambda = lambda_client

    async def list_versions(self, name: str) -> list[dict[str, Any]]:
        return [
            v
            async for v in paginate(
                self._lambda,
                "list_layer_versions",
                "LayerVersions",
                token_key="NextMarker",
                token_param="Marker",
                LayerName=name,
            )
        ]

    async def ensure(
        self,
        name: str,
        artifact: CodeArtifact,
        runtimes: Sequence[str],
        architectures: Sequence[str],
    ) -> EnsureResult[str]:
        """
        Reuse the layer version carrying this artifact's hash, or publish one.

        Args:
            name: Layer name
            artifact: Zipped layer content
            runtimes: Compatible runtimes
            architectures: Compatible architectures

        Returns:
            EnsureResult with the layer version ARN
        """
        marker = f"{HASH_MARKER}{artifact.hex_digest}"
        for version in await self.list_versions(name):
            if marker in (version.get("Description") or ""):
                logger.debug("Layer %s content unchanged", name)
                return EnsureResult(version["LayerVersionArn"], EnsureStatus.UNCHANGED)

        logger.info("Publishing layer %s (%d bytes)", name, artifact.size)
        published = await self._lambda.call(
            "publish_layer_version",
            LayerName=name,
            Description=layer_description(artifact),
            Content={"ZipFile": artifact.content},
            CompatibleRuntimes=list(runtimes),
            CompatibleArchitectures=list(architectures),
        )
        return EnsureResult(published["LayerVersionArn"], EnsureStatus.CREATED)

    async def delete_all_versions(self, name: str) -> int:
        """Delete every version of a layer; returns the number deleted."""
        deleted = 0
        for version in await self.list_versions(name):
            try:
                await self._lambda.call(
                    "delete_layer_version",
                    LayerName=name,
                    VersionNumber=version["Version"],
                )
            except ServiceError as e:
                if e.is_not_found:
                    continue
                raise
            deleted += 1
        if deleted:
            logger.info("Deleted %d version(s) of layer %s", deleted, name)
        return deleted
