"""Object storage for static sites: bucket, access policy and file sync."""

import hashlib
import json
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..clients import Capability, paginate
from ..exceptions import ServiceError
from ..models import EnsureResult, EnsureStatus

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def oac_policy(bucket: str, distribution_arn: str) -> dict[str, Any]:
    """Bucket policy letting exactly one distribution read objects."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowCloudFrontServicePrincipal",
                "Effect": "Allow",
                "Principal": {"Service": "cloudfront.amazonaws.com"},
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket}/*",
                "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
            }
        ],
    }


def content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or DEFAULT_CONTENT_TYPE


def local_files(directory: Path) -> dict[str, Path]:
    """Map object keys (POSIX relative paths) to local files."""
    return {
        p.relative_to(directory).as_posix(): p
        for p in sorted(directory.rglob("*"))
        if p.is_file()
    }


@dataclass
class SyncResult:
    """Keys touched by one directory sync."""

    uploaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.uploaded or self.deleted)


class BucketReconciler:
    """Converges private site buckets."""

    def __init__(self, s3: Capability, region: str) -> None:
        self._s3 = s3
        self.region = region

    async def exists(self, name: str) -> bool:
        try:
            await self._s3.call("head_bucket", Bucket=name)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def _tags(self, name: str) -> dict[str, str]:
        try:
            response = await self._s3.call("get_bucket_tagging", Bucket=name)
        except ServiceError as e:
            if e.is_not_found:
                return {}
            raise
        return {t["Key"]: t["Value"] for t in response.get("TagSet", [])}

    async def ensure(self, name: str, tags: dict[str, str]) -> EnsureResult[str]:
        """
        Create a private bucket, or make sure an existing one carries the tags.

        Bucket tagging replaces the whole tag set, so existing tags are merged
        with the desired ones before writing.

        Returns:
            EnsureResult with the bucket name
        """
        if await self.exists(name):
            current = await self._tags(name)
            if any(current.get(k) != v for k, v in tags.items()):
                merged = {**current, **tags}
                await self._s3.call(
                    "put_bucket_tagging",
                    Bucket=name,
                    Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in merged.items()]},
                )
            return EnsureResult(name, EnsureStatus.UNCHANGED)

        logger.info("Creating bucket %s", name)
        params: dict[str, Any] = {"Bucket": name}
        if self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        await self._s3.call("create_bucket", **params)
        await self._s3.call(
            "put_public_access_block",
            Bucket=name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
        await self._s3.call(
            "put_bucket_tagging",
            Bucket=name,
            Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in tags.items()]},
        )
        return EnsureResult(name, EnsureStatus.CREATED)

    async def put_oac_policy(self, bucket: str, distribution_arn: str) -> EnsureStatus:
        """Grant the distribution read access, unless the policy already does."""
        desired = oac_policy(bucket, distribution_arn)
        try:
            response = await self._s3.call("get_bucket_policy", Bucket=bucket)
            current = json.loads(response["Policy"])
        except ServiceError as e:
            if not e.is_not_found:
                raise
            current = None

        if current == desired:
            return EnsureStatus.UNCHANGED
        await self._s3.call("put_bucket_policy", Bucket=bucket, Policy=json.dumps(desired))
        return EnsureStatus.UPDATED if current else EnsureStatus.CREATED

    async def list_objects(self, bucket: str) -> dict[str, str]:
        """Map object keys to their unquoted ETags."""
        objects: dict[str, str] = {}
        async for obj in paginate(
            self._s3,
            "list_objects_v2",
            "Contents",
            token_key="NextContinuationToken",
            token_param="ContinuationToken",
            Bucket=bucket,
        ):
            objects[obj["Key"]] = obj.get("ETag", "").strip('"')
        return objects

    async def delete_keys(self, bucket: str, keys: list[str]) -> None:
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            await self._s3.call(
                "delete_objects",
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )

    async def sync_files(self, bucket: str, directory: Path) -> SyncResult:
        """
        Make the bucket contents mirror a local directory.

        Files are compared by MD5 against the object ETag; only new or
        changed files are uploaded and keys without a local file are removed.

        Args:
            bucket: Bucket name
            directory: Local directory to publish

        Returns:
            SyncResult listing uploaded and deleted keys
        """
        if not directory.is_dir():
            raise FileNotFoundError(f"Site directory not found: {directory}")

        remote = await self.list_objects(bucket)
        result = SyncResult()

        for key, path in local_files(directory).items():
            body = path.read_bytes()
            if remote.pop(key, None) == hashlib.md5(body).hexdigest():
                result.unchanged += 1
                continue
            await self._s3.call(
                "put_object",
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentType=content_type(path),
            )
            result.uploaded.append(key)

        if remote:
            result.deleted = sorted(remote)
            await self.delete_keys(bucket, result.deleted)

        logger.info(
            "Synced %s: %d uploaded, %d deleted, %d unchanged",
            bucket,
            len(result.uploaded),
            len(result.deleted),
            result.unchanged,
        )
        return result

    async def empty(self, bucket: str) -> int:
        keys = sorted(await self.list_objects(bucket))
        await self.delete_keys(bucket, keys)
        return len(keys)

    async def delete(self, bucket: str) -> bool:
        """
        Empty and delete a bucket.

        Returns:
            True if deleted, False if it did not exist
        """
        try:
            await self.empty(bucket)
            await self._s3.call("delete_bucket", Bucket=bucket)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted bucket %s", bucket)
        return True
