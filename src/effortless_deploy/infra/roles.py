"""IAM execution role reconciliation."""

import json
import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import unquote

from ..clients import Capability, paginate
from ..exceptions import ServiceError
from ..models import EnsureResult, EnsureStatus, PermissionStatement, ResourceRecord
from ..tags import PROJECT_TAG_KEY, STAGE_TAG_KEY, from_tag_list, missing_tags, to_tag_list

logger = logging.getLogger(__name__)

LAMBDA_TRUST_POLICY: dict[str, Any] = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

BASIC_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
INLINE_POLICY_NAME = "effortless-permissions"


def build_policy_document(statements: Sequence[PermissionStatement]) -> dict[str, Any] | None:
    """Build the inline policy document, or None when there is nothing to grant."""
    if not statements:
        return None
    return {
        "Version": "2012-10-17",
        "Statement": [s.to_policy() for s in statements],
    }


def _decode_document(document: Any) -> dict[str, Any]:
    # IAM returns policy documents URL-encoded unless the SDK decoded them
    if isinstance(document, str):
        return json.loads(unquote(document))
    return dict(document)


def _same_document(a: dict[str, Any] | None, b: dict[str, Any] | None) -> bool:
    return json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)


class RoleReconciler:
    """Converges one Lambda execution role per handler."""

    def __init__(self, iam: Capability) -> None:
        self._iam = iam

    async def get(self, name: str) -> dict[str, Any] | None:
        try:
            response = await self._iam.call("get_role", RoleName=name)
        except ServiceError as e:
            if e.is_not_found:
                return None
            raise
        return response["Role"]

    async def ensure(
        self,
        name: str,
        statements: Sequence[PermissionStatement],
        tags: dict[str, str],
    ) -> EnsureResult[str]:
        """
        Create the role or converge its inline policy and managed attachment.

        Args:
            name: Role name
            statements: Merged permission statements for the inline policy
            tags: Ownership tags

        Returns:
            EnsureResult with the role ARN
        """
        document = build_policy_document(statements)
        role = await self.get(name)

        if role is None:
            logger.info("Creating role %s", name)
            created = await self._iam.call(
                "create_role",
                RoleName=name,
                AssumeRolePolicyDocument=json.dumps(LAMBDA_TRUST_POLICY),
                Description="Execution role managed by effortless-deploy",
                Tags=to_tag_list(tags),
            )
            await self._iam.call(
                "attach_role_policy", RoleName=name, PolicyArn=BASIC_EXECUTION_POLICY_ARN
            )
            if document is not None:
                await self._put_policy(name, document)
            return EnsureResult(created["Role"]["Arn"], EnsureStatus.CREATED)

        status = EnsureStatus.UNCHANGED

        attached = [
            p["PolicyArn"]
            async for p in paginate(
                self._iam,
                "list_attached_role_policies",
                "AttachedPolicies",
                token_key="Marker",
                RoleName=name,
            )
        ]
        if BASIC_EXECUTION_POLICY_ARN not in attached:
            await self._iam.call(
                "attach_role_policy", RoleName=name, PolicyArn=BASIC_EXECUTION_POLICY_ARN
            )
            status = EnsureStatus.UPDATED

        current = await self._get_policy(name)
        if document is None and current is not None:
            logger.info("Removing inline policy of role %s", name)
            await self._iam.call("delete_role_policy", RoleName=name, PolicyName=INLINE_POLICY_NAME)
            status = EnsureStatus.UPDATED
        elif document is not None and not _same_document(current, document):
            logger.info("Updating inline policy of role %s", name)
            await self._put_policy(name, document)
            status = EnsureStatus.UPDATED

        new_tags = missing_tags(from_tag_list(role.get("Tags")), tags)
        if new_tags:
            await self._iam.call("tag_role", RoleName=name, Tags=to_tag_list(new_tags))

        return EnsureResult(role["Arn"], status)

    async def _get_policy(self, name: str) -> dict[str, Any] | None:
        try:
            response = await self._iam.call(
                "get_role_policy", RoleName=name, PolicyName=INLINE_POLICY_NAME
            )
        except ServiceError as e:
            if e.is_not_found:
                return None
            raise
        return _decode_document(response["PolicyDocument"])

    async def _put_policy(self, name: str, document: dict[str, Any]) -> None:
        await self._iam.call(
            "put_role_policy",
            RoleName=name,
            PolicyName=INLINE_POLICY_NAME,
            PolicyDocument=json.dumps(document),
        )

    async def list_managed(self, project: str, stage: str) -> list[ResourceRecord]:
        """
        List roles owned by a project stage.

        IAM is not covered by the tagging service, so roles are matched by
        name prefix and confirmed by their ownership tags.
        """
        prefix = f"{project}-{stage}-"
        records: list[ResourceRecord] = []
        async for role in paginate(self._iam, "list_roles", "Roles", token_key="Marker"):
            if not role["RoleName"].startswith(prefix):
                continue
            response = await self._iam.call("list_role_tags", RoleName=role["RoleName"])
            tags = from_tag_list(response.get("Tags"))
            if tags.get(PROJECT_TAG_KEY) == project and tags.get(STAGE_TAG_KEY) == stage:
                records.append(ResourceRecord(arn=role["Arn"], type="iam-role", tags=tags))
        return records

    async def delete(self, name: str) -> bool:
        """
        Detach managed policies, drop inline policies, then delete the role.

        Returns:
            True if deleted, False if it did not exist
        """
        try:
            async for policy in paginate(
                self._iam,
                "list_attached_role_policies",
                "AttachedPolicies",
                token_key="Marker",
                RoleName=name,
            ):
                await self._iam.call(
                    "detach_role_policy", RoleName=name, PolicyArn=policy["PolicyArn"]
                )
            async for policy_name in paginate(
                self._iam, "list_role_policies", "PolicyNames", token_key="Marker", RoleName=name
            ):
                await self._iam.call("delete_role_policy", RoleName=name, PolicyName=policy_name)
            await self._iam.call("delete_role", RoleName=name)
        except ServiceError as e:
            if e.is_not_found:
                return False
            raise
        logger.info("Deleted role %s", name)
        return True
