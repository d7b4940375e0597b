#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
import os
import stat
import warnings
from datetime import datetime

from tierarchive import __version__
from tierarchive.common import ensure_group_dir, timestamp_token
from tierarchive.errors import (
    PolicyError,
    PreconditionError,
    PublicExposureWarning,
    UserInputError,
)
from tierarchive.identity import DirectoryService, IdentityMapper
from tierarchive.minio.client import MinioClient
from tierarchive.naming import canonicalize_path, normalize_bucket_name
from tierarchive.principals import PrincipalSet, Visibility, resolve_principals
from tierarchive.typehints import PolicyStatementT, PolicyT

__all__ = [
    "PolicyDocument",
    "PolicyRequest",
    "PolicyOutcome",
    "synthesize_policy",
    "apply_policy_request",
    "READ_ACTIONS",
    "PUBLIC_READ_ACTIONS",
]

logger = logging.getLogger("policy")

POLICY_VERSION = "2012-10-17"

READ_ACTIONS = (
    "s3:ListBucket",
    "s3:ListBucketVersions",
    "s3:GetBucketAcl",
    "s3:GetBucketCORS",
    "s3:GetBucketLocation",
    "s3:GetBucketLogging",
    "s3:GetBucketNotification",
    "s3:GetBucketPolicy",
    "s3:GetBucketTagging",
    "s3:GetBucketVersioning",
    "s3:GetBucketWebsite",
    "s3:GetObjectAcl",
    "s3:GetObject",
    "s3:GetObjectVersionAcl",
    "s3:GetObjectVersion",
)
READ_WRITE_ACTIONS = ("s3:*",)
# objects only, anonymous users must not be able to list the bucket
PUBLIC_READ_ACTIONS = ("s3:GetObject", "s3:GetObjectVersion")

# group-writable, not readable by others
ARTIFACT_MODE = stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP


def bucket_resources(bucket: str) -> list[str]:
    return [f"arn:aws:s3:::{bucket}", f"arn:aws:s3:::{bucket}/*"]


class PolicyDocument:
    """
    A bucket policy with a single Allow statement.

    The document for Visibility.NONE has no statement at all and
    renders to an empty string. Applying it removes the bucket policy.
    """

    def __init__(
        self,
        bucket: str,
        visibility: Visibility,
        statement: PolicyStatementT | None,
    ):
        self.bucket = bucket
        self.visibility = visibility
        self.statement = statement

    @property
    def is_empty(self) -> bool:
        return self.statement is None

    def to_dict(self) -> PolicyT | None:
        if self.statement is None:
            return None
        return {"Version": POLICY_VERSION, "Statement": [self.statement]}

    def render(self) -> str:
        """
        Serialize the document.

        Key order and array order are fixed, so the same input always
        produces byte-identical output and policy files can be diffed.
        """
        data = self.to_dict()
        if data is None:
            return ""
        return json.dumps(data, indent=4) + "\n"

    def __eq__(self, other):
        if not isinstance(other, PolicyDocument):
            return NotImplemented
        return self.render() == other.render()

    def __repr__(self):
        return f"PolicyDocument({self.bucket!r}, {self.visibility})"


def synthesize_policy(
    visibility: Visibility,
    bucket: str,
    principals: PrincipalSet | list[str] | None = None,
) -> PolicyDocument:
    """
    Turn a visibility class into a policy document for `bucket`.

    Pure function. `principals` is only used for GROUP_* and LIST_*
    classes and must contain at least one ARN there.
    """
    if visibility is Visibility.NONE:
        return PolicyDocument(bucket, visibility, None)

    if visibility is Visibility.OTHERS_READ:
        statement: PolicyStatementT = {
            "Sid": "PublicRead",
            "Effect": "Allow",
            "Principal": "*",
            "Action": list(PUBLIC_READ_ACTIONS),
            "Resource": bucket_resources(bucket),
        }
        return PolicyDocument(bucket, visibility, statement)

    if isinstance(principals, PrincipalSet):
        arns = list(principals.arns)
    else:
        arns = list(principals or [])
    if not arns:
        raise PolicyError(
            f"Cannot create a {visibility} policy for bucket {bucket!r} "
            f"without any principal. Check the warnings above."
        )
    actions = READ_WRITE_ACTIONS if visibility.is_write else READ_ACTIONS
    statement = {
        "Effect": "Allow",
        "Principal": {"AWS": arns},
        "Action": list(actions),
        "Resource": bucket_resources(bucket),
    }
    return PolicyDocument(bucket, visibility, statement)


class PolicyRequest:
    def __init__(
        self,
        bucket: str,
        visibility: Visibility | str = Visibility.GROUP_READ,
        group: str | None = None,
        user_list: str | None = None,
        make_bucket: bool = False,
        apply: bool = True,
        log_dir: str | None = None,
    ):
        self.bucket = normalize_bucket_name(bucket)
        self.visibility = (
            visibility
            if isinstance(visibility, Visibility)
            else Visibility.parse(visibility)
        )
        self.group = group
        self.user_list = user_list
        self.make_bucket = make_bucket
        self.apply = apply
        self.log_dir = log_dir

    def validate(self) -> None:
        if self.visibility.is_group and not self.group:
            raise UserInputError(
                f"Policy {self.visibility} requires a group (use --group)."
            )
        if self.visibility.is_list and not self.user_list:
            raise UserInputError(
                "LIST policies require --list option with comma-separated user list"
            )
        if self.log_dir is None:
            raise UserInputError("A log directory for the policy files is required.")

    @property
    def policy_path(self) -> str:
        return os.path.join(self.log_dir, f"{self.bucket}.bucket_policy.json")

    @property
    def readme_path(self) -> str:
        return os.path.join(self.log_dir, f"{self.bucket}.bucket_policy_readme.md")


class PolicyOutcome:
    def __init__(
        self,
        request: PolicyRequest,
        document: PolicyDocument,
        principals: PrincipalSet,
        created_at: str,
        bucket_created: bool = False,
        applied: bool = False,
    ):
        self.request = request
        self.document = document
        self.principals = principals
        self.created_at = created_at
        self.bucket_created = bucket_created
        self.applied = applied
        self.warnings: list[str] = list(principals.warnings) + list(
            request.bucket.warnings
        )


def users_with_access(visibility: Visibility, principals: PrincipalSet) -> str:
    if visibility is Visibility.NONE:
        return "None (policy removed)"
    if visibility is Visibility.OTHERS_READ:
        return "All cluster users and the entire public Internet"
    return "\n".join(u for u in principals.usernames if u)


def render_readme(outcome: PolicyOutcome) -> str:
    request = outcome.request
    lines = [
        "# tierarchive bucketpolicy summary",
        "",
        "## Options used",
        "",
        "Bucket policy initiated (Y-m-d-HMS-us):  ",
        f"{outcome.created_at}  ",
        "",
        "```",
        f"bucket={request.bucket}  ",
        f"policy={request.visibility}  ",
        f"do_not_setpolicy={int(not request.apply)}  ",
        f"policy_json={request.policy_path}  ",
        "```",
        "",
        f"VERSION: {__version__}  ",
        "",
    ]
    if request.visibility is Visibility.NONE:
        lines += ["## Policy", "", "Any bucket policy that was present was removed.", ""]
        return "\n".join(lines)
    lines += [
        "## Users included in the access policy",
        "",
        "```",
        users_with_access(request.visibility, outcome.principals),
        "```",
        "",
        "## Actions enabled",
        "",
        "See all \"Actions\" listed in the policy JSON file:  ",
        f"`{request.policy_path}`",
        "",
    ]
    if outcome.warnings:
        lines += ["## Warnings", ""]
        lines += [f"* {w}" for w in outcome.warnings]
        lines.append("")
    return "\n".join(lines)


def _write_artifact(path: str, content: str) -> None:
    with open(path, "w") as f:
        f.write(content)
    os.chmod(path, ARTIFACT_MODE)


def ensure_bucket(client: MinioClient, bucket: str, make_bucket: bool) -> bool:
    """Return True if the bucket was created."""
    if client.bucket_exists(bucket):
        logger.debug("Bucket %s already exists", bucket)
        return False
    if not make_bucket:
        raise PreconditionError(
            f"Errors occurred when accessing bucket: {bucket!r}\n"
            f"Do you have access rights to the bucket?\n"
            f"If the bucket does not exist, use the --make-bucket flag to create it."
        )
    logger.info("Creating bucket %s", bucket)
    client.make_bucket(bucket)
    return True


def apply_policy_request(
    request: PolicyRequest,
    client: MinioClient,
    directory: DirectoryService | None = None,
    mapper: IdentityMapper | None = None,
    now: datetime | None = None,
) -> PolicyOutcome:
    """
    Create (and optionally set) the policy of a bucket.

    The previous policy of the bucket is replaced, never merged.
    """
    request.validate()
    request.log_dir = canonicalize_path(request.log_dir, kind="log directory")

    bucket_created = ensure_bucket(client, request.bucket, request.make_bucket)

    principals = resolve_principals(
        request.visibility,
        group=request.group,
        user_list=request.user_list,
        directory=directory,
        mapper=mapper,
    )
    document = synthesize_policy(request.visibility, request.bucket, principals)
    if request.visibility is Visibility.OTHERS_READ:
        warnings.warn(
            f"Policy OTHERS_READ exposes all objects in bucket {request.bucket!r} "
            f"to the entire Internet.",
            PublicExposureWarning,
            stacklevel=2,
        )

    outcome = PolicyOutcome(
        request,
        document,
        principals,
        created_at=timestamp_token(now),
        bucket_created=bucket_created,
    )

    ensure_group_dir(request.log_dir)
    _write_artifact(request.policy_path, document.render())

    if not request.apply:
        logger.info("The policy was written but not set (--do-not-set-policy).")
    elif document.is_empty:
        try:
            client.delete_bucket_policy(request.bucket)
            outcome.applied = True
            logger.info("The bucket policy was removed.")
        except Exception as e:
            msg = f"Removing the bucket policy failed (policy may not have existed): {e}"
            logger.warning(msg)
            outcome.warnings.append(msg)
    else:
        try:
            if client.get_bucket_policy(request.bucket):
                logger.info("Replacing the existing policy of bucket %s", request.bucket)
            client.set_bucket_policy(request.bucket, document.render())
        except Exception as e:
            raise PolicyError(
                f"Setting the bucket policy failed: {e}\n"
                f"The policy file was kept for review: {request.policy_path}"
            ) from e
        outcome.applied = True
        logger.info("The bucket policy was set.")

    _write_artifact(request.readme_path, render_readme(outcome))
    return outcome
