#!/usr/bin/env python3

import json
import os
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from tierarchive.errors import (
    IdentityLookupError,
    PolicyError,
    PreconditionError,
    PublicExposureWarning,
    UserInputError,
)
from tierarchive.policy import (
    PUBLIC_READ_ACTIONS,
    READ_ACTIONS,
    PolicyRequest,
    apply_policy_request,
    synthesize_policy,
)
from tierarchive.principals import PrincipalSet, Visibility

ARNS = ["arn:aws:iam:::user/alice", "arn:aws:iam:::user/bob"]
NOW = datetime(2024, 5, 1, 13, 45, 1, 42113)


def ClientMock(exists=True):
    client = MagicMock()
    client.bucket_exists.return_value = exists
    return client


def DirectoryMock(members):
    directory = MagicMock()
    directory.group_members.return_value = list(members)
    return directory


def MapperMock(known=None):
    def tier2_username(user):
        if known is not None and user not in known:
            raise IdentityLookupError(f"s3info info command failed for username: {user}")
        return user

    mapper = MagicMock()
    mapper.tier2_username.side_effect = tier2_username
    return mapper


# ############################################################
# synthesize_policy
# ############################################################


def test_synthesize_policy__none_is_empty():
    doc = synthesize_policy(Visibility.NONE, "bucket")
    assert doc.is_empty
    assert doc.render() == ""


@pytest.mark.parametrize(
    "visibility, actions",
    [
        (Visibility.GROUP_READ, list(READ_ACTIONS)),
        (Visibility.LIST_READ, list(READ_ACTIONS)),
        (Visibility.GROUP_READ_WRITE, ["s3:*"]),
        (Visibility.LIST_READ_WRITE, ["s3:*"]),
    ],
)
def test_synthesize_policy__actions(visibility, actions):
    data = json.loads(synthesize_policy(visibility, "bucket", ARNS).render())
    assert data["Version"] == "2012-10-17"
    assert len(data["Statement"]) == 1
    statement = data["Statement"][0]
    assert statement["Effect"] == "Allow"
    assert statement["Principal"] == {"AWS": ARNS}
    assert statement["Action"] == actions
    assert statement["Resource"] == ["arn:aws:s3:::bucket", "arn:aws:s3:::bucket/*"]


def test_synthesize_policy__read_is_read_only():
    assert len(READ_ACTIONS) == 15
    assert all(a.startswith(("s3:Get", "s3:List")) for a in READ_ACTIONS)


def test_synthesize_policy__others_read():
    data = synthesize_policy(Visibility.OTHERS_READ, "bucket").to_dict()
    statement = data["Statement"][0]
    assert statement["Sid"] == "PublicRead"
    assert statement["Principal"] == "*"
    assert statement["Action"] == list(PUBLIC_READ_ACTIONS)
    assert "s3:ListBucket" not in statement["Action"]


def test_synthesize_policy__deterministic():
    principals = PrincipalSet(ARNS, ["alice", "bob"])
    a = synthesize_policy(Visibility.GROUP_READ, "bucket", principals)
    b = synthesize_policy(Visibility.GROUP_READ, "bucket", list(ARNS))
    assert a == b
    assert a.render() == b.render()


def test_synthesize_policy__keeps_principal_order_and_duplicates():
    arns = [ARNS[1], ARNS[0], ARNS[1]]
    data = synthesize_policy(Visibility.LIST_READ, "bucket", arns).to_dict()
    assert data["Statement"][0]["Principal"]["AWS"] == arns


@pytest.mark.parametrize("visibility", [Visibility.GROUP_READ, Visibility.LIST_READ])
def test_synthesize_policy__no_principals(visibility):
    with pytest.raises(PolicyError, match="without any principal"):
        synthesize_policy(visibility, "bucket", PrincipalSet())


# ############################################################
# PolicyRequest
# ############################################################


@pytest.mark.parametrize(
    "kwargs, match",
    [
        (dict(visibility="GROUP_READ", log_dir="/tmp/x"), "requires a group"),
        (dict(visibility="LIST_READ", log_dir="/tmp/x"), "LIST policies require"),
        (dict(visibility="NONE"), "log directory"),
    ],
)
def test_PolicyRequest_validate(kwargs, match):
    request = PolicyRequest("bucket", **kwargs)
    with pytest.raises(UserInputError, match=match):
        request.validate()


def test_PolicyRequest__normalizes_bucket(tmp_path):
    request = PolicyRequest("bucket/", log_dir=str(tmp_path))
    assert request.bucket == "bucket"
    assert request.policy_path == str(tmp_path / "bucket.bucket_policy.json")
    assert request.readme_path == str(tmp_path / "bucket.bucket_policy_readme.md")


# ############################################################
# apply_policy_request
# ############################################################


def test_apply_policy_request__group_read(tmp_path):
    client = ClientMock()
    request = PolicyRequest(
        "bucket", "GROUP_READ", group="teamA", log_dir=str(tmp_path / "logs")
    )
    outcome = apply_policy_request(
        request,
        client,
        directory=DirectoryMock(["alice", "bob"]),
        mapper=MapperMock(known={"bob"}),
        now=NOW,
    )

    assert outcome.applied
    assert outcome.created_at == "2024-05-01-134501-042113"
    assert outcome.principals.arns == ["arn:aws:iam:::user/bob"]
    assert len(outcome.warnings) == 1

    client.set_bucket_policy.assert_called_once()
    bucket, text = client.set_bucket_policy.call_args.args
    assert bucket == "bucket"
    with open(request.policy_path) as f:
        assert f.read() == text
    with open(request.readme_path) as f:
        readme = f.read()
    assert "bob" in readme
    assert "s3info info command failed for username: alice" in readme


def test_apply_policy_request__none_removes_policy(tmp_path):
    client = ClientMock()
    request = PolicyRequest("bucket", "NONE", log_dir=str(tmp_path))
    outcome = apply_policy_request(request, client)

    client.delete_bucket_policy.assert_called_once_with("bucket")
    client.set_bucket_policy.assert_not_called()
    assert outcome.applied
    assert os.path.getsize(request.policy_path) == 0


def test_apply_policy_request__none_delete_failure_is_a_warning(tmp_path):
    client = ClientMock()
    client.delete_bucket_policy.side_effect = RuntimeError("NoSuchBucketPolicy")
    request = PolicyRequest("bucket", "NONE", log_dir=str(tmp_path))
    outcome = apply_policy_request(request, client)
    assert not outcome.applied
    assert any("NoSuchBucketPolicy" in w for w in outcome.warnings)


def test_apply_policy_request__set_failure_is_fatal(tmp_path):
    client = ClientMock()
    client.set_bucket_policy.side_effect = RuntimeError("AccessDenied")
    request = PolicyRequest("bucket", "LIST_READ", user_list="alice", log_dir=str(tmp_path))
    with pytest.raises(PolicyError, match="AccessDenied"):
        apply_policy_request(request, client, mapper=MapperMock())
    # the policy file is kept for review
    assert os.path.exists(request.policy_path)


def test_apply_policy_request__do_not_set(tmp_path):
    client = ClientMock()
    request = PolicyRequest(
        "bucket", "LIST_READ_WRITE", user_list="alice,bob", apply=False, log_dir=str(tmp_path)
    )
    outcome = apply_policy_request(request, client, mapper=MapperMock())
    assert not outcome.applied
    client.set_bucket_policy.assert_not_called()
    client.delete_bucket_policy.assert_not_called()
    with open(request.policy_path) as f:
        assert json.load(f)["Statement"][0]["Action"] == ["s3:*"]


def test_apply_policy_request__others_read_warns(tmp_path):
    client = ClientMock()
    request = PolicyRequest("bucket", "OTHERS_READ", log_dir=str(tmp_path))
    with pytest.warns(PublicExposureWarning, match="entire Internet"):
        apply_policy_request(request, client)
    client.set_bucket_policy.assert_called_once()


def test_apply_policy_request__missing_bucket(tmp_path):
    client = ClientMock(exists=False)
    request = PolicyRequest("bucket", "NONE", log_dir=str(tmp_path))
    with pytest.raises(PreconditionError, match="--make-bucket"):
        apply_policy_request(request, client)
    client.make_bucket.assert_not_called()
    assert not os.path.exists(request.policy_path)


def test_apply_policy_request__make_bucket(tmp_path):
    client = ClientMock(exists=False)
    request = PolicyRequest("bucket", "NONE", make_bucket=True, log_dir=str(tmp_path))
    outcome = apply_policy_request(request, client)
    client.make_bucket.assert_called_once_with("bucket")
    assert outcome.bucket_created
