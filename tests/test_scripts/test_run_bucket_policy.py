#!/usr/bin/env python3

import os
from unittest import mock

import pytest
from click.testing import CliRunner

import run_bucket_policy
from tierarchive.errors import PolicyError


@pytest.fixture
def patched(ctx, tmp_path):
    env = {
        "TIERARCHIVE_GROUP": ctx.group,
        "TIERARCHIVE_PROJECT_ROOT": ctx.project_root,
    }
    with (
        mock.patch.dict(os.environ, env),
        mock.patch.object(run_bucket_policy, "IdentityMapper") as mapper,
        mock.patch.object(run_bucket_policy, "MinioClient") as client,
        mock.patch.object(run_bucket_policy, "apply_policy_request") as apply,
    ):
        mapper.return_value.keys.return_value = ("AK", "SK")
        apply.side_effect = lambda request, *args, **kwargs: mock.MagicMock(
            request=request, bucket_created=False, applied=request.apply, warnings=[]
        )
        yield mapper, client, apply


def test_bucket_policy(patched, tmp_path):
    mapper, client, apply = patched
    result = CliRunner().invoke(
        run_bucket_policy.main, ["-b", "bucket/", "--log-dir", str(tmp_path)]
    )
    assert result.exit_code == 0, result.output
    request = apply.call_args.args[0]
    assert str(request.bucket) == "bucket"
    assert request.group == "lab"
    assert request.visibility == "GROUP_READ"
    client.assert_called_once_with(
        "localhost:9000", access_key="AK", secret_key="SK", secure=True
    )
    assert "Policy GROUP_READ is active on bucket bucket." in result.output


def test_bucket_policy__explicit_keys(patched, tmp_path):
    mapper, client, apply = patched
    result = CliRunner().invoke(
        run_bucket_policy.main,
        ["-b", "b", "--access-key", "A", "--secret-key", "S", "-d"],
    )
    assert result.exit_code == 0, result.output
    mapper.return_value.keys.assert_not_called()
    assert "The policy was NOT set on the bucket." in result.output


def test_bucket_policy__list_requires_users(patched):
    mapper, client, apply = patched
    result = CliRunner().invoke(run_bucket_policy.main, ["-b", "b", "-p", "list_read"])
    assert result.exit_code == 1
    assert "LIST policies require --list" in result.output
    apply.assert_not_called()


def test_bucket_policy__unknown_policy(patched):
    result = CliRunner().invoke(run_bucket_policy.main, ["-b", "b", "-p", "WORLD"])
    assert result.exit_code == 2


def test_bucket_policy__apply_fails(patched):
    mapper, client, apply = patched
    apply.side_effect = PolicyError("Could not set the policy of bucket 'b'.")
    result = CliRunner().invoke(run_bucket_policy.main, ["-b", "b"])
    assert result.exit_code == 1
    assert "Could not set the policy" in result.output
