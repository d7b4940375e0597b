#!/usr/bin/env python3

from unittest import mock

import pytest

from tierarchive.errors import IdentityLookupError, ToolError, ToolNotFoundError
from tierarchive.identity import IdentityMapper
from tierarchive.rclone import Rclone, parse_version
from tierarchive.tools import CommandResult


def result(stdout="", returncode=0, stderr=""):
    return CommandResult(["tool"], returncode, stdout, stderr)


S3INFO_OUTPUT = """
Cluster username: alice
Tier 2 username: alice_t2
Tier 2 quota: 10 TB
"""


def test_IdentityMapper_tier2_username():
    mapper = IdentityMapper()
    with mock.patch.object(mapper, "_run", return_value=result(S3INFO_OUTPUT)) as run:
        assert mapper.tier2_username("alice") == "alice_t2"
    run.assert_called_once_with(["info", "--user", "alice"], timeout=None)


@pytest.mark.parametrize(
    "ret",
    [
        result("", returncode=1, stderr="no such user"),
        result("Cluster username: alice\n"),
    ],
)
def test_IdentityMapper_tier2_username__raises(ret):
    mapper = IdentityMapper()
    with mock.patch.object(mapper, "_run", return_value=ret):
        with pytest.raises(IdentityLookupError, match="alice"):
            mapper.tier2_username("alice")


def test_IdentityMapper_keys():
    mapper = IdentityMapper()
    with mock.patch.object(mapper, "_run", return_value=result("AKIA SECRET\n")):
        assert mapper.keys() == ("AKIA", "SECRET")


def test_CommandLineTool__not_installed():
    tool = Rclone(executable="rclone-does-not-exist-here")
    assert not tool.available()
    with pytest.raises(ToolNotFoundError, match="rclone-does-not-exist-here"):
        tool.version()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("rclone v1.71.0", (1, 71, 0)),
        ("rclone v1.67.0-DEV\n- os/version: rocky", (1, 67, 0)),
        ("rclone 1.53", (1, 53, 0)),
        ("something else", None),
    ],
)
def test_parse_version(text, expected):
    assert parse_version(text) == expected


def test_Rclone_version():
    rclone = Rclone()
    with mock.patch.object(rclone, "_run", return_value=result("rclone v1.66.1\n")):
        assert rclone.version() == (1, 66, 1)
    with mock.patch.object(rclone, "_run", return_value=result("garbage\n")):
        with pytest.raises(ToolError, match="Unable to parse"):
            rclone.version()


@pytest.mark.parametrize(
    "ret, expected",
    [
        (result("file.txt\nsub/\n"), True),
        (result(""), False),
        (result("", returncode=3, stderr="directory not found"), False),
    ],
)
def test_Rclone_prefix_exists(ret, expected):
    rclone = Rclone()
    with mock.patch.object(rclone, "_run", return_value=ret) as run:
        assert rclone.prefix_exists("ceph", "bucket", "data") is expected
    run.assert_called_once_with(["lsf", "--max-depth", "1", "ceph:bucket/data"])


def test_Rclone_listremotes():
    rclone = Rclone()
    with mock.patch.object(rclone, "_run", return_value=result("ceph:\nlocal:\n")):
        assert rclone.listremotes() == ["ceph", "local"]
