#!/usr/bin/env python3
from __future__ import annotations

import grp
import logging
import os
import re

from tierarchive.errors import IdentityLookupError, ToolError, UserInputError
from tierarchive.tools import CommandLineTool

__all__ = ["DirectoryService", "IdentityMapper", "current_group"]

logger = logging.getLogger("identity")

TIER2_USERNAME_PATTERN = re.compile(r"^\s*Tier 2 username:\s*(?P<name>\S+)\s*$", re.M)


def current_group() -> str:
    """Name of the primary group of the running process."""
    return grp.getgrgid(os.getgid()).gr_name


class DirectoryService:
    """
    Group membership lookup.

    Uses the NSS group database, so LDAP/SSSD backed groups are
    resolved the same way `getent group` does it.
    """

    def group_members(self, group: str) -> list[str]:
        try:
            entry = grp.getgrnam(group)
        except KeyError:
            raise UserInputError(
                f"Group {group!r} was not found in the directory service. "
                f"Check the spelling with 'getent group {group}'."
            ) from None
        return list(entry.gr_mem)


class IdentityMapper(CommandLineTool):
    """
    Wrapper around the `s3info` utility that maps cluster user
    ids to tier 2 (object store) identities and keys.
    """

    executable = "s3info"
    install_hint = "The s3info utility is provided on the cluster login nodes."

    def tier2_username(self, user: str) -> str:
        try:
            out = self._command(["info", "--user", user])
        except ToolError as e:
            raise IdentityLookupError(
                f"s3info info command failed for username: {user}"
            ) from e
        match = TIER2_USERNAME_PATTERN.search(out)
        if match is None:
            raise IdentityLookupError(
                f"s3info did not report a tier 2 username for: {user}"
            )
        return match.group("name")

    def keys(self) -> tuple[str, str]:
        """Return (access_key, secret_key) of the current user."""
        out = self._command(["--keys"], confidential=True)
        parts = out.split()
        if len(parts) < 2:
            raise ToolError("Unexpected output of 's3info --keys'")
        return parts[0], parts[1]
