#!/usr/bin/env python3
from __future__ import annotations

import enum
import logging
import os
from collections import Counter

from tierarchive.errors import IdentityLookupError, UserInputError
from tierarchive.identity import DirectoryService, IdentityMapper

__all__ = [
    "Visibility",
    "PrincipalSet",
    "resolve_principals",
    "split_user_list",
    "user_arn",
]

logger = logging.getLogger("principals")

# entries that show up in group databases but are no users
PLACEHOLDER_MEMBERS = frozenset({"", "."})


class Visibility(enum.StrEnum):
    NONE = "NONE"
    GROUP_READ = "GROUP_READ"
    GROUP_READ_WRITE = "GROUP_READ_WRITE"
    OTHERS_READ = "OTHERS_READ"
    LIST_READ = "LIST_READ"
    LIST_READ_WRITE = "LIST_READ_WRITE"

    @property
    def is_group(self) -> bool:
        return self in (Visibility.GROUP_READ, Visibility.GROUP_READ_WRITE)

    @property
    def is_list(self) -> bool:
        return self in (Visibility.LIST_READ, Visibility.LIST_READ_WRITE)

    @property
    def is_write(self) -> bool:
        return self in (Visibility.GROUP_READ_WRITE, Visibility.LIST_READ_WRITE)

    @property
    def needs_principals(self) -> bool:
        return self.is_group or self.is_list

    @classmethod
    def parse(cls, value: str) -> Visibility:
        try:
            return cls(value.strip().upper())
        except ValueError:
            choices = ", ".join(v.value for v in cls)
            raise UserInputError(
                f"Invalid policy option: {value!r}. Choose one of: {choices}"
            ) from None


class PrincipalSet:
    """
    Resolved identities of a policy.

    `arns` and `usernames` are parallel lists in resolution order.
    Duplicates are kept: a user listed twice upstream appears twice.
    """

    def __init__(
        self,
        arns: list[str] | None = None,
        usernames: list[str] | None = None,
        warnings: list[str] | None = None,
    ):
        self.arns = list(arns or [])
        self.usernames = list(usernames or [])
        self.warnings = list(warnings or [])
        if len(self.arns) != len(self.usernames):
            raise ValueError("arns and usernames must have the same length")

    def add(self, username: str, arn: str) -> None:
        self.usernames.append(username)
        self.arns.append(arn)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def __len__(self):
        return len(self.arns)

    def __bool__(self):
        return bool(self.arns)

    def __repr__(self):
        return f"PrincipalSet({self.usernames!r})"


def user_arn(tier2_username: str) -> str:
    return f"arn:aws:iam:::user/{tier2_username}"


def split_user_list(user_list: str) -> list[str]:
    """
    Split a comma separated user list.

    If `user_list` names an existing file, the file content is split
    instead. Newlines are treated like commas, surrounding whitespace
    and placeholder entries are dropped.
    """
    if os.path.isfile(user_list):
        with open(user_list, "r") as f:
            text = f.read()
    else:
        text = user_list
    members = []
    for line in text.splitlines():
        for entry in line.split(","):
            entry = entry.strip()
            if entry not in PLACEHOLDER_MEMBERS:
                members.append(entry)
    return members


def resolve_principals(
    visibility: Visibility,
    group: str | None = None,
    user_list: str | None = None,
    directory: DirectoryService | None = None,
    mapper: IdentityMapper | None = None,
) -> PrincipalSet:
    """
    Map the members of a group or an explicit user list to tier 2 ARNs.

    A member whose identity cannot be mapped is skipped with a warning,
    the remaining members are still resolved. OTHERS_READ and NONE need
    no principals and return an empty set without any lookups.
    """
    principals = PrincipalSet()
    if not visibility.needs_principals:
        return principals

    if visibility.is_group:
        if not group:
            raise UserInputError(
                f"Policy {visibility} requires a group (use --group)."
            )
        directory = directory or DirectoryService()
        members = [
            m.strip()
            for m in directory.group_members(group)
            if m.strip() not in PLACEHOLDER_MEMBERS
        ]
        logger.debug("group %s has %d members", group, len(members))
    else:
        if not user_list:
            raise UserInputError(
                "LIST policies require --list option with comma-separated user list"
            )
        members = split_user_list(user_list)

    for name, count in Counter(members).items():
        if count > 1:
            principals.warn(
                f"User {name!r} is listed {count} times and will appear "
                f"{count} times in the policy."
            )

    mapper = mapper or IdentityMapper()
    for member in members:
        try:
            tier2_name = mapper.tier2_username(member)
        except IdentityLookupError as e:
            principals.warn(f"{e}. User is skipped.")
            continue
        principals.add(member, user_arn(tier2_name))

    if not principals:
        principals.warn("No principal could be resolved for this policy.")
    return principals
