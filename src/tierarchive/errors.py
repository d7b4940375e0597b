#!/usr/bin/env python3
from __future__ import annotations


class TierArchiveError(RuntimeError):
    """
    Base class of all errors that abort a command.

    The command scripts catch these, print the message (which
    should always contain a remedy) and exit with status 1.
    """

    pass


class UserInputError(TierArchiveError):
    """
    Error that originated by malformed input provided by a user,
    e.g. a missing option or an unknown visibility class.
    """

    pass


class InvalidBucketName(UserInputError):
    """The bucket name is empty, just a slash or otherwise invalid."""

    pass


class InvalidPath(UserInputError):
    """A filesystem path is malformed (e.g. contains '//') or missing."""

    pass


class ToolError(TierArchiveError):
    """An external command line tool failed."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ToolNotFoundError(ToolError):
    """An external command line tool is not installed or not in PATH."""

    pass


class IdentityLookupError(TierArchiveError):
    """
    The identity-mapping utility could not map a user to a tier 2 identity.

    Raised per member. The principal resolver catches it, skips the
    member and continues.
    """

    pass


class PreconditionError(TierArchiveError):
    """
    Processing cannot start due to bad system state, e.g. a missing
    bucket, an unreadable source or a failed preflight check.
    """

    pass


class PolicyError(TierArchiveError):
    """A policy document could not be created or applied."""

    pass


class GateClosedError(PreconditionError):
    """
    A destructive stage was requested without a success marker.

    Added to stop `rclone purge` from ever running on data that
    was not copied and verified.
    """

    pass


class VerificationFailedError(TierArchiveError):
    """The verification log shows differences or errors."""

    pass


class TierArchiveWarning(RuntimeWarning):
    """
    Report issues not severe enough to abort the process.
    """

    pass


class PublicExposureWarning(TierArchiveWarning):
    """The requested policy exposes the bucket to the public Internet."""

    pass
