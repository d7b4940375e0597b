#!/usr/bin/env python3
from __future__ import annotations

import logging
import os
from typing import Iterable

from tierarchive.errors import InvalidBucketName, InvalidPath

__all__ = [
    "BucketName",
    "normalize_bucket_name",
    "canonicalize_path",
    "check_pathname_lengths",
    "PATHNAME_MAX",
]

logger = logging.getLogger("naming")

PATHNAME_MAX = 1024


class BucketName(str):
    """
    A normalized bucket name.

    Behaves like a plain string, but carries the non-fatal
    warnings that were emitted during normalization.
    """

    warnings: list[str]

    def __new__(cls, value: str, warnings: list[str] | None = None):
        obj = super().__new__(cls, value)
        obj.warnings = list(warnings or [])
        return obj


def normalize_bucket_name(name: str | None) -> BucketName:
    """
    Normalize a raw bucket name given by a user.

    A single trailing slash is removed (shells and tab completion
    tend to append one). An empty name, or a name that is empty after
    stripping the slash, raises InvalidBucketName.

    Internal slashes are allowed, but a warning is emitted because some
    S3 client libraries cannot handle them.
    """
    if name is None or name == "":
        raise InvalidBucketName(
            "Bucket name cannot be empty. Check that your variable is "
            "defined (e.g. export BUCKET_NAME=my-bucket)."
        )
    if name.endswith("/"):
        name = name[:-1]
    if name == "":
        raise InvalidBucketName(
            "Bucket name cannot be just a slash. Please provide a valid bucket name."
        )

    warnings = []
    if "/" in name:
        msg = f"Bucket name contains slashes which may cause issues: {name!r}"
        logger.warning(msg)
        warnings.append(msg)
    return BucketName(name, warnings)


def canonicalize_path(
    path: str | os.PathLike | None,
    must_exist: bool = False,
    kind: str = "path",
) -> str:
    """
    Return the absolute, normalized form of `path`.

    Paths containing a double slash are rejected. Joining a path that
    ends with '/' to another component produced log directories like
    '/a//b' in the past, which later broke the generated scripts.

    `kind` is only used to make error messages more helpful
    (e.g. 'log directory', 'source directory').
    """
    if path is None or str(path) == "":
        raise InvalidPath(f"The {kind} cannot be empty.")
    raw = os.fspath(path)
    if "//" in raw:
        raise InvalidPath(
            f"The {kind} contains a double slash: {raw!r}. "
            f"Remove the duplicated '/' and try again."
        )
    canonical = os.path.abspath(os.path.expanduser(raw))
    if must_exist and not os.path.exists(canonical):
        raise InvalidPath(f"The {kind} does not exist or is not accessible: {raw!r}")
    return canonical


def check_pathname_lengths(
    paths: Iterable[str], limit: int = PATHNAME_MAX
) -> list[str]:
    """Return all paths that are `limit` characters or longer."""
    return [p for p in paths if len(p) >= limit]
