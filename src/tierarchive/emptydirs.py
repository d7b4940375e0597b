#!/usr/bin/env python3
from __future__ import annotations

import enum
import logging
import os
from datetime import datetime

__all__ = [
    "EmptyDirMode",
    "SENTINEL_NAME",
    "find_empty_dirs",
    "write_sentinels",
    "stage_sentinels",
    "remove_sentinels",
    "restore_empty_dirs",
    "copy_flags",
    "restore_flags",
]

logger = logging.getLogger("emptydirs")

SENTINEL_NAME = ".tierarchive_empty_dir"


class EmptyDirMode(enum.StrEnum):
    """
    How empty directories survive a trip through the object store.

    NATIVE:   rclone creates directory marker objects itself
    SENTINEL: a hidden sentinel file is placed in every empty directory
    NONE:     empty directories are not transferred
    """

    NATIVE = "native"
    SENTINEL = "sentinel"
    NONE = "none"


def _is_empty(entries: list[str]) -> bool:
    # a directory that holds only our sentinel is still empty
    return not entries or entries == [SENTINEL_NAME]


def find_empty_dirs(root: str) -> list[str]:
    """Return all empty directories below (and including) `root`, sorted."""
    empty = []
    for dirpath, dirnames, filenames in os.walk(root):
        if _is_empty(sorted(dirnames + filenames)):
            empty.append(dirpath)
    return sorted(empty)


def _sentinel_files(root: str) -> list[str]:
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        if SENTINEL_NAME in filenames:
            found.append(os.path.join(dirpath, SENTINEL_NAME))
    return sorted(found)


def _write_sentinel(directory: str) -> None:
    path = os.path.join(directory, SENTINEL_NAME)
    if os.path.exists(path):
        return
    now = datetime.now().isoformat(timespec="seconds")
    with open(path, "w") as f:
        f.write(
            f"This file marks an empty directory for the tier 2 archive. "
            f"Created {now}. It is removed again after the transfer.\n"
        )


def write_sentinels(
    root: str, dry_run: bool = False, listing: str | None = None
) -> list[str]:
    """
    Put a sentinel file into every empty directory below `root`.

    Returns the list of empty directories. If `listing` is given, the
    directories are also written to that file, one per line. In dry-run
    mode nothing is written into `root`.
    """
    empty_dirs = find_empty_dirs(root)
    logger.info("Found %d empty directories below %s", len(empty_dirs), root)
    if listing is not None:
        with open(listing, "w") as f:
            f.writelines(f"{d}\n" for d in empty_dirs)
    if dry_run:
        return empty_dirs

    for d in empty_dirs:
        _write_sentinel(d)
    return empty_dirs


def stage_sentinels(
    root: str, staging: str, dry_run: bool = False, listing: str | None = None
) -> list[str]:
    """
    Like `write_sentinels`, but for a read-only `root`.

    The sentinels are written into a mirror tree below `staging`, which
    is then copied to the same destination as `root`. Nothing inside
    `root` is touched.
    """
    empty_dirs = write_sentinels(root, dry_run=True, listing=listing)
    if dry_run:
        return empty_dirs
    for d in empty_dirs:
        target = os.path.normpath(os.path.join(staging, os.path.relpath(d, root)))
        os.makedirs(target, exist_ok=True)
        _write_sentinel(target)
    return empty_dirs


def remove_sentinels(root: str, dry_run: bool = False) -> list[str]:
    """Remove all sentinel files below `root` and return their directories."""
    dirs = []
    for path in _sentinel_files(root):
        dirs.append(os.path.dirname(path))
        if not dry_run:
            os.remove(path)
    logger.info("Removed %d empty directory sentinels below %s", len(dirs), root)
    return dirs


def restore_empty_dirs(root: str, dry_run: bool = False) -> list[str]:
    """
    Turn restored sentinel objects back into empty directories.

    Copying a sentinel object back from the store re-creates its parent
    directory, so removing the sentinel leaves exactly the empty
    directory of the original tree.
    """
    return remove_sentinels(root, dry_run=dry_run)


def copy_flags(mode: EmptyDirMode) -> list[str]:
    if mode is EmptyDirMode.NATIVE:
        return ["--create-empty-src-dirs", "--s3-directory-markers"]
    return []


def restore_flags(mode: EmptyDirMode, best_effort: bool = False) -> list[str]:
    """
    Flags of the restore copy.

    Only NATIVE mode stored directory markers, so only NATIVE mode asks
    rclone to create empty directories, unless `best_effort` is set.
    """
    if mode is EmptyDirMode.NATIVE or best_effort:
        return ["--create-empty-src-dirs"]
    return []
