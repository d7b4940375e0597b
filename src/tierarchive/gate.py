#!/usr/bin/env python3
from __future__ import annotations

import logging
import os
import re
import time
from datetime import datetime
from typing import Callable

from tierarchive.errors import (
    GateClosedError,
    PreconditionError,
    VerificationFailedError,
)
from tierarchive.rclone import Rclone

__all__ = [
    "SUCCESS_MARKER",
    "VerificationResult",
    "inspect_verification_log",
    "marker_path",
    "has_success_marker",
    "write_success_marker",
    "mark_success",
    "reset_verification",
    "require_success_marker",
    "check_restore_preconditions",
]

logger = logging.getLogger("gate")

SUCCESS_MARKER = "copy_and_verify_SUCCESS.txt"
RESTORE_GRACE_SECONDS = 10

# rclone check: "2024/05/01 13:45:01 NOTICE: 3 differences found"
_DIFFERENCES = re.compile(r"\b(\d+)\s+differences?\b", re.IGNORECASE)
# rclone log level token, e.g. "2024/05/01 13:45:01 ERROR : file.txt: ..."
_ERROR_TOKEN = re.compile(r"\b(ERROR|CRITICAL)\b")


class VerificationResult:
    def __init__(
        self,
        log: str,
        differences: list[int] | None = None,
        error_lines: list[str] | None = None,
    ):
        self.log = log
        self.differences = list(differences or [])
        self.error_lines = list(error_lines or [])

    @property
    def has_summary(self) -> bool:
        return bool(self.differences)

    @property
    def total_differences(self) -> int:
        return sum(self.differences)

    @property
    def clean(self) -> bool:
        """
        Positive proof of a complete copy: the log reports its
        difference count, the count is zero and nothing was logged
        at ERROR level.
        """
        return (
            self.has_summary
            and self.total_differences == 0
            and not self.error_lines
        )

    def describe(self) -> str:
        if self.clean:
            return "0 differences found, no errors"
        problems = []
        if not self.has_summary:
            problems.append("no difference summary found")
        elif self.total_differences:
            problems.append(f"{self.total_differences} differences found")
        if self.error_lines:
            problems.append(f"{len(self.error_lines)} error lines")
        return ", ".join(problems)


def inspect_verification_log(path: str) -> VerificationResult:
    if not os.path.isfile(path):
        raise VerificationFailedError(
            f"Verification log not found: {path}. Make sure the copy and "
            f"verify job ran to the end."
        )
    differences = []
    error_lines = []
    with open(path, "r", errors="replace") as f:
        for line in f:
            for match in _DIFFERENCES.finditer(line):
                differences.append(int(match.group(1)))
            if _ERROR_TOKEN.search(line):
                error_lines.append(line.rstrip("\n"))
    return VerificationResult(path, differences, error_lines)


def marker_path(workdir: str) -> str:
    return os.path.join(workdir, SUCCESS_MARKER)


def has_success_marker(workdir: str) -> bool:
    return os.path.isfile(marker_path(workdir))


def write_success_marker(
    workdir: str, verify_log: str, now: datetime | None = None
) -> str:
    now = now or datetime.now()
    path = marker_path(workdir)
    with open(path, "w") as f:
        f.write(
            f"Copy and verify operations completed successfully at "
            f"{now.isoformat(timespec='seconds')}\n"
            f"verification_log={verify_log}\n"
        )
    logger.info("Success marker written: %s", path)
    return path


def mark_success(workdir: str, verify_log: str) -> VerificationResult:
    """
    Inspect the verification log and write the success marker.

    The marker is only written if the log shows zero differences and
    no errors. Otherwise VerificationFailedError is raised and a marker
    left over from an earlier run is removed, because it no longer
    vouches for the current copy.
    """
    result = inspect_verification_log(verify_log)
    if not result.clean:
        if has_success_marker(workdir):
            os.remove(marker_path(workdir))
            logger.warning("Removed stale success marker in %s", workdir)
        raise VerificationFailedError(
            f"Verification failed ({result.describe()}). No success marker "
            f"was written, the delete stage stays locked. Review the log:\n"
            f"  {verify_log}"
        )
    write_success_marker(workdir, verify_log)
    return result


def reset_verification(workdir: str, verify_log: str) -> list[str]:
    """
    Remove the verification log and the success marker of a job.

    rclone appends to an existing log file, so a rerun of the copy
    stage must start from neither. Returns the removed paths.
    """
    removed = []
    for path in (verify_log, marker_path(workdir)):
        if os.path.isfile(path):
            os.remove(path)
            removed.append(path)
            logger.info("Removed %s", path)
    return removed


def require_success_marker(workdir: str) -> str:
    """Raise GateClosedError unless the success marker exists."""
    path = marker_path(workdir)
    if not os.path.isfile(path):
        raise GateClosedError(
            f"Success marker not found: {path}\n"
            f"The copy and verify stage did not finish successfully, so "
            f"nothing will be deleted. Run (or re-run) the copy and verify "
            f"job and review its verification log first."
        )
    logger.info("Success marker found: %s", path)
    return path


def check_restore_preconditions(
    destination: str,
    remote: str,
    bucket: str,
    prefix: str,
    rclone: Rclone | None = None,
    grace_seconds: int = RESTORE_GRACE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """
    Check that a restore may start. Independent of the success marker.

    The data must exist in the store. An existing destination is not
    fatal, the operator is warned and gets `grace_seconds` to abort.
    Returns the warnings.
    """
    rclone = rclone or Rclone()
    warnings = []
    if os.path.exists(destination):
        msg = (
            f"Destination path already exists: {destination}. The restore "
            f"will overwrite existing files with the same names. Continuing "
            f"in {grace_seconds} seconds (press Ctrl+C to abort)."
        )
        logger.warning(msg)
        warnings.append(msg)
        sleep(grace_seconds)

    location = f"{remote}:{bucket}/{prefix}" if prefix else f"{remote}:{bucket}"
    if not rclone.prefix_exists(remote, bucket, prefix):
        raise PreconditionError(
            f"Source data not found in tier 2 storage.\n"
            f"Expected location: {location}\n"
            f"Please verify the bucket and path are correct."
        )
    logger.info("Source data confirmed in tier 2 storage: %s", location)
    return warnings
