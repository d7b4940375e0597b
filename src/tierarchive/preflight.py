#!/usr/bin/env python3
from __future__ import annotations

import enum
import logging
import os
import shutil
from typing import Callable

from tierarchive.common import GB, MB, format_bytes
from tierarchive.errors import PreconditionError, ToolError
from tierarchive.rclone import MIN_VERSION, Rclone, version_str

__all__ = [
    "Severity",
    "Finding",
    "PermissionScanResult",
    "TransferEstimate",
    "PreflightReport",
    "scan_permissions",
    "check_permissions",
    "check_capacity",
    "check_tool_version",
    "check_connectivity",
    "estimate_transfer",
    "run_preflight",
]

logger = logging.getLogger("preflight")

SAMPLE_SIZE = 10
LOG_DIR_MIN_FREE = 100 * MB
SOURCE_MIN_FREE = 50 * MB
BYTES_PER_HOUR = 10 * GB
LONG_TRANSFER_HOURS = 24


class Severity(enum.StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Finding:
    def __init__(self, check: str, severity: Severity, message: str):
        self.check = check
        self.severity = severity
        self.message = message

    def demoted(self) -> Finding:
        if self.severity is Severity.ERROR:
            return Finding(self.check, Severity.WARNING, self.message)
        return self

    def __repr__(self):
        return f"Finding({self.check!r}, {self.severity}, {self.message!r})"


class PermissionScanResult:
    def __init__(self, root: str):
        self.root = root
        self.readable = 0
        self.unreadable = 0
        self.unlistable = 0
        self.symlinks = 0
        self.offenders: list[str] = []
        self._offender_count = 0

    def record(self, path: str, sample_size: int = SAMPLE_SIZE) -> None:
        self._offender_count += 1
        if len(self.offenders) < sample_size:
            self.offenders.append(path)

    @property
    def total(self) -> int:
        return self.readable + self.unreadable

    @property
    def offender_count(self) -> int:
        return self._offender_count

    @property
    def ok(self) -> bool:
        return self.unreadable == 0 and self.unlistable == 0

    def __repr__(self):
        return (
            f"PermissionScanResult(readable={self.readable}, "
            f"unreadable={self.unreadable}, unlistable={self.unlistable})"
        )


def scan_permissions(
    root: str,
    sample_size: int = SAMPLE_SIZE,
    access: Callable[[str, int], bool] = os.access,
) -> PermissionScanResult:
    """
    Count readable and unreadable files and directories below `root`.

    Directories must be readable and listable. Symlinks are counted
    but not followed. The first `sample_size` offending paths are kept
    in `offenders`, unlistable directories are prefixed 'DIR_LIST_FAIL: '.
    """
    result = PermissionScanResult(root)
    stack = [root]
    while stack:
        path = stack.pop()
        if not access(path, os.R_OK):
            result.unreadable += 1
            result.record(path, sample_size)
            continue
        result.readable += 1
        if not os.path.isdir(path):
            continue
        if not access(path, os.X_OK):
            result.unlistable += 1
            result.record(f"DIR_LIST_FAIL: {path}", sample_size)
            continue
        try:
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            result.unlistable += 1
            result.record(f"DIR_LIST_FAIL: {path}", sample_size)
            continue
        subdirs = []
        for entry in entries:
            if entry.is_symlink():
                result.symlinks += 1
            elif entry.is_dir(follow_symlinks=False):
                subdirs.append(entry.path)
            elif access(entry.path, os.R_OK):
                result.readable += 1
            else:
                result.unreadable += 1
                result.record(entry.path, sample_size)
        stack.extend(reversed(subdirs))
    return result


class TransferEstimate:
    def __init__(self, files: int = 0, dirs: int = 0, size: int = 0):
        self.files = files
        self.dirs = dirs
        self.size = size

    @property
    def hours(self) -> float:
        return self.size / BYTES_PER_HOUR

    def describe(self) -> str:
        if self.hours > LONG_TRANSFER_HOURS:
            duration = f">{LONG_TRANSFER_HOURS} hours"
        elif self.hours > 1:
            duration = f"~{int(self.hours)} hours"
        else:
            duration = "<1 hour"
        return (
            f"{self.files} files, {self.dirs} directories, "
            f"{format_bytes(self.size)}, estimated transfer time {duration}"
        )


def estimate_transfer(root: str) -> TransferEstimate:
    estimate = TransferEstimate()
    for dirpath, dirnames, filenames in os.walk(root, onerror=lambda e: None):
        estimate.dirs += 1
        for name in filenames:
            try:
                estimate.size += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
            estimate.files += 1
    return estimate


def check_permissions(
    root: str, access: Callable[[str, int], bool] = os.access
) -> tuple[PermissionScanResult, list[Finding]]:
    check = "permissions"
    if not os.path.exists(root):
        return PermissionScanResult(root), [
            Finding(check, Severity.ERROR, f"Path does not exist: {root}")
        ]
    logger.info("Scanning file permissions of %s (may take a while)", root)
    scan = scan_permissions(root, access=access)
    findings = [
        Finding(
            check,
            Severity.INFO,
            f"{scan.total} items scanned: {scan.readable} readable, "
            f"{scan.unreadable} unreadable, {scan.unlistable} unlistable directories",
        )
    ]
    if not scan.ok:
        sample = "\n  ".join(scan.offenders)
        more = scan.offender_count - len(scan.offenders)
        if more > 0:
            sample += f"\n  ... and {more} more"
        findings.append(
            Finding(
                check,
                Severity.ERROR,
                f"Found {scan.offender_count} files/directories with permission "
                f"issues. These will not be transferred. Fix the permissions "
                f"(e.g. 'chmod -R u+rX') or ask the owner:\n  {sample}",
            )
        )
    if scan.symlinks:
        findings.append(
            Finding(
                check,
                Severity.WARNING,
                f"Found {scan.symlinks} symbolic links. The object store has no "
                f"links, they are skipped unless links are copied as files.",
            )
        )
    return scan, findings


def _existing_ancestor(path: str) -> str:
    while path and not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return path


def check_capacity(
    source: str,
    log_dir: str | None,
    disk_usage: Callable = shutil.disk_usage,
) -> list[Finding]:
    """Advisory only, low space never fails the preflight."""
    findings = []
    if log_dir:
        parent = _existing_ancestor(os.path.dirname(log_dir.rstrip("/")) or "/")
        free = disk_usage(parent).free
        logger.debug("Available space for logs: %s", format_bytes(free))
        if free < LOG_DIR_MIN_FREE:
            findings.append(
                Finding(
                    "capacity",
                    Severity.WARNING,
                    f"Low disk space for logs: {format_bytes(free)} available at "
                    f"{parent}. Consider a different --log-dir.",
                )
            )
    if os.path.isdir(source):
        free = disk_usage(source).free
        logger.debug("Available space at source: %s", format_bytes(free))
        if free < SOURCE_MIN_FREE:
            findings.append(
                Finding(
                    "capacity",
                    Severity.WARNING,
                    f"Low disk space at source: {format_bytes(free)} available. "
                    f"This may affect creation of empty directory markers.",
                )
            )
    return findings


def check_tool_version(
    rclone: Rclone,
    minimum: tuple[int, int, int] = MIN_VERSION,
    pinned_module: str | None = None,
) -> list[Finding]:
    check = "version"
    try:
        version = rclone.version()
    except ToolError as e:
        if pinned_module:
            return [
                Finding(
                    check,
                    Severity.WARNING,
                    f"{e}. The job scripts load the module {pinned_module!r}.",
                )
            ]
        return [Finding(check, Severity.ERROR, str(e))]

    if version >= minimum:
        return [Finding(check, Severity.INFO, f"Using rclone {version_str(version)}")]
    msg = (
        f"rclone {version_str(version)} is older than the required "
        f"{version_str(minimum)}"
    )
    if pinned_module:
        return [
            Finding(
                check,
                Severity.WARNING,
                f"{msg}. The job scripts load the module {pinned_module!r}.",
            )
        ]
    return [
        Finding(
            check,
            Severity.ERROR,
            f"{msg}. Update rclone or configure TIERARCHIVE_RCLONE_MODULE.",
        )
    ]


def check_connectivity(rclone: Rclone, remote: str, bucket: str) -> list[Finding]:
    check = "connectivity"
    try:
        reachable = rclone.remote_reachable(remote)
    except ToolError as e:
        return [Finding(check, Severity.ERROR, str(e))]
    if not reachable:
        return [
            Finding(
                check,
                Severity.ERROR,
                f"Cannot connect to remote {remote!r}. Check your rclone "
                f"configuration with 'rclone config show {remote}'.",
            )
        ]
    if not rclone.bucket_accessible(remote, bucket):
        return [
            Finding(
                check,
                Severity.WARNING,
                f"Cannot access bucket {bucket!r} on remote {remote!r}. This may "
                f"be normal if the bucket does not exist yet, it is created by "
                f"the first transfer.",
            )
        ]
    return [Finding(check, Severity.INFO, f"Bucket is accessible: {remote}:{bucket}")]


class PreflightReport:
    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.findings: list[Finding] = []
        self.scan: PermissionScanResult | None = None
        self.estimate: TransferEstimate | None = None

    def extend(self, findings: list[Finding]) -> None:
        for finding in findings:
            log = {
                Severity.INFO: logger.info,
                Severity.WARNING: logger.warning,
                Severity.ERROR: logger.error,
            }[finding.severity]
            log("[%s] %s", finding.check, finding.message)
            self.findings.append(finding)

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity is Severity.WARNING]

    @property
    def passed(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """
        Abort with PreconditionError if any error finding remains.

        Dry-run mode is no exception. It only demotes the permission
        findings, which `run_preflight` does before they get here.
        """
        if self.passed:
            return
        details = "\n".join(f"  [{f.check}] {f.message}" for f in self.errors)
        raise PreconditionError(
            f"Pre-flight checks failed:\n{details}\n"
            f"Fix the issues and plan again. Single checks can be skipped with "
            f"the --skip-permissions, --skip-version-check and "
            f"--skip-connectivity options."
        )

    def summary(self) -> str:
        if self.passed:
            return "All pre-flight checks passed - ready to proceed"
        checks = ", ".join(sorted({f.check for f in self.errors}))
        return f"Some pre-flight checks failed ({checks}) - review issues above"


def run_preflight(
    source: str,
    log_dir: str | None,
    remote: str,
    bucket: str,
    rclone: Rclone | None = None,
    dry_run: bool = False,
    check_perms: bool = True,
    skip_version_check: bool = False,
    skip_connectivity: bool = False,
    pinned_module: str | None = None,
    access: Callable[[str, int], bool] = os.access,
    disk_usage: Callable = shutil.disk_usage,
) -> PreflightReport:
    """
    Run all pre-flight checks of a transfer and aggregate the findings.

    Every check runs, even if an earlier one failed, so a single
    invocation reports as many problems as possible. In dry-run mode
    permission problems are reported as warnings.
    """
    rclone = rclone or Rclone()
    report = PreflightReport(dry_run=dry_run)

    if check_perms:
        scan, findings = check_permissions(source, access=access)
        report.scan = scan
        if dry_run:
            findings = [f.demoted() for f in findings]
        report.extend(findings)
    else:
        report.extend(
            [Finding("permissions", Severity.INFO, "Skipping permission checks")]
        )

    report.extend(check_capacity(source, log_dir, disk_usage=disk_usage))

    if skip_version_check:
        report.extend([Finding("version", Severity.INFO, "Skipping version check")])
    else:
        report.extend(check_tool_version(rclone, pinned_module=pinned_module))

    if skip_connectivity:
        report.extend(
            [Finding("connectivity", Severity.INFO, "Skipping connectivity check")]
        )
    else:
        report.extend(check_connectivity(rclone, remote, bucket))

    if os.path.isdir(source):
        report.estimate = estimate_transfer(source)
        severity = (
            Severity.WARNING
            if report.estimate.hours > LONG_TRANSFER_HOURS
            else Severity.INFO
        )
        message = report.estimate.describe()
        if severity is Severity.WARNING:
            message += ". Consider breaking this into smaller transfers."
        report.extend([Finding("estimate", severity, message)])

    logger.info(report.summary())
    return report
