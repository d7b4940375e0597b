#!/usr/bin/env python3
from __future__ import annotations

import re

from tierarchive.errors import ToolError
from tierarchive.tools import CommandLineTool

__all__ = ["Rclone", "parse_version", "MIN_VERSION"]

MIN_VERSION = (1, 67, 0)

_VERSION_PATTERN = re.compile(r"rclone v?(\d+)\.(\d+)(?:\.(\d+))?")


def parse_version(text: str) -> tuple[int, int, int] | None:
    """Parse the first line of `rclone --version` (e.g. 'rclone v1.71.0')."""
    match = _VERSION_PATTERN.search(text)
    if match is None:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def version_str(version: tuple[int, ...]) -> str:
    return ".".join(str(v) for v in version)


class Rclone(CommandLineTool):
    """Wrapper for the few read-only rclone calls made at planning time."""

    executable = "rclone"
    install_hint = (
        "Install rclone from <https://rclone.org/install/> or load the "
        "rclone environment module."
    )

    def version(self) -> tuple[int, int, int]:
        out = self._command(["--version"])
        version = parse_version(out.splitlines()[0] if out else "")
        if version is None:
            raise ToolError(f"Unable to parse rclone version from: {out!r}")
        return version

    def listremotes(self) -> list[str]:
        out = self._command(["listremotes"])
        return [line.strip().rstrip(":") for line in out.splitlines() if line.strip()]

    def remote_reachable(self, remote: str, timeout: float | None = 120) -> bool:
        return self._succeeds(["lsd", f"{remote}:"], timeout=timeout)

    def bucket_accessible(
        self, remote: str, bucket: str, timeout: float | None = 120
    ) -> bool:
        return self._succeeds(["lsd", f"{remote}:{bucket}"], timeout=timeout)

    def prefix_exists(self, remote: str, bucket: str, prefix: str = "") -> bool:
        """True if at least one object exists below `bucket/prefix`."""
        target = f"{remote}:{bucket}/{prefix}" if prefix else f"{remote}:{bucket}"
        ret = self._run(["lsf", "--max-depth", "1", target])
        return ret.ok and bool(ret.stdout.strip())
