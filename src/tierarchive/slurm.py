#!/usr/bin/env python3
from __future__ import annotations

import logging
import os
import shlex
import stat

from tierarchive import __version__

__all__ = ["JobUnit"]

logger = logging.getLogger("slurm")

SCRIPT_MODE = stat.S_IRWXU | stat.S_IRWXG


class JobUnit:
    """
    A self-contained batch job script.

    The script carries its resource directives and a linear list of
    shell commands. It runs under errexit/pipefail, so any failing
    command aborts the whole unit with a non-zero exit code.
    """

    def __init__(
        self,
        name: str,
        time: str = "24:00:00",
        cpus: int = 4,
        memory: str = "16gb",
        mail_type: str = "ALL",
        mail_user: str | None = None,
        partition: str | None = None,
        workdir: str | None = None,
    ):
        self.name = name
        self.time = time
        self.cpus = cpus
        self.memory = memory
        self.mail_type = mail_type
        self.mail_user = mail_user
        self.partition = partition
        self.workdir = workdir
        self.commands: list[str] = []

    def add(self, *lines: str) -> JobUnit:
        self.commands.extend(lines)
        return self

    def section(self, title: str) -> JobUnit:
        self.commands.extend(["", f"# {title}"])
        return self

    def echo(self, message: str) -> JobUnit:
        # messages are generated by us, but may contain user paths
        escaped = message.replace("\\", "\\\\").replace('"', '\\"')
        escaped = escaped.replace("`", "\\`").replace("$", "\\$")
        self.commands.append(f'echo "{escaped}"')
        return self

    def directives(self) -> list[str]:
        lines = [
            f"#SBATCH --job-name={self.name}",
            f"#SBATCH --time={self.time}",
            "#SBATCH --ntasks=1",
            f"#SBATCH --cpus-per-task={self.cpus}",
            f"#SBATCH --mem={self.memory}",
            f"#SBATCH --mail-type={self.mail_type}",
        ]
        if self.mail_user:
            lines.append(f"#SBATCH --mail-user={self.mail_user}")
        if self.partition:
            lines.append(f"#SBATCH --partition={self.partition}")
        lines += ["#SBATCH --error=%x.e%j", "#SBATCH --output=%x.o%j"]
        return lines

    def render(self) -> str:
        lines = ["#!/bin/bash"]
        lines += self.directives()
        lines += [
            "",
            f"# Generated by tierarchive {__version__}",
            "",
            "set -o errexit",
            "set -o nounset",
            "set -o pipefail",
            "set -o errtrace",
            "trap 'echo \"ERROR [$(date)] line ${LINENO}: ${BASH_COMMAND}\" >&2' ERR",
            "",
            "# group-writable files (660) and directories (770)",
            "umask 0007",
        ]
        if self.workdir:
            lines.append(f"cd {shlex.quote(self.workdir)}")
        lines += self.commands
        return "\n".join(lines) + "\n"

    def write(self, path: str) -> str:
        with open(path, "w") as f:
            f.write(self.render())
        os.chmod(path, SCRIPT_MODE)
        logger.debug("Created job script: %s", path)
        return path
