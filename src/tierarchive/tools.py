#!/usr/bin/env python3
from __future__ import annotations

import logging
import shutil
import subprocess

from tierarchive.errors import ToolError, ToolNotFoundError

__all__ = ["CommandLineTool", "CommandResult"]


class CommandResult:
    def __init__(self, args: list[str], returncode: int, stdout: str, stderr: str):
        self.args = args
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def __repr__(self):
        return f"CommandResult({self.args!r}, returncode={self.returncode})"


class CommandLineTool:
    """
    Thin wrapper around an external command line tool.

    Subclasses define `executable` and an `install_hint`, that is
    shown to the user if the tool cannot be found.
    """

    executable: str = ""
    install_hint: str = ""

    def __init__(self, executable: str | None = None, env: dict | None = None):
        if executable is not None:
            self.executable = executable
        self.env = env
        self.logger = logging.getLogger(f"{self.executable}-wrapper")

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def which(self) -> str | None:
        return shutil.which(self.executable)

    def _run(self, command: list[str], timeout: float | None = None) -> CommandResult:
        args = [self.executable] + command
        self.logger.debug("running: %s", " ".join(args))
        try:
            ret = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                env=self.env,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(
                f"Unable to find {self.executable!r} in PATH. {self.install_hint}"
            ) from e
        return CommandResult(args, ret.returncode, ret.stdout, ret.stderr)

    def _command(
        self, command: list[str], confidential=False, timeout: float | None = None
    ) -> str:
        """Run the tool and return stdout. A non-zero exit raises ToolError."""
        ret = self._run(command, timeout=timeout)
        if not ret.ok:
            msg = (
                ret.stderr.strip()
                or ret.stdout.strip()
                or f"Unspecified error: {self.executable} exited with {ret.returncode}"
            )
            self.logger.debug(msg)
            raise ToolError(
                f"'{self.executable} {command[0]}' failed: {msg}",
                returncode=ret.returncode,
                stderr=ret.stderr,
            )
        if not confidential:
            self.logger.debug(ret.stdout)
        return ret.stdout

    def _succeeds(self, command: list[str], timeout: float | None = None) -> bool:
        return self._run(command, timeout=timeout).ok
