#!/usr/bin/env python3
from __future__ import annotations

import os
import shlex
import sys
from dataclasses import dataclass, field, replace

from tierarchive.common import get_envvar
from tierarchive.identity import IdentityMapper, current_group

__all__ = ["RunContext", "AUTO_REMOTE", "DEFAULT_THREADS"]

# remote name that is configured on the fly from s3info keys
AUTO_REMOTE = "myremote"
DEFAULT_THREADS = 16


def _default_scripts_dir() -> str:
    # the run_*.py scripts live next to the package directory
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@dataclass(frozen=True)
class RunContext:
    """
    Everything a command needs to know about its environment.

    Built once per invocation (from command options and environment
    variables) and passed down explicitly. Nothing below the command
    layer reads the process environment or the current group itself.
    """

    group: str
    project_root: str
    remote: str = AUTO_REMOTE
    s3_endpoint: str = "localhost:9000"
    s3_secure: bool = True
    s3_provider: str = "Ceph"
    threads: int = DEFAULT_THREADS
    rclone_module: str | None = None
    partition: str | None = None
    mail_user: str | None = None
    scripts_dir: str = field(default_factory=_default_scripts_dir)
    python: str = field(default_factory=lambda: sys.executable or "python3")

    @classmethod
    def from_env(cls, **overrides) -> RunContext:
        """
        Create a context from TIERARCHIVE_* environment variables.

        Keyword arguments that are not None take precedence over the
        environment, so click options can be passed through directly.
        """
        group = overrides.get("group") or get_envvar("TIERARCHIVE_GROUP", None)
        group = group or current_group()
        values = dict(
            group=group,
            project_root=get_envvar(
                "TIERARCHIVE_PROJECT_ROOT", f"/projects/standard/{group}"
            ),
            remote=get_envvar("TIERARCHIVE_REMOTE", AUTO_REMOTE),
            s3_endpoint=get_envvar("TIERARCHIVE_S3_ENDPOINT", "localhost:9000"),
            s3_secure=get_envvar("TIERARCHIVE_S3_SECURE", True, cast_to=bool),
            s3_provider=get_envvar("TIERARCHIVE_S3_PROVIDER", "Ceph"),
            threads=get_envvar("TIERARCHIVE_THREADS", DEFAULT_THREADS, cast_to=int),
            rclone_module=get_envvar("TIERARCHIVE_RCLONE_MODULE", None),
            partition=get_envvar("TIERARCHIVE_PARTITION", None),
            mail_user=get_envvar("TIERARCHIVE_MAIL_USER", None),
            scripts_dir=get_envvar("TIERARCHIVE_SCRIPTS_DIR", _default_scripts_dir()),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **kwargs) -> RunContext:
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})

    @property
    def shared_dir(self) -> str:
        return os.path.join(self.project_root, "shared", "tierarchive")

    def default_log_dir(self, command: str) -> str:
        return os.path.join(self.shared_dir, command)

    @property
    def data_delivery_dir(self) -> str:
        return os.path.join(self.project_root, "data_delivery")

    @property
    def disaster_recovery_dir(self) -> str:
        return os.path.join(self.project_root, "shared", "disaster_recovery")

    @property
    def uses_auto_remote(self) -> bool:
        return self.remote == AUTO_REMOTE

    @property
    def endpoint_url(self) -> str:
        if "://" in self.s3_endpoint:
            return self.s3_endpoint
        scheme = "https" if self.s3_secure else "http"
        return f"{scheme}://{self.s3_endpoint}"

    def remote_settings(self) -> dict[str, str]:
        """rclone settings of the auto remote, without credentials."""
        return {
            "TYPE": "s3",
            "ENV_AUTH": "false",
            "PROVIDER": self.s3_provider,
            "ENDPOINT": self.endpoint_url,
            "ACL": "private",
        }

    def rclone_env(self, mapper: IdentityMapper | None = None) -> dict[str, str] | None:
        """
        Process environment for rclone calls made while planning.

        A named remote comes from the user's rclone config and needs
        nothing. The auto remote only exists through environment
        variables, so it is configured here with the keys from s3info.
        """
        if not self.uses_auto_remote:
            return None
        access_key, secret_key = (mapper or IdentityMapper()).keys()
        prefix = f"RCLONE_CONFIG_{self.remote.upper()}"
        env = dict(os.environ)
        env.update({f"{prefix}_{k}": v for k, v in self.remote_settings().items()})
        env[f"{prefix}_ACCESS_KEY_ID"] = access_key
        env[f"{prefix}_SECRET_ACCESS_KEY"] = secret_key
        return env

    def gate_command(self) -> str:
        """Command prefix the emitted job scripts use to call the stage gate."""
        script = os.path.join(self.scripts_dir, "run_stage_gate.py")
        return f"{shlex.quote(self.python)} {shlex.quote(script)}"
