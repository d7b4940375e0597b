from __future__ import annotations

import typing as _t


class PolicyStatementT(_t.TypedDict):
    Sid: _t.NotRequired[str]
    Effect: str
    Principal: str | dict[str, list[str]]
    Action: list[str]
    Resource: list[str]


class PolicyT(_t.TypedDict):
    Version: str
    Statement: list[PolicyStatementT]


class TransferJobT(_t.TypedDict):
    profile: str
    source: str
    bucket: str
    prefix: str
    remote: str
    workdir: str
    name: str
    empty_dir_mode: str
    threads: int
    dry_run: bool
    copy_links: bool
    excludes: list[str]
    restore_empty_dirs: bool
    created_at: str
