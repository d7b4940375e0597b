#!/usr/bin/env python3
from __future__ import annotations

import logging
import os
import stat
from datetime import datetime
from typing import Any

no_default = type("no_default", (), {})

MB = 1024 * 1024
GB = 1024 * MB


def get_envvar(name, default: Any = no_default, cast_to: type = None, cast_None=True):
    val = os.environ.get(name)
    if val is None:
        if default is no_default:
            raise EnvironmentError(f"Missing environment variable {name!r}.")
        return default
    elif val == "None" and cast_None:
        return None
    elif cast_to is not None:
        try:
            if cast_to is bool:
                return get_envvar_as_bool(name)
            return cast_to(val)
        except Exception:
            raise TypeError(
                f"Could not cast environment variable {name!r} "
                f"to {cast_to}. Value: {val}"
            ) from None
    return val


def get_envvar_as_bool(
    name, false_list=("no", "false", "0", "null", "none"), empty_is_False: bool = False
) -> bool:
    """
    Return True if an environment variable is set and its value
    is not in the false_list.
    Return False if an environment variable is unset or if its value
    is in the false_list.

    If 'empty_is_False' is True:
        Same logic as above, but an empty string is considered False

    The false_list is not case-sensitive. (faLsE == FALSE = false)
    """
    val = os.environ.get(name, None)
    if val is None:
        return False
    if val == "":
        return not empty_is_False
    return val.lower() not in false_list


def timestamp_token(now: datetime | None = None) -> str:
    """
    Return a sub-second timestamp for artifact and directory names.

    Two planner runs against the same target must not collide, so the
    microseconds are always part of the token (e.g. 2024-05-01-134501-042113).
    """
    now = now or datetime.now()
    return now.strftime("%Y-%m-%d-%H%M%S-%f")


def ensure_group_dir(path: str) -> str:
    """Create `path` (if missing) and make it group-writable."""
    if not os.path.isdir(path):
        logging.getLogger("common").info("Creating directory: %r", path)
        os.makedirs(path, exist_ok=True)
    mode = os.stat(path).st_mode
    os.chmod(path, mode | stat.S_IRWXG)
    return path


def format_bytes(value: int) -> str:
    units = ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]
    size = float(value)
    for unit in units:
        if abs(size) < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(size)}{unit}"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}{units[-1]}"


def setup_logging(log_level="INFO"):
    """
    Setup logging.

    Globally setup logging and set the log level of the
    root logger to the given level.
    """

    format = (
        "[%(asctime)s] %(process)s %(levelname)-6s %(name)s: %(funcName)s: %(message)s"
    )
    logging.basicConfig(
        level=log_level,
        format=format,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
