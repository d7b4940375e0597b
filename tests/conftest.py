import os

import pytest
import dotenv as dotenv_lib

from tierarchive.context import RunContext

dotenvs = []


# Here we add the '--env-file' option to pytest.
# Settings for tests against a real cluster (remote, endpoint,
# rclone module, ...) are kept in dotenv files and loaded into
# the environment, without overriding already set variables.
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "-E",
        "--env-file",
        metavar="FILE",  # argument name in help message
        dest="dotenv",  # internal name
        action="append",
        default=[],
        help="A dotenv file with TIERARCHIVE_* settings (multi-allowed)",
    )


def pytest_configure(config: pytest.Config):
    files = config.getoption("dotenv", []) or []
    for file in files:
        dotenvs.append(file)
        for key, value in dotenv_lib.dotenv_values(file).items():
            if value is not None:
                os.environ.setdefault(key, value)


@pytest.fixture
def ctx(tmp_path) -> RunContext:
    return RunContext(
        group="lab",
        project_root=str(tmp_path / "projects" / "lab"),
        threads=8,
        scripts_dir="/opt/tierarchive",
        python="python3",
    )


@pytest.fixture
def tree(tmp_path):
    """
    A small source tree:

    data/
        a.txt
        sub/b.txt
        empty1/
        nested/empty2/
    """
    root = tmp_path / "data"
    (root / "sub").mkdir(parents=True)
    (root / "empty1").mkdir()
    (root / "nested" / "empty2").mkdir(parents=True)
    (root / "a.txt").write_text("a")
    (root / "sub" / "b.txt").write_text("bb")
    return root
