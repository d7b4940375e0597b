#!/usr/bin/env python3

import os
from unittest import mock

import pytest
from click.testing import CliRunner

import run_archive_plan
import run_delivery_plan
import run_inventory_plan
from tierarchive.preflight import Finding, PreflightReport, Severity
from tierarchive.stages import TransferJob


@pytest.fixture
def env(ctx):
    values = {
        "TIERARCHIVE_GROUP": ctx.group,
        "TIERARCHIVE_PROJECT_ROOT": ctx.project_root,
        "TIERARCHIVE_SCRIPTS_DIR": ctx.scripts_dir,
        "TIERARCHIVE_THREADS": "4",
        "TIERARCHIVE_REMOTE": "ceph",
    }
    with mock.patch.dict(os.environ, values):
        yield values


def passing_report(*args, **kwargs):
    return PreflightReport(dry_run=kwargs.get("dry_run", False))


def failing_report(*args, **kwargs):
    dry_run = kwargs.get("dry_run", False)
    finding = Finding("permissions", Severity.ERROR, "3 files are not readable")
    report = PreflightReport(dry_run=dry_run)
    report.extend([finding.demoted() if dry_run else finding])
    return report


def outdated_rclone_report(*args, **kwargs):
    report = PreflightReport(dry_run=kwargs.get("dry_run", False))
    report.extend([Finding("version", Severity.ERROR, "rclone 1.50.0 is too old")])
    return report


def test_archive_plan(env, tree, tmp_path):
    workdir = tmp_path / "w"
    with mock.patch.object(run_archive_plan, "run_preflight", passing_report):
        result = CliRunner().invoke(
            run_archive_plan.main,
            ["-p", str(tree), "-b", "bucket/", "-l", str(workdir)],
        )
    assert result.exit_code == 0, result.output
    assert sorted(os.listdir(workdir)) == [
        "data.1_copy_and_verify.slurm",
        "data.2_delete.slurm",
        "data.3_restore.slurm",
        "data.readme.md",
        "job.json",
    ]
    job = TransferJob.load(str(workdir))
    assert job.threads == 4
    assert job.bucket == "bucket"


def test_archive_plan__preflight_fails(env, tree, tmp_path):
    workdir = tmp_path / "w"
    with mock.patch.object(run_archive_plan, "run_preflight", failing_report):
        result = CliRunner().invoke(
            run_archive_plan.main,
            ["-p", str(tree), "-b", "bucket", "-l", str(workdir)],
        )
    assert result.exit_code == 1
    assert "[permissions] 3 files are not readable" in result.output
    assert not workdir.exists()


def test_archive_plan__dry_run_proceeds(env, tree, tmp_path):
    workdir = tmp_path / "w"
    with mock.patch.object(run_archive_plan, "run_preflight", failing_report):
        result = CliRunner().invoke(
            run_archive_plan.main,
            ["-p", str(tree), "-b", "bucket", "-l", str(workdir), "--dry-run"],
        )
    assert result.exit_code == 0, result.output
    assert TransferJob.load(str(workdir)).dry_run


def test_archive_plan__dry_run_keeps_tool_errors_fatal(env, tree, tmp_path):
    workdir = tmp_path / "w"
    with mock.patch.object(run_archive_plan, "run_preflight", outdated_rclone_report):
        result = CliRunner().invoke(
            run_archive_plan.main,
            ["-p", str(tree), "-b", "bucket", "-l", str(workdir), "--dry-run"],
        )
    assert result.exit_code == 1
    assert "[version] rclone 1.50.0 is too old" in result.output
    assert not workdir.exists()


def test_archive_plan__double_slash(env, tree):
    result = CliRunner().invoke(
        run_archive_plan.main, ["-p", f"{tree.parent}//data", "-b", "bucket"]
    )
    assert result.exit_code == 1
    assert "double slash" in result.output


def test_delivery_plan(env, tree, tmp_path):
    with mock.patch.object(run_delivery_plan, "run_preflight", passing_report):
        result = CliRunner().invoke(
            run_delivery_plan.main, ["-p", str(tree), "-l", str(tmp_path / "logs")]
        )
    assert result.exit_code == 0, result.output
    (workdir,) = os.listdir(tmp_path / "logs")
    assert workdir.startswith("data-delivery-lab___delivery_")
    job = TransferJob.load(str(tmp_path / "logs" / workdir))
    assert os.path.isfile(job.artifact("filelist.txt"))
    assert not os.path.exists(job.artifact("2_delete.slurm"))


def test_delivery_plan__paths_too_long(env, tree, tmp_path):
    with mock.patch.object(run_delivery_plan, "run_preflight", passing_report):
        with mock.patch.object(
            run_delivery_plan, "write_filelist", return_value=("list", ["x" * 1024])
        ):
            result = CliRunner().invoke(
                run_delivery_plan.main,
                ["-p", str(tree), "-l", str(tmp_path / "logs")],
            )
    assert result.exit_code == 1
    assert "1 pathnames are too long" in result.output


def test_inventory_plan(env, tmp_path):
    result = CliRunner().invoke(
        run_inventory_plan.main, ["-l", str(tmp_path / "logs"), "--md5"]
    )
    assert result.exit_code == 0, result.output
    (workdir,) = os.listdir(tmp_path / "logs")
    assert workdir.startswith("inventory_lab_")
    assert "sbatch" in result.output
