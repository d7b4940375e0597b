#! /usr/bin/env python3
# -*- coding: utf-8 -*-

import logging

import click

from tierarchive.common import get_envvar, setup_logging
from tierarchive.context import RunContext
from tierarchive.emptydirs import EmptyDirMode
from tierarchive.errors import TierArchiveError
from tierarchive.preflight import run_preflight
from tierarchive.rclone import Rclone
from tierarchive.stages import TransferJob, plan_transfer, write_plan

logger = logging.getLogger("archive-plan")


@click.command()
@click.option("-p", "--path", "source", required=True, help="Directory to archive.")
@click.option("-b", "--bucket", required=True, help="Name of the tier 2 bucket.")
@click.option("-r", "--remote", envvar="TIERARCHIVE_REMOTE", help="rclone remote.")
@click.option(
    "--prefix",
    help="Object prefix inside the bucket [default: basename of the path].",
)
@click.option(
    "-l",
    "--log-dir",
    "workdir",
    help="Working directory of the job [default: <path>___archive_<timestamp>].",
)
@click.option(
    "-e",
    "--empty-dirs",
    "empty_dir_mode",
    type=click.Choice([m.value for m in EmptyDirMode]),
    default=EmptyDirMode.NATIVE.value,
    show_default=True,
    help="How empty directories are preserved in tier 2.",
)
@click.option(
    "--restore-empty-dirs",
    is_flag=True,
    help="Ask rclone to recreate empty directories on restore, even "
    "if they were not stored as directory markers.",
)
@click.option("-d", "--dry-run", is_flag=True, help="Pass --dry-run to rclone.")
@click.option("-t", "--threads", type=int, envvar="TIERARCHIVE_THREADS")
@click.option("--skip-permissions", is_flag=True, help="Skip the permission scan.")
@click.option("--skip-version-check", is_flag=True)
@click.option("--skip-connectivity", is_flag=True)
@click.option("-v", "--verbose", is_flag=True)
def main(
    source,
    bucket,
    remote,
    prefix,
    workdir,
    empty_dir_mode,
    restore_empty_dirs,
    dry_run,
    threads,
    skip_permissions,
    skip_version_check,
    skip_connectivity,
    verbose,
):
    """
    Plan the archival of a directory to tier 2.

    Writes three job scripts (copy and verify, delete, restore) into the
    working directory. Nothing is transferred until they are submitted.
    """
    setup_logging("DEBUG" if verbose else get_envvar("LOG_LEVEL", "INFO"))

    try:
        ctx = RunContext.from_env(remote=remote, threads=threads)
        job = TransferJob.for_archive(
            source,
            bucket,
            ctx,
            prefix=prefix,
            workdir=workdir,
            empty_dir_mode=EmptyDirMode(empty_dir_mode),
            dry_run=dry_run,
            restore_empty_dirs=restore_empty_dirs,
        )
        logger.info("Source: %s", job.source)
        logger.info("Destination: %s", job.destination)

        rclone = Rclone(env=None if skip_connectivity else ctx.rclone_env())
        report = run_preflight(
            job.source,
            job.workdir,
            job.remote,
            job.bucket,
            rclone=rclone,
            dry_run=dry_run,
            check_perms=not skip_permissions,
            skip_version_check=skip_version_check,
            skip_connectivity=skip_connectivity,
            pinned_module=ctx.rclone_module,
        )
        report.raise_for_errors()

        stages = plan_transfer(job, ctx)
        paths = write_plan(job, stages)
    except TierArchiveError as e:
        logger.error(str(e))
        raise click.ClickException(str(e))

    click.echo(f"Transfer scripts created in: {job.workdir}")
    for path in paths:
        click.echo(f"  {path}")
    click.echo("Review and submit the job scripts in order to complete the transfer.")


if __name__ == "__main__":
    main()
