#! /usr/bin/env python3
# -*- coding: utf-8 -*-

import logging

import click

from tierarchive.common import ensure_group_dir, get_envvar, setup_logging
from tierarchive.context import RunContext
from tierarchive.emptydirs import EmptyDirMode
from tierarchive.errors import PreconditionError, TierArchiveError
from tierarchive.naming import PATHNAME_MAX
from tierarchive.preflight import run_preflight
from tierarchive.rclone import Rclone
from tierarchive.stages import TransferJob, plan_delivery, write_filelist, write_plan

logger = logging.getLogger("delivery-plan")


@click.command()
@click.option("-g", "--group", envvar="TIERARCHIVE_GROUP")
@click.option(
    "-p",
    "--path",
    "source",
    help="Data delivery directory [default: <project root>/data_delivery].",
)
@click.option(
    "-b", "--bucket", help="Tier 2 bucket [default: data-delivery-<group>]."
)
@click.option("-r", "--remote", envvar="TIERARCHIVE_REMOTE")
@click.option(
    "-l",
    "--log-dir",
    help="Parent of the working directory "
    "[default: <project root>/shared/tierarchive/delivery].",
)
@click.option(
    "-e",
    "--empty-dirs",
    "empty_dir_mode",
    type=click.Choice([m.value for m in EmptyDirMode]),
    default=EmptyDirMode.SENTINEL.value,
    show_default=True,
)
@click.option("-d", "--dry-run", is_flag=True)
@click.option("-t", "--threads", type=int, envvar="TIERARCHIVE_THREADS")
@click.option("--skip-version-check", is_flag=True)
@click.option("--skip-connectivity", is_flag=True)
@click.option("-v", "--verbose", is_flag=True)
def main(
    group,
    source,
    bucket,
    remote,
    log_dir,
    empty_dir_mode,
    dry_run,
    threads,
    skip_version_check,
    skip_connectivity,
    verbose,
):
    """
    Plan the archival of a group's data delivery directory to tier 2.

    New data is copied to the bucket root and verified. The delivery
    directory is never modified or deleted.
    """
    setup_logging("DEBUG" if verbose else get_envvar("LOG_LEVEL", "INFO"))

    try:
        ctx = RunContext.from_env(group=group, remote=remote, threads=threads)
        job = TransferJob.for_delivery(
            ctx,
            source=source,
            bucket=bucket,
            log_dir=log_dir,
            empty_dir_mode=EmptyDirMode(empty_dir_mode),
            dry_run=dry_run,
        )
        # the delivery tree is read-only, its permissions are not ours to fix
        rclone = Rclone(env=None if skip_connectivity else ctx.rclone_env())
        report = run_preflight(
            job.source,
            job.workdir,
            job.remote,
            job.bucket,
            rclone=rclone,
            dry_run=dry_run,
            check_perms=False,
            skip_version_check=skip_version_check,
            skip_connectivity=skip_connectivity,
            pinned_module=ctx.rclone_module,
        )
        report.raise_for_errors()

        ensure_group_dir(job.workdir)
        filelist, too_long = write_filelist(job)
        if too_long:
            raise PreconditionError(
                f"{len(too_long)} pathnames are too long (>= {PATHNAME_MAX} "
                f"characters) and cannot be transferred. Review them in "
                f"{job.artifact('filelist.paths_too_long.txt')}. A symbolic link "
                f"to a parent directory may shorten the paths."
            )
        paths = write_plan(job, plan_delivery(job, ctx))
    except TierArchiveError as e:
        logger.error(str(e))
        raise click.ClickException(str(e))

    click.echo(f"Archive working directory: {job.workdir}")
    click.echo(f"Review the file list: {filelist}")
    click.echo(f"Then launch the copy and verify job: sbatch {paths[0]}")


if __name__ == "__main__":
    main()
