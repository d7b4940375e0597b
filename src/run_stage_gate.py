#! /usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Stage gate of the emitted job scripts.

Every subcommand takes the working directory of a planned job and
reads the job parameters from its job.json. A failing check exits
with status 1, which aborts the calling job script.
"""

import logging
import os
import shutil
from typing import NoReturn

import click

from tierarchive.common import get_envvar, setup_logging
from tierarchive.emptydirs import (
    remove_sentinels,
    restore_empty_dirs,
    stage_sentinels,
    write_sentinels,
)
from tierarchive.errors import TierArchiveError
from tierarchive.gate import (
    check_restore_preconditions,
    mark_success,
    require_success_marker,
    reset_verification,
)
from tierarchive.stages import TransferJob, job_state

logger = logging.getLogger("stage-gate")

workdir_argument = click.argument(
    "workdir", type=click.Path(exists=True, file_okay=False)
)


def fail(e: TierArchiveError) -> NoReturn:
    logger.error(str(e))
    raise click.ClickException(str(e))


@click.group()
@click.option("-v", "--verbose", is_flag=True)
def cli(verbose):
    setup_logging("DEBUG" if verbose else get_envvar("LOG_LEVEL", "INFO"))


@cli.command()
@workdir_argument
def mark(workdir):
    """Write the success marker if the verification log is clean."""
    try:
        job = TransferJob.load(workdir)
        result = mark_success(workdir, job.verify_log)
    except TierArchiveError as e:
        fail(e)
    click.echo(f"Verification passed ({result.describe()}), success marker written.")


@cli.command()
@workdir_argument
def reset(workdir):
    """Remove the verification log and the success marker of an earlier run."""
    try:
        job = TransferJob.load(workdir)
    except TierArchiveError as e:
        fail(e)
    removed = reset_verification(workdir, job.verify_log)
    click.echo(f"Removed {len(removed)} files of an earlier verification.")


@cli.command()
@workdir_argument
def check(workdir):
    """Exit non-zero unless the success marker exists."""
    try:
        path = require_success_marker(workdir)
    except TierArchiveError as e:
        fail(e)
    click.echo(f"Success marker found: {path}")


@cli.command("restore-check")
@workdir_argument
def restore_check(workdir):
    """Check that the data of the job exists in tier 2."""
    try:
        job = TransferJob.load(workdir)
        check_restore_preconditions(job.source, job.remote, job.bucket, job.prefix)
    except TierArchiveError as e:
        fail(e)


@cli.command("restore-dirs")
@workdir_argument
def restore_dirs(workdir):
    """Turn restored sentinel files back into empty directories."""
    try:
        job = TransferJob.load(workdir)
    except TierArchiveError as e:
        fail(e)
    dirs = restore_empty_dirs(job.source, dry_run=job.dry_run)
    click.echo(f"Restored {len(dirs)} empty directories.")


@cli.group()
def sentinels():
    """Empty directory sentinel files."""


@sentinels.command("mark")
@workdir_argument
def sentinels_mark(workdir):
    try:
        job = TransferJob.load(workdir)
    except TierArchiveError as e:
        fail(e)
    if job.stages_sentinels:
        dirs = stage_sentinels(
            job.source,
            job.sentinel_staging,
            dry_run=job.dry_run,
            listing=job.empty_dirs_listing,
        )
    else:
        dirs = write_sentinels(
            job.source, dry_run=job.dry_run, listing=job.empty_dirs_listing
        )
    click.echo(f"Marked {len(dirs)} empty directories.")


@sentinels.command("unmark")
@workdir_argument
def sentinels_unmark(workdir):
    try:
        job = TransferJob.load(workdir)
    except TierArchiveError as e:
        fail(e)
    if job.stages_sentinels:
        if os.path.isdir(job.sentinel_staging):
            shutil.rmtree(job.sentinel_staging)
        return
    dirs = remove_sentinels(job.source, dry_run=job.dry_run)
    click.echo(f"Removed {len(dirs)} sentinel files.")


@cli.command()
@workdir_argument
def status(workdir):
    """Show the state of a job."""
    try:
        click.echo(job_state(workdir).describe())
    except TierArchiveError as e:
        fail(e)


if __name__ == "__main__":
    cli()
