#! /usr/bin/env python3
# -*- coding: utf-8 -*-

import logging

import click

from tierarchive.common import get_envvar, setup_logging
from tierarchive.context import RunContext
from tierarchive.errors import TierArchiveError
from tierarchive.stages import TransferJob, plan_inventory, write_plan

logger = logging.getLogger("inventory-plan")


@click.command()
@click.option("-g", "--group", envvar="TIERARCHIVE_GROUP")
@click.option("-b", "--bucket", help="Tier 2 bucket [default: data-delivery-<group>].")
@click.option("-r", "--remote", envvar="TIERARCHIVE_REMOTE")
@click.option(
    "--disaster-recovery-dir",
    "source",
    help="[default: <project root>/shared/disaster_recovery]",
)
@click.option("-l", "--log-dir", help="Parent of the working directory.")
@click.option("--md5", is_flag=True, help="Also compute md5 sums of both sides.")
@click.option("-v", "--verbose", is_flag=True)
def main(group, bucket, remote, source, log_dir, md5, verbose):
    """
    Plan a job that lists the files in the disaster recovery directory
    and in the tier 2 bucket, for comparison by hand.
    """
    setup_logging("DEBUG" if verbose else get_envvar("LOG_LEVEL", "INFO"))

    try:
        ctx = RunContext.from_env(group=group, remote=remote)
        job = TransferJob.for_inventory(ctx, source=source, bucket=bucket, log_dir=log_dir)
        paths = write_plan(job, plan_inventory(job, ctx, md5=md5))
    except TierArchiveError as e:
        logger.error(str(e))
        raise click.ClickException(str(e))

    click.echo(f"Inventory job created: sbatch {paths[0]}")


if __name__ == "__main__":
    main()
