#! /usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
import warnings

import click

from tierarchive.common import get_envvar, setup_logging
from tierarchive.context import RunContext
from tierarchive.errors import TierArchiveError
from tierarchive.identity import DirectoryService, IdentityMapper
from tierarchive.minio.client import MinioClient
from tierarchive.policy import PolicyRequest, apply_policy_request
from tierarchive.principals import Visibility

logger = logging.getLogger("bucket-policy")


def make_client(ctx: RunContext, access_key, secret_key, mapper: IdentityMapper):
    if not (access_key and secret_key):
        access_key, secret_key = mapper.keys()
    return MinioClient(
        ctx.s3_endpoint,
        access_key=access_key,
        secret_key=secret_key,
        secure=ctx.s3_secure,
    )


def report(outcome) -> None:
    request = outcome.request
    click.echo(f"Policy file:  {request.policy_path}")
    click.echo(f"Readme:       {request.readme_path}")
    if outcome.bucket_created:
        click.echo(f"Bucket {request.bucket} was created.")
    if outcome.applied:
        click.echo(f"Policy {request.visibility} is active on bucket {request.bucket}.")
    else:
        click.echo("The policy was NOT set on the bucket.")
    for w in outcome.warnings:
        click.secho(f"Warning: {w}", fg="yellow", err=True)


@click.command()
@click.option("-b", "--bucket", required=True, help="Name of the tier 2 bucket.")
@click.option(
    "-p",
    "--policy",
    "visibility",
    type=click.Choice([v.value for v in Visibility], case_sensitive=False),
    default=Visibility.GROUP_READ.value,
    show_default=True,
    help="Visibility class of the bucket.",
)
@click.option("-g", "--group", envvar="TIERARCHIVE_GROUP", help="Group for GROUP_* policies.")
@click.option(
    "-l",
    "--list",
    "user_list",
    help="Comma separated user names (or a file with one user per line) "
    "for LIST_* policies.",
)
@click.option("-m", "--make-bucket", is_flag=True, help="Create the bucket if needed.")
@click.option(
    "-d",
    "--do-not-set-policy",
    "dry",
    is_flag=True,
    help="Only write the policy file, do not set it on the bucket.",
)
@click.option("--log-dir", help="Where the policy files are written.")
@click.option("--s3-endpoint", envvar="TIERARCHIVE_S3_ENDPOINT")
@click.option("--access-key", envvar="TIERARCHIVE_ACCESS_KEY")
@click.option("--secret-key", envvar="TIERARCHIVE_SECRET_KEY")
@click.option("-v", "--verbose", is_flag=True)
def main(
    bucket,
    visibility,
    group,
    user_list,
    make_bucket,
    dry,
    log_dir,
    s3_endpoint,
    access_key,
    secret_key,
    verbose,
):
    """Create and set the access policy of a tier 2 bucket."""
    setup_logging("DEBUG" if verbose else get_envvar("LOG_LEVEL", "INFO"))
    logging.captureWarnings(True)
    warnings.simplefilter("always")

    try:
        ctx = RunContext.from_env(group=group, s3_endpoint=s3_endpoint)
        request = PolicyRequest(
            bucket,
            visibility=Visibility.parse(visibility),
            group=ctx.group,
            user_list=user_list,
            make_bucket=make_bucket,
            apply=not dry,
            log_dir=log_dir or ctx.default_log_dir("bucket_policy"),
        )
        request.validate()
        mapper = IdentityMapper()
        client = make_client(ctx, access_key, secret_key, mapper)
        outcome = apply_policy_request(
            request, client, directory=DirectoryService(), mapper=mapper
        )
    except TierArchiveError as e:
        logger.error(str(e))
        raise click.ClickException(str(e))

    report(outcome)


if __name__ == "__main__":
    main()
