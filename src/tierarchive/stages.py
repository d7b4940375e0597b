#!/usr/bin/env python3
from __future__ import annotations

import enum
import json
import logging
import os
import shlex
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime

from tierarchive.common import ensure_group_dir, timestamp_token
from tierarchive.context import AUTO_REMOTE, RunContext
from tierarchive.emptydirs import EmptyDirMode, copy_flags, restore_flags
from tierarchive.errors import PreconditionError
from tierarchive.gate import (
    VerificationResult,
    has_success_marker,
    inspect_verification_log,
)
from tierarchive.naming import (
    canonicalize_path,
    check_pathname_lengths,
    normalize_bucket_name,
)
from tierarchive.slurm import JobUnit
from tierarchive.typehints import TransferJobT

__all__ = [
    "Profile",
    "StageName",
    "StageState",
    "Stage",
    "TransferJob",
    "JobStatus",
    "plan_transfer",
    "plan_delivery",
    "plan_inventory",
    "write_plan",
    "render_instructions",
    "write_filelist",
    "job_state",
]

logger = logging.getLogger("stages")

JOB_FILE = "job.json"
DELIVERY_EXCLUDES = ("/README.txt",)


class Profile(enum.StrEnum):
    ARCHIVE = "archive"
    DELIVERY = "delivery"
    INVENTORY = "inventory"


class StageName(enum.StrEnum):
    COPY_AND_VERIFY = "copy_and_verify"
    DELETE = "delete"
    RESTORE = "restore"
    INVENTORY = "inventory"

    @property
    def ordinal(self) -> int:
        return {"delete": 2, "restore": 3}.get(self.value, 1)


class StageState(enum.StrEnum):
    """Progress of a transfer job, derived from the artifacts in its working dir."""

    PLANNED = "planned"
    COPY_RUNNING = "copy_running"
    COPIED = "copied"
    VERIFIED = "verified"
    MARKED = "marked"
    DELETE_ELIGIBLE = "delete_eligible"
    DELETED = "deleted"


@dataclass(frozen=True)
class TransferJob:
    """
    Parameters of one transfer, shared by all of its stages.

    The job is immutable and persisted as `job.json` in the working
    directory, so every stage (and the stage gate inside the emitted
    job scripts) reads back exactly the values used at planning time.
    """

    source: str
    bucket: str
    prefix: str
    workdir: str
    name: str
    remote: str = AUTO_REMOTE
    profile: Profile = Profile.ARCHIVE
    empty_dir_mode: EmptyDirMode = EmptyDirMode.NATIVE
    threads: int = 16
    dry_run: bool = False
    copy_links: bool = False
    excludes: tuple[str, ...] = ()
    restore_empty_dirs: bool = False
    created_at: str = field(
        default_factory=lambda: datetime.now().isoformat(timespec="seconds")
    )

    @classmethod
    def for_archive(
        cls,
        source: str,
        bucket: str,
        ctx: RunContext,
        prefix: str | None = None,
        workdir: str | None = None,
        empty_dir_mode: EmptyDirMode = EmptyDirMode.NATIVE,
        dry_run: bool = False,
        restore_empty_dirs: bool = False,
        now: datetime | None = None,
    ) -> TransferJob:
        source = canonicalize_path(source, must_exist=True, kind="source directory")
        bucket = normalize_bucket_name(bucket)
        name = os.path.basename(source)
        if workdir is None:
            workdir = f"{source}___archive_{timestamp_token(now)}"
        return cls(
            source=source,
            bucket=str(bucket),
            prefix=name if prefix is None else prefix.strip("/"),
            workdir=canonicalize_path(workdir, kind="log directory"),
            name=name,
            remote=ctx.remote,
            profile=Profile.ARCHIVE,
            empty_dir_mode=EmptyDirMode(empty_dir_mode),
            threads=ctx.threads,
            dry_run=dry_run,
            restore_empty_dirs=restore_empty_dirs,
        )

    @classmethod
    def for_delivery(
        cls,
        ctx: RunContext,
        source: str | None = None,
        bucket: str | None = None,
        log_dir: str | None = None,
        empty_dir_mode: EmptyDirMode = EmptyDirMode.SENTINEL,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> TransferJob:
        source = canonicalize_path(
            source or ctx.data_delivery_dir, must_exist=True, kind="source directory"
        )
        bucket = normalize_bucket_name(bucket or f"data-delivery-{ctx.group}")
        log_dir = canonicalize_path(
            log_dir or ctx.default_log_dir("delivery"), kind="log directory"
        )
        name = f"delivery_{timestamp_token(now)}"
        return cls(
            source=source,
            bucket=str(bucket),
            prefix="",
            workdir=os.path.join(log_dir, f"{bucket}___{name}"),
            name=name,
            remote=ctx.remote,
            profile=Profile.DELIVERY,
            empty_dir_mode=EmptyDirMode(empty_dir_mode),
            threads=ctx.threads,
            dry_run=dry_run,
            copy_links=True,
            excludes=DELIVERY_EXCLUDES,
        )

    @classmethod
    def for_inventory(
        cls,
        ctx: RunContext,
        source: str | None = None,
        bucket: str | None = None,
        log_dir: str | None = None,
        now: datetime | None = None,
    ) -> TransferJob:
        source = canonicalize_path(
            source or ctx.disaster_recovery_dir, kind="disaster recovery directory"
        )
        bucket = normalize_bucket_name(bucket or f"data-delivery-{ctx.group}")
        log_dir = canonicalize_path(
            log_dir or ctx.default_log_dir("inventory"), kind="log directory"
        )
        name = f"inventory_{ctx.group}_{timestamp_token(now)}"
        return cls(
            source=source,
            bucket=str(bucket),
            prefix="",
            workdir=os.path.join(log_dir, name),
            name=name,
            remote=ctx.remote,
            profile=Profile.INVENTORY,
            empty_dir_mode=EmptyDirMode.NONE,
            threads=ctx.threads,
        )

    @property
    def destination(self) -> str:
        if self.prefix:
            return f"{self.remote}:{self.bucket}/{self.prefix}"
        return f"{self.remote}:{self.bucket}"

    def artifact(self, suffix: str) -> str:
        return os.path.join(self.workdir, f"{self.name}.{suffix}")

    def script_path(self, stage: StageName) -> str:
        return self.artifact(f"{stage.ordinal}_{stage}.slurm")

    @property
    def copy_log(self) -> str:
        return self.artifact("1_copy.rclone.log")

    @property
    def verify_log(self) -> str:
        return self.artifact("1_verify.rclone.log")

    @property
    def delete_log(self) -> str:
        return self.artifact("2_delete.rclone.log")

    @property
    def restore_log(self) -> str:
        return self.artifact("3_restore.rclone.log")

    @property
    def stages_sentinels(self) -> bool:
        # the data delivery tree is read-only for us
        return self.profile is Profile.DELIVERY

    @property
    def sentinel_staging(self) -> str:
        return self.artifact("sentinels")

    @property
    def empty_dirs_listing(self) -> str:
        return self.artifact("empty_dirs.txt")

    def to_dict(self) -> TransferJobT:
        data = asdict(self)
        data["profile"] = str(self.profile)
        data["empty_dir_mode"] = str(self.empty_dir_mode)
        data["excludes"] = list(self.excludes)
        return data

    @classmethod
    def from_dict(cls, data: TransferJobT) -> TransferJob:
        data = dict(data)
        data["profile"] = Profile(data["profile"])
        data["empty_dir_mode"] = EmptyDirMode(data["empty_dir_mode"])
        data["excludes"] = tuple(data.get("excludes", ()))
        return cls(**data)

    def save(self) -> str:
        path = os.path.join(self.workdir, JOB_FILE)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=4)
            f.write("\n")
        return path

    @classmethod
    def load(cls, workdir: str) -> TransferJob:
        path = os.path.join(workdir, JOB_FILE)
        if not os.path.isfile(path):
            raise PreconditionError(
                f"No {JOB_FILE} found in {workdir!r}. Is this the working "
                f"directory of a planned transfer?"
            )
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))


class Stage:
    def __init__(
        self,
        name: StageName,
        unit: JobUnit,
        path: str,
        preconditions: list[str] | None = None,
    ):
        self.name = name
        self.unit = unit
        self.path = path
        self.preconditions = list(preconditions or [])

    @property
    def ordinal(self) -> int:
        return self.name.ordinal

    @property
    def commands(self) -> list[str]:
        return self.unit.commands

    def render(self) -> str:
        return self.unit.render()

    def write(self) -> str:
        return self.unit.write(self.path)

    def __repr__(self):
        return f"Stage({self.name}, {self.path!r})"


def _cmd(*args) -> str:
    return " ".join(shlex.quote(str(a)) for a in args)


def _new_unit(job: TransferJob, ctx: RunContext, stage: StageName, **kwargs) -> JobUnit:
    unit = JobUnit(
        name=f"{job.name}.{stage.ordinal}_{stage}",
        cpus=kwargs.pop("cpus", job.threads),
        mail_user=ctx.mail_user,
        partition=ctx.partition,
        workdir=job.workdir,
        **kwargs,
    )
    if ctx.rclone_module:
        unit.section("Force a consistent rclone version, overriding sticky modules")
        unit.add(f"module load --force {shlex.quote(ctx.rclone_module)}")
    if job.remote == AUTO_REMOTE:
        var = f"RCLONE_CONFIG_{job.remote.upper()}"
        unit.section("Credentials of the tier 2 remote, looked up at run time")
        unit.add(
            f"{var}_ACCESS_KEY_ID=\"$(s3info --keys | awk '{{print $1}}')\"",
            f"{var}_SECRET_ACCESS_KEY=\"$(s3info --keys | awk '{{print $2}}')\"",
            f"export {var}_ACCESS_KEY_ID {var}_SECRET_ACCESS_KEY",
        )
        for key, value in ctx.remote_settings().items():
            unit.add(f"export {var}_{key}={shlex.quote(value)}")
    unit.add('echo "Using $(rclone --version | head -1)"')
    return unit


def _transfer_flags(job: TransferJob, log_file: str) -> list[str]:
    flags = [
        "--transfers",
        str(job.threads),
        "--checkers",
        str(job.threads),
        "--stats",
        "30s",
    ]
    if job.copy_links:
        flags.append("--copy-links")
    for pattern in job.excludes:
        flags += ["--exclude", pattern]
    if job.dry_run:
        flags.append("--dry-run")
    return flags + ["--log-file", log_file, "--log-level", "INFO"]


def _check_flags(job: TransferJob) -> list[str]:
    flags = ["--checkers", str(job.threads)]
    if job.copy_links:
        flags.append("--copy-links")
    for pattern in job.excludes:
        flags += ["--exclude", pattern]
    if job.profile is Profile.DELIVERY:
        flags += [
            "--retries",
            "5",
            "--low-level-retries",
            "20",
            "--one-way",
            "--differ",
            job.artifact("1_verify.rclone.differ.txt"),
            "--missing-on-dst",
            job.artifact("1_verify.rclone.missing-on-tier2.txt"),
            "--error",
            job.artifact("1_verify.rclone.error.txt"),
        ]
    return flags + ["--log-file", job.verify_log, "--log-level", "INFO"]


def _copy_stage(job: TransferJob, ctx: RunContext) -> Stage:
    gate = ctx.gate_command()
    workdir = shlex.quote(job.workdir)
    unit = _new_unit(job, ctx, StageName.COPY_AND_VERIFY, memory="32gb")
    sentinel = job.empty_dir_mode is EmptyDirMode.SENTINEL

    unit.section("Forget the verification of an earlier run")
    unit.add(f"{gate} reset {workdir}")

    if sentinel:
        unit.section("Mark empty directories with sentinel files")
        unit.add(f"{gate} sentinels mark {workdir}")

    unit.section("Copy to tier 2")
    unit.echo(f"Source: {job.source}")
    unit.echo(f"Destination: {job.destination}")
    unit.add('echo "Starting transfer at $(date)"')
    unit.add(
        _cmd(
            "rclone",
            "copy",
            job.source,
            job.destination,
            *copy_flags(job.empty_dir_mode),
            *_transfer_flags(job, job.copy_log),
        )
    )
    if sentinel and job.stages_sentinels:
        staging = shlex.quote(job.sentinel_staging)
        unit.add(f"if [[ -d {staging} ]]; then")
        unit.add(
            "    "
            + _cmd(
                "rclone",
                "copy",
                job.sentinel_staging,
                job.destination,
                *_transfer_flags(job, job.copy_log),
            )
        )
        unit.add("fi")
    unit.add('echo "Transfer completed at $(date)"')

    if job.dry_run:
        unit.section("Verification")
        unit.echo("Dry run: verification skipped, no success marker written.")
    else:
        unit.section("Verify and write the success marker")
        unit.add('echo "Starting verification at $(date)"')
        # rclone check exits non-zero on differences, the gate reports them
        unit.add(
            _cmd("rclone", "check", job.source, job.destination, *_check_flags(job))
            + ' || echo "rclone check reported problems, see the verification log"'
        )
        unit.add(f"{gate} mark {workdir}")

    if sentinel:
        unit.section("Remove the sentinel files from the source again")
        unit.add(f"{gate} sentinels unmark {workdir}")

    unit.section("File lists")
    if job.profile is Profile.ARCHIVE:
        unit.add(
            f"find {shlex.quote(job.source)} -type f "
            f"> {shlex.quote(job.artifact('source_files.txt'))}"
        )
    unit.add(
        f"rclone lsf {shlex.quote(job.destination)} --recursive "
        f"> {shlex.quote(job.artifact('destination_files.txt'))}"
    )
    unit.add('echo "Copy and verification completed at $(date)"')
    return Stage(
        StageName.COPY_AND_VERIFY,
        unit,
        job.script_path(StageName.COPY_AND_VERIFY),
        preconditions=["source directory is readable"],
    )


def _delete_stage(job: TransferJob, ctx: RunContext) -> Stage:
    gate = ctx.gate_command()
    unit = _new_unit(job, ctx, StageName.DELETE, time="8:00:00", memory="16gb")

    unit.section("Refuse to delete anything without a verified copy")
    unit.add(f"{gate} check {shlex.quote(job.workdir)}")

    unit.section("Delete the source from tier 1")
    unit.echo(f"WARNING: This permanently deletes the original data: {job.source}")
    unit.add(
        _cmd(
            "rclone",
            "purge",
            job.source,
            f"--multi-thread-streams={job.threads}",
            "--stats",
            "30s",
            *(["--dry-run"] if job.dry_run else []),
            "--log-file",
            job.delete_log,
            "--log-level",
            "INFO",
        )
    )
    unit.echo(f"Data remains stored in: {job.destination}")
    unit.add('echo "Deletion completed at $(date)"')
    return Stage(
        StageName.DELETE,
        unit,
        job.script_path(StageName.DELETE),
        preconditions=["success marker exists in the working directory"],
    )


def _restore_stage(job: TransferJob, ctx: RunContext) -> Stage:
    gate = ctx.gate_command()
    workdir = shlex.quote(job.workdir)
    unit = _new_unit(job, ctx, StageName.RESTORE, memory="32gb")

    unit.section("Check that the data exists in tier 2")
    unit.add(f"{gate} restore-check {workdir}")

    unit.section("Restore from tier 2 back to tier 1")
    unit.add(f"mkdir -p {shlex.quote(os.path.dirname(job.source))}")
    flags = restore_flags(job.empty_dir_mode, best_effort=job.restore_empty_dirs)
    restore_job = replace(job, copy_links=False, excludes=())
    unit.add(
        _cmd(
            "rclone",
            "copy",
            job.destination,
            job.source,
            *flags,
            *_transfer_flags(restore_job, job.restore_log),
        )
    )
    if job.empty_dir_mode is EmptyDirMode.SENTINEL:
        unit.section("Turn restored sentinel files back into empty directories")
        unit.add(f"{gate} restore-dirs {workdir}")

    unit.add(
        f"find {shlex.quote(job.source)} -type f "
        f"> {shlex.quote(job.artifact('restored_files.txt'))}"
    )
    unit.add('echo "Restore completed at $(date)"')
    return Stage(
        StageName.RESTORE,
        unit,
        job.script_path(StageName.RESTORE),
        preconditions=["data exists below the bucket prefix"],
    )


def plan_transfer(job: TransferJob, ctx: RunContext) -> list[Stage]:
    """
    Plan the copy and verify, delete and restore stages of an archive job.

    Planning is pure, nothing is written. The stages share the (frozen)
    job, so threads, dry-run and the empty directory mode are the same
    in all of them. The delete stage is gated by the success marker, the
    restore stage only requires the data to be present in tier 2.
    """
    if job.restore_empty_dirs and job.empty_dir_mode is not EmptyDirMode.NATIVE:
        logger.warning(
            "Empty directories were not stored as directory markers (mode %r). "
            "Restoring them is best effort only.",
            str(job.empty_dir_mode),
        )
    return [
        _copy_stage(job, ctx),
        _delete_stage(job, ctx),
        _restore_stage(job, ctx),
    ]


def plan_delivery(job: TransferJob, ctx: RunContext) -> list[Stage]:
    """Plan the copy and verify stage of a data delivery archive."""
    return [_copy_stage(job, ctx)]


def plan_inventory(job: TransferJob, ctx: RunContext, md5: bool = False) -> list[Stage]:
    """Plan one job that lists the disaster recovery dir and the bucket."""
    unit = _new_unit(
        job, ctx, StageName.INVENTORY, time="2:00:00", cpus=8, memory="16gb"
    )
    source = shlex.quote(job.source)
    local_list = shlex.quote(job.artifact("disaster_recovery_files.txt"))
    remote_list = shlex.quote(job.artifact(f"{job.bucket}_tier2_files.txt"))
    s3_prefix = shlex.quote(f"s|^|s3://{job.bucket}/|")

    unit.section("Files in the disaster recovery directory")
    unit.add(f"if [[ -d {source} ]]; then")
    unit.add(f"    find {source} -type f | sort > {local_list}")
    if md5:
        unit.add(
            f"    rclone md5sum {source} "
            f"> {shlex.quote(job.artifact('disaster_recovery_files.md5'))}"
        )
    unit.add("else")
    unit.add(f'    echo "Directory not found: "{source}')
    unit.add(f"    : > {local_list}")
    unit.add("fi")

    unit.section("Objects in the tier 2 bucket")
    target = shlex.quote(job.destination)
    unit.add(f"rclone lsf -R {target} | sed {s3_prefix} | sort > {remote_list}")
    if md5:
        unit.add(
            f"rclone md5sum {target} "
            f"> {shlex.quote(job.artifact(f'{job.bucket}_tier2_files.md5'))}"
        )
    unit.echo(f"Compare the lists, e.g.: diff {local_list} {remote_list}")
    return [Stage(StageName.INVENTORY, unit, job.script_path(StageName.INVENTORY))]


def write_filelist(job: TransferJob) -> tuple[str, list[str]]:
    """
    List all files of the job's source in `<name>.filelist.txt`.

    Returns the path of the list and the paths that exceed the
    pathname limit of the object store.
    """
    files = []
    for dirpath, dirnames, filenames in os.walk(job.source, followlinks=job.copy_links):
        dirnames.sort()
        files.extend(os.path.join(dirpath, name) for name in sorted(filenames))
    path = job.artifact("filelist.txt")
    with open(path, "w") as f:
        f.writelines(f"{p}\n" for p in files)
    too_long = check_pathname_lengths(files)
    if too_long:
        with open(job.artifact("filelist.paths_too_long.txt"), "w") as f:
            f.writelines(f"{len(p)}\t{p}\n" for p in too_long)
    return path, too_long


def render_instructions(job: TransferJob, stages: list[Stage]) -> str:
    lines = [
        f"# tierarchive {job.profile}: {job.name}",
        "",
        "## Options used",
        "",
        f"* source: {job.source}",
        f"* destination: {job.destination}",
        f"* empty directories: {job.empty_dir_mode}",
        f"* threads: {job.threads}",
        f"* dry run: {'yes' if job.dry_run else 'no'}",
        f"* planned: {job.created_at}",
        "",
        "## Next steps",
        "",
        f"1. Move into the working directory: `cd {job.workdir}`",
    ]
    for i, stage in enumerate(stages, start=2):
        script = os.path.basename(stage.path)
        line = f"{i}. Submit the {stage.name} job: `sbatch {script}`"
        if stage.name is StageName.DELETE:
            line += " (runs only if the copy was verified)"
        elif stage.name is StageName.RESTORE:
            line += " (only needed to bring the data back)"
        lines.append(line)
    lines.append("")
    return "\n".join(lines)


def write_plan(job: TransferJob, stages: list[Stage]) -> list[str]:
    """Create the working directory, persist the job and write the scripts."""
    ensure_group_dir(job.workdir)
    job.save()
    paths = [stage.write() for stage in stages]
    with open(job.artifact("readme.md"), "w") as f:
        f.write(render_instructions(job, stages))
    return paths


class JobStatus:
    def __init__(
        self,
        job: TransferJob,
        state: StageState,
        restore_eligible: bool,
        verification: VerificationResult | None = None,
    ):
        self.job = job
        self.state = state
        self.restore_eligible = restore_eligible
        self.verification = verification

    @property
    def delete_eligible(self) -> bool:
        return self.state is StageState.DELETE_ELIGIBLE

    def describe(self) -> str:
        lines = [
            f"job:      {self.job.name} ({self.job.profile})",
            f"source:   {self.job.source}",
            f"target:   {self.job.destination}",
            f"state:    {self.state}",
        ]
        if self.verification is not None:
            lines.append(f"verify:   {self.verification.describe()}")
        lines.append(f"restore:  {'available' if self.restore_eligible else '-'}")
        return "\n".join(lines)


def job_state(workdir: str) -> JobStatus:
    """Derive the state of a transfer job from the files in its working dir."""
    job = TransferJob.load(workdir)
    verification = None
    if os.path.isfile(job.verify_log):
        verification = inspect_verification_log(job.verify_log)

    if os.path.isfile(job.delete_log) and not os.path.exists(job.source):
        state = StageState.DELETED
    elif has_success_marker(workdir):
        if os.path.isfile(job.script_path(StageName.DELETE)):
            state = StageState.DELETE_ELIGIBLE
        else:
            state = StageState.MARKED
    elif verification is not None:
        state = StageState.VERIFIED if verification.clean else StageState.COPIED
    elif os.path.isfile(job.copy_log):
        state = StageState.COPY_RUNNING
    else:
        state = StageState.PLANNED

    restore_eligible = os.path.isfile(job.script_path(StageName.RESTORE))
    return JobStatus(job, state, restore_eligible, verification)
