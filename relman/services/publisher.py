"""Publish Debian packages into the shared deb-s3 repository.

The repository is partitioned by `{codename}/{channel}`. deb-s3 holds an
exclusive lock marker while it rewrites a partition's indexes:

    s3://{bucket}/dists/{codename}/{channel}/binary-/lockfile

If an upload dies, the marker stays behind and blocks every later upload.
When an upload fails on lock contention the publisher looks at the marker's
age: a marker younger than the staleness threshold is assumed to belong to a
live upload and is left alone; an older or unreadable one is deleted. Either
way the upload itself is not retried; the caller sees a failure and decides.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from relman.core.config import RepositoryConfig
from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.output.console import ConsoleProtocol, Style
from relman.platform.process import CommandRunner
from relman.platform.process import run as run_process

__all__ = [
    "PublishRequest",
    "RepositoryLock",
    "RepositoryPublisher",
    "is_lock_conflict",
    "lockfile_uri",
    "parse_lock_listing",
]

_LOCK_MARKERS = ("lockfile", "locked")
_LS_TIMESTAMP = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True, slots=True)
class PublishRequest:
    package_path: Path
    version: str
    codename: str
    channel: str

    @property
    def label(self) -> str:
        return f"{self.package_path.name}@{self.codename}/{self.channel}"


@dataclass(frozen=True, slots=True)
class RepositoryLock:
    """A lock marker found in the repository.

    Attributes:
        uri: Location of the marker.
        created_at: Marker timestamp (UTC), or None if it could not be parsed.
    """

    uri: str
    created_at: datetime | None

    def age(self, now: datetime) -> timedelta | None:
        if self.created_at is None:
            return None
        return now - self.created_at

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        """True once the marker is at least `threshold` old, or unreadable."""
        age = self.age(now)
        return age is None or age >= threshold


def lockfile_uri(bucket: str, codename: str, channel: str) -> str:
    return f"s3://{bucket}/dists/{codename}/{channel}/binary-/lockfile"


def is_lock_conflict(stderr: str) -> bool:
    return any(marker in stderr for marker in _LOCK_MARKERS)


def parse_lock_listing(uri: str, listing: str) -> RepositoryLock:
    """Parse `aws s3 ls` output (`2023-12-01 14:30:45   12 lockfile`)."""
    parts = listing.split()
    created_at: datetime | None = None
    if len(parts) >= 2:
        try:
            created_at = datetime.strptime(f"{parts[0]} {parts[1]}", _LS_TIMESTAMP).replace(
                tzinfo=UTC
            )
        except ValueError:
            created_at = None
    return RepositoryLock(uri=uri, created_at=created_at)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _validate(request: PublishRequest, config: RepositoryConfig) -> ReleaseError | None:
    for label, value in (
        ("package path", str(request.package_path) if request.package_path.parts else ""),
        ("version", request.version),
        ("bucket", config.bucket),
        ("codename", request.codename),
        ("channel", request.channel),
    ):
        if not value.strip():
            return ReleaseError(kind="validation", message=f"{label} cannot be empty")
    if not request.package_path.is_file():
        return ReleaseError(
            kind="validation",
            message=f"package file not found: {request.package_path}",
        )
    return None


class RepositoryPublisher:
    """Uploads packages with deb-s3 and recovers from stale repository locks."""

    def __init__(
        self,
        config: RepositoryConfig,
        *,
        console: ConsoleProtocol,
        runner: CommandRunner = run_process,
        clock: Callable[[], datetime] = _utc_now,
        debug: bool = False,
    ) -> None:
        self._config = config
        self._console = console
        self._run = runner
        self._clock = clock
        self._debug = debug

    @property
    def staleness(self) -> timedelta:
        return timedelta(seconds=self._config.lock_staleness_seconds)

    def _partition_args(self, codename: str, channel: str) -> list[str]:
        return [
            "--bucket",
            self._config.bucket,
            f"--s3-region={self._config.region}",
            "--codename",
            codename,
            "--component",
            channel,
            "--suite",
            channel,
        ]

    def upload_command(self, request: PublishRequest) -> list[str]:
        cmd = [
            "deb-s3",
            "upload",
            *self._partition_args(request.codename, request.channel),
            "--preserve-versions",
            "--lock",
            "--fail-if-exists",
            f"--cache-control={self._config.cache_control}",
        ]
        if self._config.sign_key:
            cmd += ["--sign", self._config.sign_key]
        cmd.append(str(request.package_path))
        return cmd

    async def publish(self, request: PublishRequest) -> Result[None, ReleaseError]:
        """Upload one package, then verify the partition.

        Returns:
            Ok(None) once the upload is verified. Err kinds:
            `validation` for bad input or a live lock held by another upload,
            `command_failed` for a failed upload (including after clearing a
            stale lock), `unverified` when the upload succeeded but the
            consistency check did not.
        """
        error = _validate(request, self._config)
        if error is not None:
            return Err(error.with_context(request.label))

        self._console.header("Publishing Debian package")
        self._console.step(f"package: {request.package_path}")
        self._console.step(f"version: {request.version}")
        self._console.step(f"bucket: {self._config.bucket}")
        self._console.step(f"codename: {request.codename}")
        self._console.step(f"channel: {request.channel}")

        cmd = self.upload_command(request)
        if self._debug:
            self._console.print(" ".join(cmd), Style.DIM)

        uploaded = await self._run(cmd)
        if isinstance(uploaded, Err):
            failure = ReleaseError.from_process("deb-s3 upload failed", uploaded.error)
            if is_lock_conflict(uploaded.error.stderr):
                self._console.warning("lock conflict detected, inspecting repository lock")
                failure = await self._recover_lock(request, failure)
            return Err(failure.with_context(request.label))

        self._console.success("upload completed")
        if uploaded.value.strip():
            self._console.print(uploaded.value.strip(), Style.DIM)

        verified = await self.verify(request.codename, request.channel)
        if isinstance(verified, Err):
            return Err(
                ReleaseError(
                    kind="unverified",
                    message=f"uploaded {request.package_path.name} but verification failed",
                    hint=verified.error.hint,
                    context=request.label,
                )
            )
        return Ok(None)

    async def verify(
        self,
        codename: str,
        channel: str,
        *,
        fix_manifests: bool = False,
    ) -> Result[None, ReleaseError]:
        """Run the read-only `deb-s3 verify` consistency check on a partition."""
        cmd = ["deb-s3", "verify"]
        if fix_manifests:
            cmd.append("--fix-manifests")
        cmd += self._partition_args(codename, channel)

        self._console.step(f"verifying {codename}/{channel}")
        result = await self._run(cmd)
        if isinstance(result, Err):
            return Err(ReleaseError.from_process("deb-s3 verify failed", result.error))
        self._console.success(f"{codename}/{channel} verified")
        return Ok(None)

    async def fix_manifests(self, codename: str, channel: str) -> Result[None, ReleaseError]:
        """Rebuild a partition's manifests from the packages actually stored."""
        result = await self.verify(codename, channel, fix_manifests=True)
        if isinstance(result, Err):
            return Err(result.error.with_context(f"{codename}/{channel}"))
        return result

    async def inspect_lock(self, codename: str, channel: str) -> RepositoryLock | None:
        """Return the partition's lock marker, or None if listing finds none."""
        uri = lockfile_uri(self._config.bucket, codename, channel)
        listed = await self._run(["aws", "s3", "ls", uri])
        if isinstance(listed, Err) or not listed.value.strip():
            return None
        return parse_lock_listing(uri, listed.value)

    async def remove_lock(self, lock: RepositoryLock) -> Result[None, ReleaseError]:
        removed = await self._run(["aws", "s3", "rm", lock.uri])
        if isinstance(removed, Err):
            return Err(ReleaseError.from_process("failed to delete lockfile", removed.error))
        return Ok(None)

    async def _recover_lock(self, request: PublishRequest, failure: ReleaseError) -> ReleaseError:
        """Clear a stale lock; return the error the publish call should report."""
        lock = await self.inspect_lock(request.codename, request.channel)
        if lock is None:
            self._console.info("no lockfile found")
            return failure

        now = self._clock()
        age = lock.age(now)
        if age is not None and not lock.is_stale(now, self.staleness):
            self._console.warning(
                f"lockfile is {int(age.total_seconds())}s old, leaving it in place"
            )
            return ReleaseError(
                kind="validation",
                message="repository lock is too recent; another deb-s3 upload may be running",
                hint=lock.uri,
            )

        if age is None:
            self._console.warning("could not parse lockfile timestamp, deleting it anyway")
        else:
            self._console.warning(f"lockfile is {int(age.total_seconds())}s old, deleting it")

        removed = await self.remove_lock(lock)
        if isinstance(removed, Err):
            self._console.warning(removed.error.pretty())
        else:
            self._console.info("stale lockfile removed; retry the upload")
        return failure
