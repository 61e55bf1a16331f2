"""Storage backends for build artifacts.

All backends expose the same four async operations against a fixed root:
`list`, `hash` (MD5), `download` and `upload`. Paths handed to `list`,
`hash` and `download` may end in a `*` glob, as produced by
`ArtifactIdentity.remote_pattern`.

Variants:
- local: a mounted directory, handled in-process.
- gs: a Google Cloud Storage bucket, driven through gsutil.
- hetzner: a remote storage host reached over ssh, transfers via rsync.

The variant is chosen from `StorageConfig.backend` by `create_backend`.
Transport failures surface as `storage` errors carrying the tool's stderr;
nothing is retried here.
"""

from __future__ import annotations

import asyncio
import glob
import shlex
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from relman.core.config import RemoteHostConfig, StorageConfig
from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.platform.files import md5_file
from relman.platform.process import CommandRunner, ProcessError
from relman.platform.process import run as run_process

__all__ = [
    "GsBackend",
    "LocalBackend",
    "RemoteHostBackend",
    "StorageBackend",
    "create_backend",
    "SUPPORTED_BACKENDS",
]


class StorageBackend(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def root(self) -> str: ...

    async def list(self, path: str) -> Result[list[str], ReleaseError]: ...

    async def hash(self, path: str) -> Result[str, ReleaseError]: ...

    async def download(self, remote: str, local: Path) -> Result[None, ReleaseError]: ...

    async def upload(self, local: Path, remote: str) -> Result[None, ReleaseError]: ...


def _storage_error(message: str, error: ProcessError) -> ReleaseError:
    return ReleaseError.from_process(message, error, kind="storage")


def _non_empty_lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


# -----------------------------------------------------------------------------
# Local filesystem
# -----------------------------------------------------------------------------


def _copy_into(src: Path, dest: Path) -> None:
    if dest.is_dir():
        shutil.copy2(src, dest / src.name)
        return
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dest)


class LocalBackend:
    """Storage mounted on the local filesystem."""

    name = "local"

    def __init__(self, root: str) -> None:
        self._root = root

    @property
    def root(self) -> str:
        return self._root

    async def list(self, path: str) -> Result[list[str], ReleaseError]:
        return Ok(sorted(p for p in glob.glob(path) if Path(p).is_file()))

    async def hash(self, path: str) -> Result[str, ReleaseError]:
        matches = sorted(glob.glob(path))
        if not matches:
            return Err(ReleaseError(kind="storage", message=f"nothing to hash at {path}"))
        try:
            digest = await asyncio.to_thread(md5_file, Path(matches[0]))
        except OSError as e:
            return Err(ReleaseError(kind="io", message=f"cannot read {matches[0]}", hint=str(e)))
        return Ok(digest)

    async def download(self, remote: str, local: Path) -> Result[None, ReleaseError]:
        matches = sorted(glob.glob(remote))
        if not matches:
            return Err(ReleaseError(kind="storage", message=f"nothing to download at {remote}"))
        try:
            for match in matches:
                await asyncio.to_thread(_copy_into, Path(match), local)
        except OSError as e:
            return Err(ReleaseError(kind="io", message=f"copy from {remote} failed", hint=str(e)))
        return Ok(None)

    async def upload(self, local: Path, remote: str) -> Result[None, ReleaseError]:
        if not local.is_file():
            return Err(ReleaseError(kind="io", message=f"file to upload not found: {local}"))
        dest = Path(remote)
        if remote.endswith("/"):
            dest.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(_copy_into, local, dest)
        except OSError as e:
            return Err(ReleaseError(kind="io", message=f"copy to {remote} failed", hint=str(e)))
        return Ok(None)


# -----------------------------------------------------------------------------
# Google Cloud Storage
# -----------------------------------------------------------------------------


def parse_gsutil_md5(output: str) -> str | None:
    """Pull the hex digest out of `gsutil hash -h -m` output."""
    for line in output.splitlines():
        if "Hash (md5)" in line:
            parts = line.split()
            if len(parts) >= 3:
                return parts[2]
    return None


class GsBackend:
    """Bucket storage driven through gsutil."""

    name = "gs"

    def __init__(self, root: str, *, runner: CommandRunner = run_process) -> None:
        self._root = root
        self._run = runner

    @property
    def root(self) -> str:
        return self._root

    async def list(self, path: str) -> Result[list[str], ReleaseError]:
        result = await self._run(["gsutil", "list", path])
        if isinstance(result, Err):
            if "matched no objects" in result.error.stderr:
                return Ok([])
            return Err(_storage_error(f"cannot list {path}", result.error))
        return Ok(_non_empty_lines(result.value))

    async def hash(self, path: str) -> Result[str, ReleaseError]:
        result = await self._run(["gsutil", "hash", "-h", "-m", path])
        if isinstance(result, Err):
            return Err(_storage_error(f"cannot hash {path}", result.error))
        digest = parse_gsutil_md5(result.value)
        if digest is None:
            return Err(
                ReleaseError(
                    kind="storage",
                    message=f"could not parse MD5 hash for {path}",
                    hint=result.value.strip() or None,
                )
            )
        return Ok(digest)

    async def download(self, remote: str, local: Path) -> Result[None, ReleaseError]:
        result = await self._run(["gsutil", "cp", remote, str(local)])
        if isinstance(result, Err):
            return Err(_storage_error(f"cannot download {remote}", result.error))
        return Ok(None)

    async def upload(self, local: Path, remote: str) -> Result[None, ReleaseError]:
        result = await self._run(["gsutil", "cp", str(local), remote])
        if isinstance(result, Err):
            return Err(_storage_error(f"cannot upload {local}", result.error))
        return Ok(None)


# -----------------------------------------------------------------------------
# Remote host (ssh + rsync)
# -----------------------------------------------------------------------------


def quote_remote_glob(path: str) -> str:
    """Shell-quote a remote path while leaving `*` free to expand remotely."""
    return "*".join(shlex.quote(part) if part else "" for part in path.split("*"))


class RemoteHostBackend:
    """Storage box reachable over ssh; files move with rsync."""

    name = "hetzner"

    def __init__(
        self,
        root: str,
        host: RemoteHostConfig,
        *,
        runner: CommandRunner = run_process,
    ) -> None:
        self._root = root
        self._host = host
        self._run = runner

    @property
    def root(self) -> str:
        return self._root

    def _ssh(self, remote_command: str) -> list[str]:
        return [
            "ssh",
            "-p",
            str(self._host.port),
            "-i",
            self._host.expanded_key_path,
            self._host.destination,
            remote_command,
        ]

    def _rsync_shell(self) -> str:
        return f"ssh -p {self._host.port} -i {self._host.expanded_key_path}"

    async def list(self, path: str) -> Result[list[str], ReleaseError]:
        result = await self._run(self._ssh(f"ls {quote_remote_glob(path)}"))
        if isinstance(result, Err):
            if "No such file" in result.error.stderr:
                return Ok([])
            return Err(_storage_error(f"cannot list {path}", result.error))
        return Ok(_non_empty_lines(result.value))

    async def hash(self, path: str) -> Result[str, ReleaseError]:
        result = await self._run(self._ssh(f"md5sum {quote_remote_glob(path)}"))
        if isinstance(result, Err):
            return Err(_storage_error(f"cannot hash {path}", result.error))
        fields = result.value.split()
        if not fields:
            return Err(ReleaseError(kind="storage", message=f"md5sum printed nothing for {path}"))
        return Ok(fields[0])

    async def download(self, remote: str, local: Path) -> Result[None, ReleaseError]:
        listed = await self.list(remote)
        if isinstance(listed, Err):
            return listed
        if not listed.value:
            return Err(ReleaseError(kind="storage", message=f"nothing to download at {remote}"))

        for remote_file in listed.value:
            result = await self._run(
                [
                    "rsync",
                    "-avz",
                    "--rsh",
                    self._rsync_shell(),
                    f"{self._host.destination}:{remote_file}",
                    str(local),
                ]
            )
            if isinstance(result, Err):
                return Err(_storage_error(f"cannot download {remote_file}", result.error))
        return Ok(None)

    async def upload(self, local: Path, remote: str) -> Result[None, ReleaseError]:
        result = await self._run(
            [
                "rsync",
                "-avz",
                "-e",
                self._rsync_shell(),
                str(local),
                f"{self._host.destination}:{remote}",
            ]
        )
        if isinstance(result, Err):
            return Err(_storage_error(f"cannot upload {local}", result.error))
        return Ok(None)


# -----------------------------------------------------------------------------
# Selection
# -----------------------------------------------------------------------------

_Factory = Callable[[StorageConfig, CommandRunner], StorageBackend]

_FACTORIES: dict[str, _Factory] = {
    "local": lambda cfg, runner: LocalBackend(cfg.local_root),
    "gs": lambda cfg, runner: GsBackend(cfg.gs_root, runner=runner),
    "hetzner": lambda cfg, runner: RemoteHostBackend(cfg.remote_root, cfg.remote, runner=runner),
}

SUPPORTED_BACKENDS = tuple(_FACTORIES)


def create_backend(
    config: StorageConfig,
    *,
    runner: CommandRunner = run_process,
) -> Result[StorageBackend, ReleaseError]:
    factory = _FACTORIES.get(config.backend)
    if factory is None:
        return Err(
            ReleaseError(
                kind="unsupported_backend",
                message=f"unsupported backend: {config.backend}",
                hint=f"expected one of: {', '.join(SUPPORTED_BACKENDS)}",
            )
        )
    return Ok(factory(config, runner))
