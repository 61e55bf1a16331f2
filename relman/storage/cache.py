"""Local cache of Debian packages, kept consistent with storage by MD5.

The cache lives under `<cache folder>/<codename>/`. A package is fetched
only when no cached file for the same artifact already carries the remote
hash; a mismatching file of the same name is overwritten by the download,
never deleted first.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.output.console import ConsoleProtocol
from relman.platform.files import md5_file
from relman.release.model import ArtifactIdentity
from relman.storage.backend import StorageBackend

__all__ = ["CacheEntry", "ensure_cached", "find_cached", "pull_artifact"]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    path: Path
    md5: str


def _candidates(cache_dir: Path, full_name: str) -> list[Path]:
    prefix = f"{full_name}_"
    return sorted(
        p for p in cache_dir.iterdir() if p.is_file() and p.name.startswith(prefix)
    )


async def find_cached(cache_dir: Path, full_name: str, expected_md5: str) -> CacheEntry | None:
    """Return the first cached file for `full_name` whose MD5 equals `expected_md5`."""
    if not cache_dir.is_dir():
        return None
    for candidate in _candidates(cache_dir, full_name):
        try:
            digest = await asyncio.to_thread(md5_file, candidate)
        except OSError:
            continue
        if digest == expected_md5:
            return CacheEntry(path=candidate, md5=digest)
    return None


async def ensure_cached(
    storage: StorageBackend,
    identity: ArtifactIdentity,
    build_id: str,
    cache_folder: Path,
    console: ConsoleProtocol,
) -> Result[CacheEntry, ReleaseError]:
    """Make sure a local copy matching the remote package exists.

    Args:
        storage: Backend holding the build's packages.
        identity: Artifact to fetch; only name, network and codename are used
            to address the remote file.
        build_id: Build whose packages are being fetched.
        cache_folder: Cache root; the codename subdirectory is created.
        console: Progress output.

    Returns:
        Ok(CacheEntry) for the verified local file, or Err with kind
        `artifact_not_found` when storage holds no such package.
    """
    full_name = identity.full_name
    remote = identity.remote_pattern(storage.root, build_id)

    listed = await storage.list(remote)
    if isinstance(listed, Err):
        return listed
    if not listed.value:
        return Err(
            ReleaseError(
                kind="artifact_not_found",
                message=f"no debian package found for {full_name} (build: {build_id})",
                hint=remote,
            )
        )

    remote_hash = await storage.hash(remote)
    if isinstance(remote_hash, Err):
        return remote_hash
    target = remote_hash.value

    cache_dir = cache_folder / identity.codename
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return Err(ReleaseError(kind="io", message=f"cannot create {cache_dir}", hint=str(e)))

    console.step(f"checking cache for {identity.codename}/{full_name}")
    cached = await find_cached(cache_dir, full_name, target)
    if cached is not None:
        console.step(f"{full_name} already cached, skipping download")
        return Ok(cached)

    console.step(f"{full_name} not cached, downloading from {storage.name}")
    downloaded = await storage.download(remote, cache_dir)
    if isinstance(downloaded, Err):
        return downloaded

    fetched = await find_cached(cache_dir, full_name, target)
    if fetched is None:
        return Err(
            ReleaseError(
                kind="storage",
                message=f"downloaded {full_name} does not match remote hash {target}",
                hint=str(cache_dir),
            )
        )
    return Ok(fetched)


async def pull_artifact(
    storage: StorageBackend,
    identity: ArtifactIdentity,
    build_id: str,
    target: Path,
    console: ConsoleProtocol,
) -> Result[None, ReleaseError]:
    """Download one artifact combination into `target`, bypassing the cache."""
    remote = identity.remote_pattern(storage.root, build_id)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return Err(ReleaseError(kind="io", message=f"cannot create {target}", hint=str(e)))

    console.step(f"pulling {identity.full_name} for {identity.codename}")
    return await storage.download(remote, target)
