"""Single-combination release operations.

Each call handles exactly one artifact/network/codename combination: it
fetches the package, reversions it when its metadata must change, and hands
it to the repository publisher, or promotes the paired docker image. Looping
over combinations is left to the caller. Every error is tagged with the
combination it belongs to.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path

from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.output.console import ConsoleProtocol
from relman.release.model import (
    ArtifactIdentity,
    Registry,
    RegistryImage,
    debian_version,
    extract_version_from_deb,
)
from relman.services.promoter import PromoteRequest, RegistryPromoter
from relman.services.publisher import PublishRequest, RepositoryPublisher
from relman.services.reversion import PackageReversioner, ReversionRequest
from relman.storage.backend import StorageBackend
from relman.storage.cache import ensure_cached

__all__ = ["ReleaseOperation", "ReleaseTarget"]


@dataclass(frozen=True, slots=True)
class ReleaseTarget:
    """Where a package is going.

    Attributes:
        version: Version the released package carries.
        channel: Repository channel to publish into.
        new_name: Rename the package on the way (defaults to its full name).
    """

    version: str
    channel: str
    new_name: str | None = None


class ReleaseOperation:
    """Wires cache, reversioner, publisher and promoter for one combination."""

    def __init__(
        self,
        *,
        storage: StorageBackend,
        cache_folder: Path,
        reversioner: PackageReversioner,
        publisher: RepositoryPublisher,
        promoter: RegistryPromoter,
        console: ConsoleProtocol,
        dry_run: bool = False,
    ) -> None:
        self._storage = storage
        self._cache_folder = cache_folder
        self._reversioner = reversioner
        self._publisher = publisher
        self._promoter = promoter
        self._console = console
        self._dry_run = dry_run

    async def promote_debian(
        self,
        identity: ArtifactIdentity,
        build_id: str,
        target: ReleaseTarget,
    ) -> Result[Path, ReleaseError]:
        """Fetch a build's package, reversion it if needed, publish it.

        `identity` describes the package as built (its version and channel);
        `target` what it should become. Returns the path that was published.
        """
        result = await self._promote_debian(identity, build_id, target)
        return result.map_err(lambda e: e.with_context(identity.label))

    async def _promote_debian(
        self,
        identity: ArtifactIdentity,
        build_id: str,
        target: ReleaseTarget,
    ) -> Result[Path, ReleaseError]:
        cached = await ensure_cached(
            self._storage, identity, build_id, self._cache_folder, self._console
        )
        if isinstance(cached, Err):
            return cached
        package = cached.value.path

        final_name = target.new_name or identity.full_name
        # The channel alone is set by the publish partition; the archive only
        # needs rebuilding when its file name would change.
        needs_reversion = identity.version != target.version or final_name != identity.full_name

        if needs_reversion:
            reversioned = await self._reversioner.reversion(
                ReversionRequest(
                    deb_path=package,
                    package_name=identity.full_name,
                    source_version=identity.version,
                    new_version=target.version,
                    suite=identity.channel,
                    new_suite=target.channel,
                    new_name=final_name,
                )
            )
            if isinstance(reversioned, Err):
                return reversioned
            package = reversioned.value

        self._console.info(
            f"publishing {identity.full_name} to {target.channel} as "
            f"{debian_version(identity.base_name, target.version, identity.codename, identity.network)}"
        )
        if self._dry_run:
            return Ok(package)

        published = await self._publisher.publish(
            PublishRequest(
                package_path=package,
                version=target.version,
                codename=identity.codename,
                channel=target.channel,
            )
        )
        if isinstance(published, Err):
            return published
        return Ok(package)

    async def promote_docker(
        self,
        identity: ArtifactIdentity,
        target_version: str,
        *,
        registry: Registry = Registry.GCR,
        extra_suffix: str | None = None,
    ) -> Result[RegistryImage | None, ReleaseError]:
        """Retag the combination's image from its build version to `target_version`.

        Returns None in dry-run mode.
        """
        if identity.version == target_version and registry is Registry.GCR:
            self._console.warning(
                "source and target versions are the same; promotion only has an "
                "effect when publishing to another registry"
            )

        source_tag = identity.image_tag(extra_suffix)
        target_tag = identity.with_version(target_version).image_tag(extra_suffix)
        self._console.info(f"promoting {identity.base_name} image {source_tag} -> {target_tag}")
        if self._dry_run:
            return Ok(None)

        promoted = await self._promoter.promote(
            PromoteRequest(
                name=identity.base_name,
                source_tag=source_tag,
                target_tag=target_tag,
                target=registry,
            )
        )
        if isinstance(promoted, Err):
            return Err(promoted.error.with_context(identity.label))
        return Ok(promoted.value)

    async def persist_debian(
        self,
        identity: ArtifactIdentity,
        build_id: str,
        target_build_id: str,
        *,
        new_version: str | None = None,
    ) -> Result[list[str], ReleaseError]:
        """Copy a build's packages under another build id, optionally reversioned.

        Returns the remote locations written.
        """
        result = await self._persist_debian(identity, build_id, target_build_id, new_version)
        return result.map_err(lambda e: e.with_context(identity.label))

    async def _persist_debian(
        self,
        identity: ArtifactIdentity,
        build_id: str,
        target_build_id: str,
        new_version: str | None,
    ) -> Result[list[str], ReleaseError]:
        remote = identity.remote_pattern(self._storage.root, build_id)
        destination = f"{self._storage.root.rstrip('/')}/{target_build_id}/debians/{identity.codename}/"

        with tempfile.TemporaryDirectory(prefix="relman-persist-") as tmp:
            workdir = Path(tmp)
            downloaded = await self._storage.download(remote, workdir)
            if isinstance(downloaded, Err):
                return downloaded

            packages = sorted(workdir.glob(f"{identity.full_name}_*.deb"))
            if not packages:
                return Err(
                    ReleaseError(
                        kind="artifact_not_found",
                        message=f"no debian package downloaded for {identity.full_name}",
                        hint=remote,
                    )
                )

            uploads = list(packages)
            if new_version is not None:
                uploads = []
                for package in packages:
                    source_version = extract_version_from_deb(package.name)
                    if isinstance(source_version, Err):
                        return source_version
                    self._console.step(
                        f"rebuilding {identity.full_name} from {source_version.value} to {new_version}"
                    )
                    reversioned = await self._reversioner.reversion(
                        ReversionRequest(
                            deb_path=package,
                            package_name=identity.full_name,
                            source_version=source_version.value,
                            new_version=new_version,
                            suite=identity.channel,
                            new_suite=identity.channel,
                            new_name=identity.full_name,
                        )
                    )
                    if isinstance(reversioned, Err):
                        return reversioned
                    uploads.append(reversioned.value)

            if self._dry_run:
                return Ok([destination + p.name for p in uploads])

            for package in uploads:
                uploaded = await self._storage.upload(package, destination)
                if isinstance(uploaded, Err):
                    return uploaded
            return Ok([destination + p.name for p in uploads])
