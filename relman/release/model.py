"""Artifact identities, naming rules and registry references."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import StrEnum

from relman.core.config import RegistryConfig
from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result

__all__ = [
    "ArtifactIdentity",
    "KnownArtifact",
    "Registry",
    "RegistryImage",
    "artifact_full_name",
    "debian_version",
    "docker_tag",
    "extract_version_from_deb",
    "network_suffix",
    "parse_artifact_list",
    "parse_string_list",
]


class KnownArtifact(StrEnum):
    DAEMON = "mina-daemon"
    ARCHIVE = "mina-archive"
    ROSETTA = "mina-rosetta"
    LOGPROC = "mina-logproc"


# Artifacts built once per network; everything else is network independent.
_NETWORKED = frozenset(
    a.value for a in (KnownArtifact.DAEMON, KnownArtifact.ARCHIVE, KnownArtifact.ROSETTA)
)


class Registry(StrEnum):
    """Target registry selector."""

    GCR = "gcr"
    DOCKER_IO = "docker-io"

    def resolve(self, registries: RegistryConfig) -> str:
        if self is Registry.DOCKER_IO:
            return registries.docker_io
        return registries.gcr


def network_suffix(artifact: str, network: str | None) -> str:
    if network and artifact in _NETWORKED:
        return f"-{network}"
    return ""


def artifact_full_name(artifact: str, network: str | None) -> str:
    """Package name of an artifact built for a network.

    The daemon is published as `mina-<network>`; archive and rosetta keep
    their base name and gain a `-<network>` suffix.
    """
    if not network:
        return artifact
    if artifact == KnownArtifact.DAEMON.value:
        return f"mina-{network}"
    if artifact in _NETWORKED:
        return f"{artifact}-{network}"
    return artifact


def debian_version(artifact: str, version: str, codename: str, network: str | None) -> str:
    """`<artifact>:<version>-<codename>[-<network>]`, as apt pins packages."""
    return f"{artifact}:{version}-{codename}{network_suffix(artifact, network)}"


def docker_tag(
    version: str,
    codename: str,
    *,
    network: str | None = None,
    extra_suffix: str | None = None,
) -> str:
    """`{version}-{codename}[-{network}][-{extra-suffix}]`."""
    tag = f"{version}-{codename}"
    if network:
        tag += f"-{network}"
    if extra_suffix:
        tag += f"-{extra_suffix}"
    return tag


_DEB_VERSION = re.compile(r".*_([^_]*)\.deb$")


def extract_version_from_deb(filename: str) -> Result[str, ReleaseError]:
    match = _DEB_VERSION.match(filename)
    if match is None:
        return Err(
            ReleaseError(
                kind="validation",
                message=f"could not extract version from: {filename}",
            )
        )
    return Ok(match.group(1))


def parse_string_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_artifact_list(value: str) -> Result[list[KnownArtifact], ReleaseError]:
    artifacts: list[KnownArtifact] = []
    for item in parse_string_list(value):
        try:
            artifacts.append(KnownArtifact(item))
        except ValueError:
            return Err(
                ReleaseError(
                    kind="validation",
                    message=f"unknown artifact: {item}",
                    hint=", ".join(a.value for a in KnownArtifact),
                )
            )
    return Ok(artifacts)


@dataclass(frozen=True, slots=True)
class ArtifactIdentity:
    """Addresses exactly one binary package in a repository."""

    base_name: str
    codename: str
    version: str
    channel: str
    network: str | None = None

    @property
    def full_name(self) -> str:
        return artifact_full_name(self.base_name, self.network)

    @property
    def label(self) -> str:
        """Short form used to tag errors with the failing combination."""
        net = f"/{self.network}" if self.network else ""
        return f"{self.base_name}{net}@{self.codename}"

    def remote_pattern(self, root: str, build_id: str) -> str:
        return f"{root.rstrip('/')}/{build_id}/debians/{self.codename}/{self.full_name}_*"

    def with_version(self, version: str, channel: str | None = None) -> ArtifactIdentity:
        return replace(self, version=version, channel=channel or self.channel)

    def image_tag(self, extra_suffix: str | None = None) -> str:
        """Docker tag of this artifact's image for its version and codename."""
        network = self.network if network_suffix(self.base_name, self.network) else None
        return docker_tag(self.version, self.codename, network=network, extra_suffix=extra_suffix)


@dataclass(frozen=True, slots=True)
class RegistryImage:
    registry: str
    name: str
    tag: str

    @property
    def reference(self) -> str:
        return f"{self.registry}/{self.name}:{self.tag}"

    def retag(self, *, registry: str, tag: str) -> RegistryImage:
        return replace(self, registry=registry, tag=tag)

    def __str__(self) -> str:
        return self.reference
