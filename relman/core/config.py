"""Typed configuration loading and access.

This module provides dataclasses for the relman.toml structure. Library code
only ever sees these objects; values that come from the process environment
are resolved at the CLI edge and passed in explicitly.

Example relman.toml:

    [storage]
    backend = "hetzner"

    [storage.remote]
    user = "u434410"
    host = "u434410-sub2.your-storagebox.de"
    key_path = "~/.ssh/id_rsa"

    [repository]
    bucket = "packages.o1test.net"
    region = "us-west-2"
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_int, get_str, get_table

__all__ = [
    "CacheConfig",
    "ChangelogConfig",
    "Config",
    "ConfigError",
    "RegistryConfig",
    "RemoteHostConfig",
    "RepositoryConfig",
    "StorageConfig",
    "load_config",
    "load_config_or_default",
    "LOCK_STALENESS_SECONDS",
]

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

LOCAL_ROOT = "/var/storagebox"
GS_ROOT = "gs://buildkite_k8s/coda/shared"
REMOTE_ROOT = "/home/o1labs-generic/pvc-4d294645-6466-4260-b933-1b909ff9c3a1"

REMOTE_USER = "u434410"
REMOTE_HOST = "u434410-sub2.your-storagebox.de"
REMOTE_KEY_PATH = "~/.ssh/id_rsa"
REMOTE_PORT = 23

REPOSITORY_BUCKET = "packages.o1test.net"
REPOSITORY_REGION = "us-west-2"
REPOSITORY_CACHE_CONTROL = "max-age=120"

# A repository lock younger than this is assumed to belong to a live upload.
LOCK_STALENESS_SECONDS = 300

GCR_REGISTRY = "gcr.io/o1labs-192920"
DOCKER_IO_REGISTRY = "docker.io/minaprotocol"

CACHE_FOLDER = "~/.release/debian/cache"
CHANGELOG_MAINTAINER = "Release Manager <release@minaprotocol.com>"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class RemoteHostConfig:
    """Connection settings for the remote storage host (ssh + rsync)."""

    user: str = REMOTE_USER
    host: str = REMOTE_HOST
    key_path: str = REMOTE_KEY_PATH
    port: int = REMOTE_PORT

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}"

    @property
    def expanded_key_path(self) -> str:
        return str(Path(self.key_path).expanduser())


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Which storage backend to use and where each backend is rooted."""

    backend: str = "local"
    local_root: str = LOCAL_ROOT
    gs_root: str = GS_ROOT
    remote_root: str = REMOTE_ROOT
    remote: RemoteHostConfig = field(default_factory=RemoteHostConfig)


@dataclass(frozen=True, slots=True)
class RepositoryConfig:
    """Shared Debian repository (deb-s3 on an S3 bucket)."""

    bucket: str = REPOSITORY_BUCKET
    region: str = REPOSITORY_REGION
    cache_control: str = REPOSITORY_CACHE_CONTROL
    sign_key: str | None = None
    lock_staleness_seconds: int = LOCK_STALENESS_SECONDS


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """The two known container registries."""

    gcr: str = GCR_REGISTRY
    docker_io: str = DOCKER_IO_REGISTRY


@dataclass(frozen=True, slots=True)
class CacheConfig:
    folder: str = CACHE_FOLDER

    @property
    def path(self) -> Path:
        return Path(self.folder).expanduser()


@dataclass(frozen=True, slots=True)
class ChangelogConfig:
    maintainer: str = CHANGELOG_MAINTAINER


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    registries: RegistryConfig = field(default_factory=RegistryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    changelog: ChangelogConfig = field(default_factory=ChangelogConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        storage: StrDict = get_table(data, "storage") or {}
        remote: StrDict = get_table(storage, "remote") or {}
        repository: StrDict = get_table(data, "repository") or {}
        registries: StrDict = get_table(data, "registries") or {}
        cache: StrDict = get_table(data, "cache") or {}
        changelog: StrDict = get_table(data, "changelog") or {}

        return cls(
            storage=StorageConfig(
                backend=get_str(storage, "backend") or "local",
                local_root=get_str(storage, "local_root") or LOCAL_ROOT,
                gs_root=get_str(storage, "gs_root") or GS_ROOT,
                remote_root=get_str(storage, "remote_root") or REMOTE_ROOT,
                remote=RemoteHostConfig(
                    user=get_str(remote, "user") or REMOTE_USER,
                    host=get_str(remote, "host") or REMOTE_HOST,
                    key_path=get_str(remote, "key_path") or REMOTE_KEY_PATH,
                    port=get_int(remote, "port") or REMOTE_PORT,
                ),
            ),
            repository=RepositoryConfig(
                bucket=get_str(repository, "bucket") or REPOSITORY_BUCKET,
                region=get_str(repository, "region") or REPOSITORY_REGION,
                cache_control=get_str(repository, "cache_control") or REPOSITORY_CACHE_CONTROL,
                sign_key=get_str(repository, "sign_key"),
                lock_staleness_seconds=get_int(repository, "lock_staleness_seconds")
                or LOCK_STALENESS_SECONDS,
            ),
            registries=RegistryConfig(
                gcr=get_str(registries, "gcr") or GCR_REGISTRY,
                docker_io=get_str(registries, "docker_io") or DOCKER_IO_REGISTRY,
            ),
            cache=CacheConfig(folder=get_str(cache, "folder") or CACHE_FOLDER),
            changelog=ChangelogConfig(
                maintainer=get_str(changelog, "maintainer") or CHANGELOG_MAINTAINER
            ),
        )

    def with_storage(self, **changes: object) -> Config:
        """Return a copy with storage settings overridden (CLI flags, env)."""
        return replace(self, storage=replace(self.storage, **changes))  # type: ignore[arg-type]


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file."""
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path | None) -> Result[Config, ConfigError]:
    """Load config if the file exists, defaults otherwise.

    A file that exists but is broken is still reported as an error.
    """
    if path is None or not path.exists():
        return Ok(Config())
    return load_config(path)
