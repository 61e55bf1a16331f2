"""Debian package commands: pull, reversion, publish, fix-manifests, promote, persist."""

from __future__ import annotations

from pathlib import Path

import typer

from relman.cli._helpers import exit_on_error, require, run_async
from relman.cli.commands._options import (
    backend_option,
    cache_folder_option,
    config_option,
    dry_run_option,
    remote_host_option,
    remote_key_option,
    remote_user_option,
)
from relman.cli.context import CLIContext, build_context
from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.platform.process import run as run_process
from relman.release.model import ArtifactIdentity, parse_artifact_list
from relman.services.promoter import RegistryPromoter
from relman.services.publisher import PublishRequest, RepositoryPublisher
from relman.services.release import ReleaseOperation, ReleaseTarget
from relman.services.reversion import PackageReversioner, ReversionRequest
from relman.storage.backend import create_backend
from relman.storage.cache import pull_artifact


def artifact_identity(
    artifact: str,
    *,
    codename: str,
    version: str,
    channel: str,
    network: str | None,
) -> Result[ArtifactIdentity, ReleaseError]:
    parsed = parse_artifact_list(artifact)
    if isinstance(parsed, Err):
        return parsed
    if len(parsed.value) != 1:
        return Err(
            ReleaseError(kind="validation", message=f"expected exactly one artifact, got: {artifact}")
        )
    return Ok(
        ArtifactIdentity(
            base_name=parsed.value[0].value,
            codename=codename,
            version=version,
            channel=channel,
            network=network or None,
        )
    )


def _reversioner(ctx: CLIContext) -> PackageReversioner:
    return PackageReversioner(
        console=ctx.console,
        runner=run_process,
        maintainer=ctx.config.changelog.maintainer,
    )


def _publisher(ctx: CLIContext, *, debug: bool = False) -> RepositoryPublisher:
    return RepositoryPublisher(
        ctx.config.repository, console=ctx.console, runner=run_process, debug=debug
    )


def build_operation(ctx: CLIContext, *, dry_run: bool) -> ReleaseOperation:
    storage = exit_on_error(create_backend(ctx.config.storage, runner=run_process), ctx)
    return ReleaseOperation(
        storage=storage,
        cache_folder=ctx.config.cache.path,
        reversioner=_reversioner(ctx),
        publisher=_publisher(ctx),
        promoter=RegistryPromoter(ctx.config.registries, console=ctx.console, runner=run_process),
        console=ctx.console,
        dry_run=dry_run,
    )


def pull(
    artifact: str = typer.Option(..., "--artifact", help="Artifact, e.g. mina-daemon"),
    codename: str = typer.Option(..., "--codename", help="Debian codename, e.g. bullseye"),
    build_id: str = typer.Option(..., "--build-id", help="Build that produced the package"),
    network: str | None = typer.Option(None, "--network", help="Network, e.g. mainnet"),
    target: Path = typer.Option(Path("."), "--target", help="Directory to download into"),
    config: Path | None = config_option(),
    backend: str | None = backend_option(),
    remote_user: str | None = remote_user_option(),
    remote_host: str | None = remote_host_option(),
    remote_key: str | None = remote_key_option(),
) -> None:
    """Download one build's package straight from storage, without caching."""
    ctx = build_context(
        config,
        backend=backend,
        remote_user=remote_user,
        remote_host=remote_host,
        remote_key=remote_key,
    )
    identity = exit_on_error(
        artifact_identity(artifact, codename=codename, version="", channel="", network=network), ctx
    )
    storage = exit_on_error(create_backend(ctx.config.storage, runner=run_process), ctx)
    exit_on_error(
        run_async(pull_artifact(storage, identity, build_id, target, ctx.console)), ctx
    )
    ctx.console.success(f"pulled {identity.full_name} into {target}")


def reversion(
    deb: Path = typer.Option(..., "--deb", help="Source .deb file (left untouched)"),
    package: str = typer.Option(..., "--package", help="Current package name"),
    source_version: str = typer.Option(..., "--source-version", help="Current version"),
    new_version: str = typer.Option(..., "--new-version", help="Version to give the package"),
    suite: str = typer.Option(..., "--suite", help="Current channel, e.g. unstable"),
    new_suite: str = typer.Option(..., "--new-suite", help="Target channel, e.g. stable"),
    new_name: str | None = typer.Option(None, "--new-name", help="Rename the package"),
    config: Path | None = config_option(),
) -> None:
    """Rebuild a .deb with a new version, name and channel."""
    ctx = build_context(config)
    require(ctx, package=package, source_version=source_version, new_version=new_version)
    output = exit_on_error(
        run_async(
            _reversioner(ctx).reversion(
                ReversionRequest(
                    deb_path=deb,
                    package_name=package,
                    source_version=source_version,
                    new_version=new_version,
                    suite=suite,
                    new_suite=new_suite,
                    new_name=new_name,
                )
            )
        ),
        ctx,
    )
    ctx.console.print(str(output))


def publish(
    deb: Path = typer.Option(..., "--deb", help=".deb file to upload"),
    version: str = typer.Option(..., "--version", help="Version carried by the package"),
    codename: str = typer.Option(..., "--codename", help="Debian codename"),
    channel: str = typer.Option(..., "--channel", help="Repository channel"),
    debug: bool = typer.Option(False, "--debug", help="Print the deb-s3 command line"),
    config: Path | None = config_option(),
) -> None:
    """Upload one package into the shared Debian repository."""
    ctx = build_context(config)
    exit_on_error(
        run_async(
            _publisher(ctx, debug=debug).publish(
                PublishRequest(package_path=deb, version=version, codename=codename, channel=channel)
            )
        ),
        ctx,
    )
    ctx.console.success(f"published {deb.name} to {codename}/{channel}")


def fix_manifests(
    codename: str = typer.Option(..., "--codename", help="Debian codename"),
    channel: str = typer.Option(..., "--channel", help="Repository channel"),
    config: Path | None = config_option(),
) -> None:
    """Rebuild a repository partition's manifests from its stored packages."""
    ctx = build_context(config)
    require(ctx, codename=codename, channel=channel)
    exit_on_error(run_async(_publisher(ctx).fix_manifests(codename, channel)), ctx)


def promote_debian(
    artifact: str = typer.Option(..., "--artifact", help="Artifact, e.g. mina-daemon"),
    codename: str = typer.Option(..., "--codename", help="Debian codename"),
    build_id: str = typer.Option(..., "--build-id", help="Build that produced the package"),
    source_version: str = typer.Option(..., "--source-version", help="Version as built"),
    target_version: str = typer.Option(..., "--target-version", help="Version to release"),
    source_channel: str = typer.Option("unstable", "--source-channel", help="Channel as built"),
    target_channel: str = typer.Option(..., "--target-channel", help="Channel to publish to"),
    network: str | None = typer.Option(None, "--network", help="Network, e.g. mainnet"),
    new_name: str | None = typer.Option(None, "--new-name", help="Publish under another name"),
    dry_run: bool = dry_run_option(),
    config: Path | None = config_option(),
    backend: str | None = backend_option(),
    remote_user: str | None = remote_user_option(),
    remote_host: str | None = remote_host_option(),
    remote_key: str | None = remote_key_option(),
    cache_folder: str | None = cache_folder_option(),
) -> None:
    """Fetch, reversion and publish one artifact/network/codename combination."""
    ctx = build_context(
        config,
        backend=backend,
        remote_user=remote_user,
        remote_host=remote_host,
        remote_key=remote_key,
        cache_folder=cache_folder,
    )
    require(ctx, source_version=source_version, target_version=target_version)
    identity = exit_on_error(
        artifact_identity(
            artifact,
            codename=codename,
            version=source_version,
            channel=source_channel,
            network=network,
        ),
        ctx,
    )
    operation = build_operation(ctx, dry_run=dry_run)
    package = exit_on_error(
        run_async(
            operation.promote_debian(
                identity,
                build_id,
                ReleaseTarget(version=target_version, channel=target_channel, new_name=new_name),
            )
        ),
        ctx,
    )
    ctx.console.success(f"{identity.label}: {package.name}")


def persist_debian(
    artifact: str = typer.Option(..., "--artifact", help="Artifact, e.g. mina-daemon"),
    codename: str = typer.Option(..., "--codename", help="Debian codename"),
    build_id: str = typer.Option(..., "--build-id", help="Build to copy from"),
    target_build_id: str = typer.Option(..., "--target-build-id", help="Build id to copy to"),
    channel: str = typer.Option("unstable", "--channel", help="Channel the packages target"),
    network: str | None = typer.Option(None, "--network", help="Network, e.g. mainnet"),
    new_version: str | None = typer.Option(None, "--new-version", help="Reversion while copying"),
    dry_run: bool = dry_run_option(),
    config: Path | None = config_option(),
    backend: str | None = backend_option(),
    remote_user: str | None = remote_user_option(),
    remote_host: str | None = remote_host_option(),
    remote_key: str | None = remote_key_option(),
) -> None:
    """Copy one combination's packages under another build id."""
    ctx = build_context(
        config,
        backend=backend,
        remote_user=remote_user,
        remote_host=remote_host,
        remote_key=remote_key,
    )
    identity = exit_on_error(
        artifact_identity(artifact, codename=codename, version="", channel=channel, network=network), ctx
    )
    operation = build_operation(ctx, dry_run=dry_run)
    written = exit_on_error(
        run_async(
            operation.persist_debian(identity, build_id, target_build_id, new_version=new_version)
        ),
        ctx,
    )
    for location in written:
        ctx.console.success(location)
