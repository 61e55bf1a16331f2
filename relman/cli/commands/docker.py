from __future__ import annotations

from pathlib import Path

import typer

from relman.cli._helpers import exit_on_error, require, run_async
from relman.cli.commands._options import config_option, dry_run_option
from relman.cli.commands.debian import artifact_identity, build_operation
from relman.cli.context import build_context
from relman.release.model import Registry


def promote_image(
    artifact: str = typer.Option(..., "--artifact", help="Artifact, e.g. mina-daemon"),
    codename: str = typer.Option(..., "--codename", help="Debian codename of the image"),
    source_version: str = typer.Option(..., "--source-version", help="Version as built"),
    target_version: str = typer.Option(..., "--target-version", help="Version to release"),
    network: str | None = typer.Option(None, "--network", help="Network, e.g. mainnet"),
    registry: Registry = typer.Option(Registry.GCR, "--registry", help="Target registry"),
    extra_suffix: str | None = typer.Option(None, "--extra-suffix", help="Extra tag suffix"),
    dry_run: bool = dry_run_option(),
    config: Path | None = config_option(),
) -> None:
    """Retag one combination's docker image and push it to a release registry."""
    ctx = build_context(config)
    require(ctx, source_version=source_version, target_version=target_version)
    identity = exit_on_error(
        artifact_identity(
            artifact, codename=codename, version=source_version, channel="", network=network
        ),
        ctx,
    )
    operation = build_operation(ctx, dry_run=dry_run)
    image = exit_on_error(
        run_async(
            operation.promote_docker(
                identity, target_version, registry=registry, extra_suffix=extra_suffix
            )
        ),
        ctx,
    )
    if image is not None:
        ctx.console.print(image.reference)
