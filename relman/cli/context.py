from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

import typer

from relman.core.config import CacheConfig, Config, load_config_or_default
from relman.core.errors import ErrorCode
from relman.core.result import Err
from relman.output.console import ConsoleProtocol, RichConsole


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: Config
    console: ConsoleProtocol


def build_context(
    config_path: Path | None = None,
    *,
    backend: str | None = None,
    remote_user: str | None = None,
    remote_host: str | None = None,
    remote_key: str | None = None,
    cache_folder: str | None = None,
) -> CLIContext:
    """Load relman.toml (or defaults) and apply command line/env overrides."""
    config_result = load_config_or_default(config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    config = config_result.value
    remote = config.storage.remote
    remote = replace(
        remote,
        user=remote_user or remote.user,
        host=remote_host or remote.host,
        key_path=remote_key or remote.key_path,
    )
    config = config.with_storage(backend=backend or config.storage.backend, remote=remote)
    if cache_folder:
        config = replace(config, cache=CacheConfig(folder=cache_folder))

    return CLIContext(config=config, console=RichConsole())
