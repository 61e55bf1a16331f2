"""Options shared by several commands.

Environment-derived settings enter the program only here, through typer's
`envvar=` lookup.
"""

from __future__ import annotations

from typing import Any

import typer


def config_option() -> Any:
    return typer.Option(
        None,
        "--config",
        envvar="RELMAN_CONFIG",
        help="Path to relman.toml (defaults are used when absent)",
    )


def backend_option() -> Any:
    return typer.Option(
        None,
        "--backend",
        envvar="RELMAN_BACKEND",
        help="Storage backend: local|gs|hetzner",
    )


def remote_user_option() -> Any:
    return typer.Option(None, "--remote-user", envvar="HETZNER_USER", help="Storage host user")


def remote_host_option() -> Any:
    return typer.Option(None, "--remote-host", envvar="HETZNER_HOST", help="Storage host name")


def remote_key_option() -> Any:
    return typer.Option(
        None, "--remote-key", envvar="HETZNER_KEY", help="ssh private key for the storage host"
    )


def cache_folder_option() -> Any:
    return typer.Option(
        None,
        "--cache-folder",
        envvar="DEBIAN_CACHE_FOLDER",
        help="Local Debian package cache",
    )


def dry_run_option() -> Any:
    return typer.Option(False, "--dry-run", help="Resolve and report, change nothing remotely")


