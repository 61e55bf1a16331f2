"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any, TypeVar

import typer

from relman.core.errors import ReleaseError, exit_code_for
from relman.core.result import Err, Result
from relman.output.console import Style

if TYPE_CHECKING:
    from relman.cli.context import CLIContext


T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Drive one async release operation from a synchronous typer command."""
    return asyncio.run(coro)


def exit_on_error(result: Result[T, ReleaseError], ctx: CLIContext) -> T:
    """Return the Ok value, or report the error and exit with its code."""
    if isinstance(result, Err):
        error = result.error
        prefix = f"[{error.context}] " if error.context else ""
        stage = f" (stage: {error.stage})" if error.stage else ""
        ctx.console.error(f"{prefix}{error.message}{stage}")
        if error.hint:
            ctx.console.print(f"hint: {error.hint}", Style.DIM)
        raise typer.Exit(code=int(exit_code_for(error)))
    return result.value


def require(ctx: CLIContext, **values: str | None) -> None:
    """Exit with a user error when a required option is missing or blank."""
    for name, value in values.items():
        if value is None or not value.strip():
            exit_on_error(
                Err(
                    ReleaseError(
                        kind="missing_parameter",
                        message=f"required parameter missing: --{name.replace('_', '-')}",
                    )
                ),
                ctx,
            )
