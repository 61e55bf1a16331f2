from __future__ import annotations

import typer

from relman import __version__
from relman.cli.commands.debian import (
    fix_manifests,
    persist_debian,
    promote_debian,
    publish,
    pull,
    reversion,
)
from relman.cli.commands.docker import promote_image


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


app.command()(pull)
app.command()(reversion)
app.command()(publish)
app.command("fix-manifests")(fix_manifests)
app.command("promote-debian")(promote_debian)
app.command("persist-debian")(persist_debian)
app.command("promote-image")(promote_image)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(
        False, "--version", callback=_show_version, is_eager=True, help="Show version and exit."
    ),
) -> None:
    """Move Mina build artifacts into release channels."""


def main() -> None:
    app()


if __name__ == "__main__":
    main()
