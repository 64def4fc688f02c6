"""koso CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from koso.cli.clusters import clusters_app
from koso.cli.index import index_cmd, remove_cmd
from koso.cli.init import init_cmd
from koso.cli.report import report_app
from koso.cli.search import link_cmd, related_cmd, search_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("koso")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"koso {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="koso",
    help=(
        "koso — retrieval and clustering for product documents.\n\n"
        "  koso index     Chunk, embed and auto-link a document.\n"
        "  koso clusters  Group customer evidence into themes."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr.")
    ] = False,
) -> None:
    """koso — retrieval and clustering for product documents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


app.command("init")(init_cmd)
app.command("index")(index_cmd)
app.command("remove")(remove_cmd)
app.command("search")(search_cmd)
app.command("related")(related_cmd)
app.command("link")(link_cmd)
app.add_typer(clusters_app, name="clusters")
app.add_typer(report_app, name="report")


@app.command("version")
def version_cmd() -> None:
    """Show the installed koso version."""
    typer.echo(f"koso {_installed_version()}")


if __name__ == "__main__":
    app()
