"""Main Typer application — imports and registers all CLI commands.

Entry point: ``aleph-build`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from alephbuild.cli.commands.artifacts import (
    artifacts_cmd,
    fetch_cmd,
    names_cmd,
    purge_cmd,
)
from alephbuild.cli.commands.build import build_cmd
from alephbuild.config import BuildSettings

app = typer.Typer(
    name="aleph-build",
    help="aleph-build: build, package and publish aleph-node artifacts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure(
    log_level: str = typer.Option(
        None, "--log-level", help="Log level (defaults to ALEPHBUILD_LOG_LEVEL)."
    ),
) -> None:
    level = (log_level or BuildSettings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
        ],
        force=True,
    )


# Register subcommands
app.command(name="build", help="Build, package and publish artifacts for a ref.")(build_cmd)
app.command(name="names", help="Print the artifact names a mode produces.")(names_cmd)
app.command(name="artifacts", help="List published artifacts.")(artifacts_cmd)
app.command(name="fetch", help="Copy a published artifact out of the store.")(fetch_cmd)
app.command(name="purge", help="Delete artifacts past their retention.")(purge_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
