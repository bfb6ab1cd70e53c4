"""``aleph-build build`` — run the pipeline for one ref and mode.

Prints the run's state transitions and its outputs. With
``--github-output`` the outputs are also appended as ``key=value`` lines,
the format GitHub Actions reads step outputs from.
"""

from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from alephbuild.config import BuildSettings
from alephbuild.core.failures import ConfigurationFailure
from alephbuild.core.orchestrator import Orchestrator
from alephbuild.models.modes import BuildRequest
from alephbuild.models.runs import PipelineRun, RunState

console = Console()

_STATE_STYLES: dict[RunState, str] = {
    RunState.DONE: "bold green",
    RunState.FAILED: "bold red",
    RunState.PUBLISHING: "cyan",
    RunState.PACKAGING: "cyan",
    RunState.BUILDING: "yellow",
    RunState.TOOLCHAIN_READY: "green",
    RunState.INIT: "dim",
}


def render_transitions(run: PipelineRun) -> Table:
    """Table of the run's state transitions."""
    table = Table(title=f"Run {run.run_id}", show_lines=False)
    table.add_column("From", style="dim")
    table.add_column("To")
    table.add_column("At (UTC)", style="dim")
    table.add_column("Detail", overflow="fold")
    for t in run.transitions:
        style = _STATE_STYLES.get(t.to_state, "")
        table.add_row(
            t.from_state.value,
            f"[{style}]{t.to_state.value}[/{style}]" if style else t.to_state.value,
            t.at.strftime("%H:%M:%S"),
            escape(t.detail.splitlines()[0]) if t.detail else "",
        )
    return table


def write_github_output(path: Path, outputs: dict[str, str]) -> None:
    """Append ``key=value`` lines to a GitHub Actions output file."""
    with Path(path).open("a", encoding="utf-8") as fh:
        for key, value in outputs.items():
            fh.write(f"{key}={value}\n")


def build_cmd(
    ref: str = typer.Option(
        ...,
        "--ref",
        "-r",
        help="git ref (hash, branch or tag) the checkout was made from.",
    ),
    production: Optional[bool] = typer.Option(
        None,
        "--production/--test",
        help="Build mode. Required: --production or --test.",
        show_default=False,
    ),
    checkout: Path = typer.Option(
        Path("."),
        "--checkout",
        "-c",
        help="Path to the source checkout.",
    ),
    store: Path = typer.Option(
        None,
        "--store",
        "-s",
        help="Artifact store directory (defaults to settings).",
    ),
    github_output: Path = typer.Option(
        None,
        "--github-output",
        envvar="GITHUB_OUTPUT",
        help="File to append key=value outputs to.",
    ),
) -> None:
    """Build, package and publish the artifacts for REF.

    Test mode builds the node binary only; production mode also builds the
    runtime and packages the node image.
    """
    try:
        request = BuildRequest.create(ref, production)
    except ConfigurationFailure as exc:
        console.print(f"[bold red]Invalid input:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=2)

    settings = BuildSettings()
    if store is not None:
        settings = settings.model_copy(update={"artifact_store_path": store})
    orchestrator = Orchestrator.from_settings(settings)

    cancel = threading.Event()
    previous = signal.signal(signal.SIGTERM, lambda *_: cancel.set())
    try:
        run = orchestrator.run(request, checkout, cancel=cancel)
    except KeyboardInterrupt:
        console.print("[bold red]Interrupted.[/bold red]")
        raise typer.Exit(code=130)
    finally:
        signal.signal(signal.SIGTERM, previous)

    console.print()
    console.print(render_transitions(run))
    console.print()

    if not run.succeeded:
        failure = run.failure
        lines = [
            "[bold red]Run failed.[/bold red]",
            "",
            f"[bold]Failure:[/bold]  {failure.failure_kind if failure else 'unknown'}",
            f"[bold]Stage:[/bold]    {failure.stage if failure else 'unknown'}",
        ]
        if failure and failure.artifact_kind:
            lines.append(f"[bold]Artifact:[/bold] {failure.artifact_kind.value}")
        if failure:
            lines += ["", escape(failure.message)]
        console.print(
            Panel("\n".join(lines), title="[bold]aleph-build[/bold]", border_style="red")
        )
        raise typer.Exit(code=1)

    if github_output is not None:
        write_github_output(github_output, run.outputs)

    console.print(
        Panel(
            "\n".join(
                [f"[bold green]Published {len(run.published)} artifact(s).[/bold green]", ""]
                + [f"[bold]{key}[/bold] = {value}" for key, value in run.outputs.items()]
            ),
            title="[bold]aleph-build[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
