"""Artifact commands — ``names``, ``artifacts``, ``fetch`` and ``purge``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from alephbuild.config import BuildSettings
from alephbuild.core.artifact_store import ArtifactNotFoundError, LocalArtifactStore
from alephbuild.core.mode_resolver import planned_kinds, resolve
from alephbuild.core.naming import OUTPUT_KEYS, artifact_name
from alephbuild.models.modes import BuildMode

console = Console()


def _open_store(store: Path | None) -> LocalArtifactStore:
    return LocalArtifactStore(store or BuildSettings().artifact_store_path)


def names_cmd(
    production: bool = typer.Option(
        False,
        "--production/--test",
        help="Show names for the production profile instead of the test profile.",
    ),
) -> None:
    """Print the output keys and artifact names a mode produces."""
    settings = BuildSettings()
    mode = BuildMode.from_flag(production)
    profile = resolve(mode)
    kinds = planned_kinds(mode, package_test_image=settings.package_test_image)
    for kind, key in OUTPUT_KEYS.items():
        if kind in kinds:
            console.print(f"{key}={artifact_name(kind, profile, settings.product_name)}")


def artifacts_cmd(
    store: Path = typer.Option(
        None, "--store", "-s", help="Artifact store directory (defaults to settings)."
    ),
    include_expired: bool = typer.Option(
        False, "--all", help="Include artifacts past their retention."
    ),
) -> None:
    """List published artifacts."""
    refs = _open_store(store).list_refs(include_expired=include_expired)
    if not refs:
        console.print("[dim]No artifacts published.[/dim]")
        return

    table = Table(title="Published Artifacts")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Expires (UTC)", style="dim")
    table.add_column("Digest", style="dim")
    for ref in refs:
        table.add_row(
            ref.name,
            ref.kind.value if ref.kind else "-",
            str(len(ref.files)),
            f"{sum(f.size_bytes for f in ref.files):,}",
            ref.expires_at.strftime("%Y-%m-%d %H:%M"),
            ref.digest[:19],
        )
    console.print(table)


def fetch_cmd(
    name: str = typer.Argument(..., help="Artifact name to fetch."),
    dest: Path = typer.Argument(..., help="Directory to copy the files into."),
    store: Path = typer.Option(
        None, "--store", "-s", help="Artifact store directory (defaults to settings)."
    ),
) -> None:
    """Copy a published artifact's files out of the store."""
    try:
        copied = _open_store(store).fetch(name, dest)
    except (ArtifactNotFoundError, ValueError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)
    for path in copied:
        console.print(str(path))


def purge_cmd(
    store: Path = typer.Option(
        None, "--store", "-s", help="Artifact store directory (defaults to settings)."
    ),
) -> None:
    """Delete artifacts past their retention."""
    removed = _open_store(store).purge_expired()
    if not removed:
        console.print("[dim]Nothing to purge.[/dim]")
        return
    for name in removed:
        console.print(f"[yellow]purged[/yellow] {name}")
