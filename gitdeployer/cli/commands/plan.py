"""``gitdeployer plan INVENTORY`` — preview a rollout without touching git.

Runs cluster selection and batching against a local inventory file and
prints the batches with their feature branch names.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from gitdeployer.cli.render import plan_table
from gitdeployer.core.batching import partition
from gitdeployer.core.inventory import InventoryStore
from gitdeployer.errors import DeployerError

console = Console()


def _split(values: Optional[list[str]]) -> list[str]:
    # Accept both repeated options and the comma-separated env format.
    tags: list[str] = []
    for value in values or []:
        tags.extend(t for t in value.split(",") if t)
    return tags


def plan_cmd(
    inventory: Path = typer.Argument(
        ...,
        help="Path to the inventory CSV file.",
    ),
    group: str = typer.Option(
        ...,
        "--group",
        "-g",
        help="Cluster group to roll out to.",
    ),
    match_any: Optional[list[str]] = typer.Option(
        None,
        "--any",
        help="Select clusters carrying any of these tags (repeatable).",
    ),
    match_all: Optional[list[str]] = typer.Option(
        None,
        "--all",
        help="Select clusters carrying all of these tags (repeatable).",
    ),
    batch_size: int = typer.Option(
        0,
        "--batch-size",
        "-b",
        help="Clusters per batch; 0 or less means one batch.",
    ),
    rollout: str = typer.Option(
        "rollout",
        "--rollout",
        "-r",
        help="Rollout id used in feature branch names.",
    ),
) -> None:
    """Show which clusters a rollout would select and how they are batched."""
    if not inventory.exists():
        console.print(f"[bold red]Inventory not found:[/bold red] {inventory}")
        raise typer.Exit(code=1)

    try:
        clusters = InventoryStore(inventory).select_clusters(
            group, _split(match_any), _split(match_all)
        )
    except DeployerError as exc:
        console.print(f"[bold red]Unable to read inventory:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    if not clusters:
        console.print(f"[dim]No clusters selected in group {group}.[/dim]")
        return

    batches = partition(clusters, batch_size, rollout)
    console.print()
    console.print(plan_table(batches, title=f"Rollout Plan: {group}"))
    console.print(
        f"[bold]{len(clusters)}[/bold] cluster(s) in [bold]{len(batches)}[/bold] batch(es)"
    )
