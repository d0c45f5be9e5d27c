"""Rich renderables for CLI output.

Color scheme
------------
- green     : SUCCEEDED / published
- red       : FAILED
- dim       : pending
"""

from __future__ import annotations

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gitdeployer.models.batches import Batch, BatchOutcome, BatchStatus
from gitdeployer.models.results import DeployResult

_BATCH_STATUS: dict[BatchStatus, str] = {
    BatchStatus.PENDING: "[dim]PENDING[/dim]",
    BatchStatus.PUBLISHED: "[green]PUBLISHED[/green]",
    BatchStatus.FAILED: "[bold red]FAILED[/bold red]",
}


def plan_table(batches: list[Batch], *, title: str = "Rollout Plan") -> Table:
    """One row per batch: index, feature branch and clusters."""
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="bold")
    table.add_column("Branch", style="cyan")
    table.add_column("Clusters")
    table.add_column("Count", justify="right")
    for batch in batches:
        table.add_row(
            f"{batch.index}/{batch.total}",
            batch.branch_name,
            ", ".join(batch.clusters),
            str(len(batch.clusters)),
        )
    return table


def outcome_table(outcomes: list[BatchOutcome]) -> Table:
    table = Table(title="Batches")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Branch", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Pull Requests")
    for outcome in outcomes:
        table.add_row(
            str(outcome.index),
            outcome.branch,
            _BATCH_STATUS[outcome.status],
            ", ".join(f"#{n}" for n in outcome.pull_requests) or "-",
        )
    return table


def result_panel(result: DeployResult, rollout: str) -> Panel:
    if result.succeeded:
        lines = [
            "[bold green]Deploy succeeded[/bold green]",
            "",
            f"[bold]Rollout:[/bold]   {rollout}",
        ]
        lines += [f"[bold]Artifact:[/bold]  {uri}" for uri in result.artifact_files]
        border = "green"
    else:
        lines = [
            "[bold red]Deploy failed[/bold red]",
            "",
            f"[bold]Rollout:[/bold]  {rollout}",
            f"[bold]Error:[/bold]    {escape(result.failure_message or '')}",
        ]
        border = "red"
    return Panel(
        "\n".join(lines),
        title="[bold]gitdeployer[/bold]",
        border_style=border,
        padding=(1, 2),
    )
