"""``gitdeployer deploy`` — run a rollout from the pipeline environment.

Reads ``DeployParams`` and ``DeployRequest`` from ``CLOUD_DEPLOY_*``
variables, runs every batch, and uploads the result.  SIGINT and SIGTERM
cancel the deploy at the next step boundary or during the wait between
batches; the failure result is still uploaded.

Exit codes: 0 succeeded, 1 deploy failed or bad configuration, 2 the
result could not be uploaded.
"""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from gitdeployer.cli.render import outcome_table, result_panel
from gitdeployer.config import DeployParams, DeployRequest, settings
from gitdeployer.core.cancellation import CancellationToken
from gitdeployer.core.orchestrator import BatchOrchestrator
from gitdeployer.errors import ResultUploadError

logger = logging.getLogger(__name__)

console = Console()

EXIT_DEPLOY_FAILED = 1
EXIT_UPLOAD_FAILED = 2


@contextmanager
def cancel_on_signals(token: CancellationToken) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``token`` for the duration of the block."""

    def _handler(signum: int, frame: object) -> None:
        name = signal.Signals(signum).name
        logger.warning("Received %s, cancelling deploy", name)
        token.cancel(f"received {name}")

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def deploy_cmd(
    workspace_dir: Optional[Path] = typer.Option(
        None,
        "--workspace-dir",
        "-w",
        help="Directory repositories are cloned into.",
    ),
    storage_dir: Optional[Path] = typer.Option(
        None,
        "--storage-dir",
        "-s",
        help="Directory results and artifacts are uploaded to.",
    ),
    secrets_dir: Optional[Path] = typer.Option(
        None,
        "--secrets-dir",
        help="Directory holding mounted secrets.",
    ),
) -> None:
    """Run the rollout described by the CLOUD_DEPLOY_* environment."""
    try:
        params = DeployParams()
        request = DeployRequest()
    except ValidationError as exc:
        console.print(f"[bold red]Invalid deploy parameters:[/bold red]\n{escape(str(exc))}")
        raise typer.Exit(code=EXIT_DEPLOY_FAILED)

    overrides = {
        key: value
        for key, value in (
            ("workspace_dir", workspace_dir),
            ("storage_dir", storage_dir),
            ("secrets_dir", secrets_dir),
        )
        if value is not None
    }
    runtime = settings.model_copy(update=overrides) if overrides else settings

    token = CancellationToken()
    orchestrator = BatchOrchestrator.from_settings(params, request, runtime, cancel=token)

    try:
        with cancel_on_signals(token):
            result = orchestrator.process()
    except ResultUploadError as exc:
        console.print(f"[bold red]Result upload failed:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_UPLOAD_FAILED)

    console.print()
    if orchestrator.outcomes:
        console.print(outcome_table(orchestrator.outcomes))
    console.print(result_panel(result, request.rollout))
    console.print()

    if not result.succeeded:
        raise typer.Exit(code=EXIT_DEPLOY_FAILED)
