"""Main Typer application — imports and registers all CLI commands.

Entry point: ``gitdeployer`` (configured via pyproject.toml scripts).

Commands: deploy, plan, version.
"""

from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from gitdeployer import __version__
from gitdeployer.cli.commands.deploy import deploy_cmd
from gitdeployer.cli.commands.plan import plan_cmd
from gitdeployer.config import settings

app = typer.Typer(
    name="gitdeployer",
    help="gitdeployer: batch rollouts of hydrated manifests through git.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to GITDEPLOYER_LOG_LEVEL).",
    ),
) -> None:
    configure_logging(log_level or settings.log_level)


# Register subcommands
app.command(name="deploy", help="Run a rollout from the CLOUD_DEPLOY_* environment.")(deploy_cmd)
app.command(name="plan", help="Preview cluster selection and batches for an inventory.")(plan_cmd)


@app.command(name="version", help="Show the gitdeployer version.")
def version_cmd() -> None:
    """Print the package version and the build commit."""
    console = Console()
    console.print(f"gitdeployer {__version__} (commit {settings.build_commit})")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
