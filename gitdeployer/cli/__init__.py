"""gitdeployer CLI — Typer-based command-line interface.

Provides the ``gitdeployer`` command with subcommands to run a deploy from
the pipeline environment, preview a rollout plan, and print the version.

All output uses Rich for formatted terminal display.
"""
