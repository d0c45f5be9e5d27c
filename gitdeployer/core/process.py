"""Blocking external process execution.

``run_command`` starts a process, waits for it with a timeout, captures both
streams and forwards them to this process's own stdout/stderr so the
invoking pipeline's logs show what the tool printed.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Sequence
from pathlib import Path

from gitdeployer.errors import CommandError

logger = logging.getLogger(__name__)

REDACTED = "<redacted>"


def redact(text: str, secrets: Sequence[str]) -> str:
    """Replace every non-empty secret in ``text``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def run_command(
    binary: str,
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
    secrets: Sequence[str] = (),
    error_cls: type[CommandError] = CommandError,
    forward_output: bool = True,
) -> str:
    """Run ``binary args...`` and return its stdout.

    ``cwd=None`` inherits the current working directory.  Values in
    ``secrets`` are redacted from logs, forwarded output and errors.

    Raises ``error_cls`` when the process cannot start, times out or exits
    non-zero.
    """
    cmd = [binary, *args]
    shown = redact(" ".join(cmd), secrets)
    logger.info("Running command: %s", shown)

    try:
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            text=True,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise error_cls(f"command timed out after {timeout}s: {shown}") from None
    except OSError as exc:
        raise error_cls(f"failed to start command {binary!r}: {exc}") from exc

    stdout = proc.stdout or ""
    stderr = proc.stderr or ""
    if forward_output:
        if stdout:
            sys.stdout.write(redact(stdout, secrets))
        if stderr:
            sys.stderr.write(redact(stderr, secrets))

    if proc.returncode != 0:
        clean_err = redact(stderr, secrets).strip()
        raise error_cls(
            f"error running command {shown}: exit status {proc.returncode}\n{clean_err}".rstrip(),
            returncode=proc.returncode,
            stderr=clean_err,
        )
    return stdout
