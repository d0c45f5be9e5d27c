"""Cancellation token shared by every step of a deploy."""

from __future__ import annotations

import threading

from gitdeployer.errors import DeployCancelledError


class CancellationToken:
    """A one-shot cancel flag with an interruptible wait.

    ``cancel()`` is safe to call from a signal handler or another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, step: str = "") -> None:
        if self._event.is_set():
            where = f" before {step}" if step else ""
            raise DeployCancelledError(f"deploy cancelled{where}: {self.reason}")

    def wait(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise ``DeployCancelledError`` if cancelled meanwhile."""
        if seconds > 0 and self._event.wait(seconds):
            raise DeployCancelledError(f"deploy cancelled while waiting between batches: {self.reason}")
        self.raise_if_cancelled()
