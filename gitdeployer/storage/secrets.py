"""Secret retrieval.

``SecretSource`` is the port the orchestrator uses to fetch the git token.
``FileSecretSource`` reads secrets mounted as files (one file per secret id)
and verifies an optional ``<file>.sha256`` sidecar holding the hex digest of
the payload, so a truncated or corrupted mount is rejected instead of being
sent to the git host.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from gitdeployer.core.hasher import sha256_hex
from gitdeployer.errors import SecretAccessError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


@runtime_checkable
class SecretSource(Protocol):
    """Protocol for secret backends."""

    def fetch(self, secret_id: str) -> bytes:
        ...


def secret_file_name(secret_id: str) -> str:
    """Map a secret id (which may look like a resource path) to a file name."""
    name = _UNSAFE.sub("_", secret_id.strip("/"))
    if not name or set(name) <= {"."}:
        raise SecretAccessError(f"invalid secret id {secret_id!r}")
    return name


class FileSecretSource:
    """Secrets stored as files under ``base_path``.

    Parameters
    ----------
    base_path:
        Directory holding one file per secret id.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)

    def path_for(self, secret_id: str) -> Path:
        return self._base / secret_file_name(secret_id)

    def fetch(self, secret_id: str) -> bytes:
        """Return the secret payload, verifying its checksum sidecar if present."""
        path = self.path_for(secret_id)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise SecretAccessError(f"failed to access secret {secret_id}: {exc}") from exc

        sidecar = path.with_name(f"{path.name}.sha256")
        if sidecar.exists():
            # sha256sum format: "<hex>  <file name>"
            text = sidecar.read_text(encoding="utf-8").strip()
            expected = text.split()[0].lower() if text else ""
            if sha256_hex(data) != expected:
                raise SecretAccessError(
                    f"secret {secret_id} failed checksum validation; possible data corruption"
                )
        logger.debug("Fetched secret %s (%d bytes)", secret_id, len(data))
        return data
