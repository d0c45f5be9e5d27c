"""Result and artifact upload.

Layout: {base_path}/{prefix}/results.json and
{base_path}/{prefix}/artifacts/{name}

``ResultStore`` is the port the orchestrator and reporter depend on;
``LocalResultStore`` writes into a directory (typically a mounted bucket)
and returns ``file://`` URIs.  Results are stored as canonical JSON so the
same outcome always produces the same bytes.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from gitdeployer.core.hasher import canonical_json_bytes
from gitdeployer.errors import ArtifactUploadError, ResultUploadError
from gitdeployer.models.results import DeployResult

logger = logging.getLogger(__name__)

RESULTS_FILE = "results.json"


@runtime_checkable
class ResultStore(Protocol):
    """Protocol for result/artifact storage backends."""

    def upload_result(self, result: DeployResult) -> str:
        ...

    def upload_artifact(self, name: str, local_path: Path) -> str:
        ...


class LocalResultStore:
    """Stores results and artifacts under a local directory.

    Parameters
    ----------
    base_path:
        Root directory for uploads.
    prefix:
        Sub-directory for this deploy, e.g. the rollout id.
    """

    def __init__(self, base_path: Path, prefix: str = "") -> None:
        self._root = Path(base_path) / prefix if prefix else Path(base_path)

    @property
    def root(self) -> Path:
        return self._root

    def upload_result(self, result: DeployResult) -> str:
        target = self._root / RESULTS_FILE
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(canonical_json_bytes(result.to_payload()))
        except OSError as exc:
            raise ResultUploadError(f"unable to write results to {target}: {exc}") from exc
        logger.debug("LocalResultStore: wrote %s", target)
        return target.resolve().as_uri()

    def upload_artifact(self, name: str, local_path: Path) -> str:
        target = self._root / "artifacts" / Path(name).name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, target)
        except OSError as exc:
            raise ArtifactUploadError(f"unable to upload artifact {name}: {exc}") from exc
        logger.debug("LocalResultStore: copied %s to %s", local_path, target)
        return target.resolve().as_uri()
