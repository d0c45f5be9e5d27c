"""Result reporting — build the deploy result and upload it.

The upload is attempted for failed deploys too, so the invoking pipeline
always observes a terminal state.  If the upload itself fails the
``ResultUploadError`` carries the original deploy error in
``deploy_error`` instead of replacing it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from gitdeployer.errors import DeployerError, ResultUploadError
from gitdeployer.models.results import (
    DEPLOYER_NAME,
    PUBLISHED_BRANCHES_METADATA_KEY,
    SOURCE_COMMIT_METADATA_KEY,
    SOURCE_METADATA_KEY,
    DeployResult,
    ResultStatus,
)
from gitdeployer.storage.results import ResultStore

logger = logging.getLogger(__name__)


class ResultReporter:
    """Builds ``DeployResult`` objects and hands them to a ``ResultStore``.

    Parameters
    ----------
    store:
        Where results are uploaded.
    build_commit:
        Commit the deployer was built from, reported in metadata.
    """

    def __init__(self, store: ResultStore, *, build_commit: str = "unknown") -> None:
        self.store = store
        self.build_commit = build_commit

    def metadata(self) -> dict[str, str]:
        return {
            SOURCE_METADATA_KEY: DEPLOYER_NAME,
            SOURCE_COMMIT_METADATA_KEY: self.build_commit,
        }

    def success(self, artifact_files: list[str]) -> DeployResult:
        return DeployResult(
            result_status=ResultStatus.SUCCEEDED,
            artifact_files=artifact_files,
            metadata=self.metadata(),
        )

    def failure(self, error: BaseException | str, published_branches: Iterable[str] = ()) -> DeployResult:
        metadata = self.metadata()
        published = list(published_branches)
        if published:
            metadata[PUBLISHED_BRANCHES_METADATA_KEY] = ",".join(published)
        return DeployResult(
            result_status=ResultStatus.FAILED,
            failure_message=str(error) or type(error).__name__,
            metadata=metadata,
        )

    def report(self, result: DeployResult, deploy_error: BaseException | None = None) -> str:
        """Upload ``result`` and return its URI.

        Raises ``ResultUploadError``; when ``deploy_error`` is given it is
        attached to the raised error, not replaced by it.
        """
        kind = "deploy results" if result.succeeded else "failed deploy results"
        logger.info("Uploading %s", kind)
        try:
            uri = self.store.upload_result(result)
        except (DeployerError, OSError) as exc:
            message = f"error uploading {kind}: {exc}"
            if deploy_error is not None:
                message += f" (deploy error: {deploy_error})"
            raise ResultUploadError(message, deploy_error=deploy_error) from exc
        logger.info("Uploaded %s to %s", kind, uri)
        return uri
