"""Deploy result payload uploaded for the invoking pipeline."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

SOURCE_METADATA_KEY = "custom-target-source"
SOURCE_COMMIT_METADATA_KEY = "custom-target-source-commit-sha"
PUBLISHED_BRANCHES_METADATA_KEY = "published-branches"

DEPLOYER_NAME = "git-deployer"


class ResultStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class DeployResult(BaseModel):
    """Outcome of one deploy invocation.

    Serialized with camelCase keys (``resultStatus``, ``failureMessage``,
    ``artifactFiles``, ``metadata``) via ``to_payload()``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    result_status: ResultStatus = Field(alias="resultStatus")
    failure_message: str | None = Field(default=None, alias="failureMessage")
    artifact_files: list[str] = Field(default_factory=list, alias="artifactFiles")
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _status_consistent(self) -> DeployResult:
        if self.result_status == ResultStatus.SUCCEEDED:
            if self.failure_message:
                raise ValueError("a succeeded result cannot carry a failure message")
            if not self.artifact_files:
                raise ValueError("a succeeded result must reference at least one artifact")
        else:
            if not self.failure_message:
                raise ValueError("a failed result must carry a failure message")
            if self.artifact_files:
                raise ValueError("a failed result cannot reference artifacts")
        return self

    @property
    def succeeded(self) -> bool:
        return self.result_status == ResultStatus.SUCCEEDED

    def to_payload(self) -> dict:
        """Return the JSON-ready payload, dropping fields that do not apply."""
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not self.artifact_files:
            payload.pop("artifactFiles", None)
        return payload
