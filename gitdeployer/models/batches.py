"""Batch models — the unit of work of one rollout iteration."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def feature_branch_name(rollout_id: str, index: int, total: int) -> str:
    """Return the per-batch feature branch name.

    Downstream tooling parses this shape: ``{rollout}__{index}/{total}``.
    """
    return f"{rollout_id}__{index}/{total}"


class Batch(BaseModel):
    """A chunk of cluster names processed with one feature branch.

    ``index`` is 1-based; ``total`` is the effective number of batches in
    the rollout.
    """

    model_config = ConfigDict(frozen=True)

    rollout_id: str
    index: int = Field(ge=1)
    total: int = Field(ge=1)
    clusters: list[str]

    @field_validator("clusters")
    @classmethod
    def _non_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("a batch must contain at least one cluster")
        return value

    @property
    def branch_name(self) -> str:
        return feature_branch_name(self.rollout_id, self.index, self.total)


class BatchStatus(str, Enum):
    """How far a batch got before the deploy moved on or stopped."""

    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


class BatchOutcome(BaseModel):
    """Per-batch record kept by the orchestrator.

    ``published_repositories`` lists the repositories whose feature branch
    was pushed, so a failed deploy still shows which branches are live.
    """

    model_config = ConfigDict(frozen=True)

    index: int
    branch: str
    clusters: list[str]
    status: BatchStatus = BatchStatus.PENDING
    published_repositories: list[str] = []
    pull_requests: list[int] = []
    error: str = ""
