"""Deploy state machine models — ordered states and allowed transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DeployState(str, Enum):
    """Lifecycle of one deploy invocation."""

    INIT = "init"
    SECRET_FETCHED = "secret_fetched"
    SOURCE_WORKSPACE_READY = "source_workspace_ready"
    OUTPUT_WORKSPACE_READY = "output_workspace_ready"
    CLUSTERS_SELECTED = "clusters_selected"
    BATCH_RUNNING = "batch_running"
    ARTIFACT_UPLOADED = "artifact_uploaded"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Forward-only transitions.  BATCH_RUNNING may repeat once per batch;
# OUTPUT_WORKSPACE_READY is skipped when source and output repos are the same.
# Every non-terminal state may move to FAILED (added below).
VALID_TRANSITIONS: dict[DeployState, set[DeployState]] = {
    DeployState.INIT: {DeployState.SECRET_FETCHED},
    DeployState.SECRET_FETCHED: {DeployState.SOURCE_WORKSPACE_READY},
    DeployState.SOURCE_WORKSPACE_READY: {
        DeployState.OUTPUT_WORKSPACE_READY,
        DeployState.CLUSTERS_SELECTED,
    },
    DeployState.OUTPUT_WORKSPACE_READY: {DeployState.CLUSTERS_SELECTED},
    DeployState.CLUSTERS_SELECTED: {
        DeployState.BATCH_RUNNING,
        DeployState.ARTIFACT_UPLOADED,
    },
    DeployState.BATCH_RUNNING: {
        DeployState.BATCH_RUNNING,
        DeployState.ARTIFACT_UPLOADED,
    },
    DeployState.ARTIFACT_UPLOADED: {DeployState.SUCCEEDED},
    DeployState.SUCCEEDED: set(),  # terminal
    DeployState.FAILED: set(),  # terminal
}
for _state, _targets in VALID_TRANSITIONS.items():
    if _targets:
        _targets.add(DeployState.FAILED)


class StateTransition(BaseModel):
    """Records a single state transition for the run history."""

    model_config = ConfigDict(frozen=True)

    from_state: DeployState
    to_state: DeployState
    detail: str = ""
    timestamp_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
