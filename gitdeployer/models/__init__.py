"""Git deployer data models — all Pydantic v2, all frozen (immutable)."""

from gitdeployer.models.batches import Batch, BatchOutcome, BatchStatus, feature_branch_name
from gitdeployer.models.git import GitRepositoryRef, PullRequest
from gitdeployer.models.inventory import InventoryRow, parse_tags
from gitdeployer.models.results import DeployResult, ResultStatus
from gitdeployer.models.states import VALID_TRANSITIONS, DeployState, StateTransition

__all__ = [
    # batches
    "Batch",
    "BatchOutcome",
    "BatchStatus",
    "feature_branch_name",
    # git
    "GitRepositoryRef",
    "PullRequest",
    # inventory
    "InventoryRow",
    "parse_tags",
    # results
    "DeployResult",
    "ResultStatus",
    # states
    "DeployState",
    "StateTransition",
    "VALID_TRANSITIONS",
]
