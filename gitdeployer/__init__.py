"""gitdeployer: batch rollouts of rendered manifests through git.

Selects clusters from a CSV inventory, rolls new platform/workload
revisions out in batches, renders manifests with an external ``hydrate``
binary and publishes each batch as a commit on a feature branch (plus an
optional pull request), then reports a result for the invoking pipeline.
"""

__version__ = "0.1.0"
__description__ = "Batch rollout of hydrated manifests through git repositories"

from gitdeployer.core.orchestrator import BatchOrchestrator

__all__ = ["BatchOrchestrator", "__version__"]
