"""Partition selected clusters into batches.

A configured batch size of zero or less means "everything in one batch".
The effective size is used both for the number of batches and for the
slice stride, so a non-positive size can never produce an empty or endless
loop.
"""

from __future__ import annotations

import math

from gitdeployer.models.batches import Batch


def effective_batch_size(cluster_count: int, batch_size: int) -> int:
    """Return the batch size actually used for ``cluster_count`` clusters."""
    if batch_size > 0:
        return batch_size
    return cluster_count


def batch_count(cluster_count: int, batch_size: int) -> int:
    """Return the number of batches ``cluster_count`` clusters split into."""
    if cluster_count <= 0:
        return 0
    size = effective_batch_size(cluster_count, batch_size)
    return math.ceil(cluster_count / size)


def partition(clusters: list[str], batch_size: int, rollout_id: str) -> list[Batch]:
    """Split ``clusters`` into ordered, non-empty batches.

    Batch ``k`` (1-based) covers ``clusters[(k-1)*B : min(k*B, N)]`` where
    ``B`` is the effective batch size.  An empty selection yields no
    batches.
    """
    total = batch_count(len(clusters), batch_size)
    if total == 0:
        return []
    size = effective_batch_size(len(clusters), batch_size)
    return [
        Batch(
            rollout_id=rollout_id,
            index=k + 1,
            total=total,
            clusters=clusters[k * size:(k + 1) * size],
        )
        for k in range(total)
    ]
