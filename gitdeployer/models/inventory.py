"""Inventory (source of truth) models and column names."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

CLUSTER_NAME = "cluster_name"
CLUSTER_GROUP = "cluster_group"
CLUSTER_TAGS = "cluster_tags"
PLATFORM_REVISION = "platform_repository_revision"
WORKLOAD_REVISION = "workload_repository_revision"

# Columns needed to decide which clusters a rollout targets.
SELECTION_FIELDS: tuple[str, ...] = (CLUSTER_NAME, CLUSTER_GROUP, CLUSTER_TAGS)

# Columns needed to write new revisions.
UPDATE_FIELDS: tuple[str, ...] = (CLUSTER_NAME, PLATFORM_REVISION, WORKLOAD_REVISION)


def parse_tags(cell: str) -> list[str]:
    """Split a ``cluster_tags`` cell into tags.

    Surrounding quote characters and spaces are trimmed first, then the cell
    is split on ``,``.  Order and duplicates are kept.
    """
    return cell.strip('" ').split(",")


class InventoryRow(BaseModel):
    """One cluster's record in the inventory; ``cluster_name`` is the unique key."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    cluster_group: str = ""
    tags: list[str] = []
    platform_repository_revision: str = ""
    workload_repository_revision: str = ""

    def matches_any(self, match_tags: list[str]) -> bool:
        if not match_tags:
            return False
        return any(tag in match_tags for tag in self.tags)

    def matches_all(self, match_tags: list[str]) -> bool:
        if not match_tags:
            return False
        return all(tag in self.tags for tag in match_tags)
