"""Source/output workspace pair.

When the source and output repositories are the same, both roles share one
workspace instance and ``distinct()`` yields it once, so every mutating
step runs exactly once instead of twice.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from gitdeployer.git.workspace import GitWorkspace


@dataclass(frozen=True)
class WorkspaceHandle:
    """A workspace, the branch feature branches start from, and where they merge to."""

    role: str
    workspace: GitWorkspace
    base_branch: str
    destination_branch: str


@dataclass(frozen=True)
class WorkspacePair:
    source: WorkspaceHandle
    output: WorkspaceHandle

    @classmethod
    def unified(cls, workspace: GitWorkspace, base_branch: str, destination_branch: str) -> WorkspacePair:
        handle = WorkspaceHandle(
            role="source",
            workspace=workspace,
            base_branch=base_branch,
            destination_branch=destination_branch,
        )
        return cls(source=handle, output=handle)

    @property
    def is_unified(self) -> bool:
        return self.source.workspace is self.output.workspace

    def distinct(self) -> Iterator[WorkspaceHandle]:
        """Yield the source handle, then the output handle unless unified."""
        yield self.source
        if not self.is_unified:
            yield self.output
