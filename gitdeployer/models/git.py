"""Repository identity and pull-request models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from gitdeployer.errors import InvalidRepositoryReferenceError


class GitRepositoryRef(BaseModel):
    """Identity of a hosted git repository plus the committer to use in it.

    Built from a ``host/owner/repo`` reference string via ``parse()``.
    """

    model_config = ConfigDict(frozen=True)

    hostname: str
    owner: str
    name: str
    username: str = "Cloud Deploy"
    email: str = ""

    @classmethod
    def parse(cls, reference: str, *, username: str = "Cloud Deploy", email: str = "") -> GitRepositoryRef:
        """Split ``host/owner/repo`` into its three parts.

        Raises ``InvalidRepositoryReferenceError`` unless there are exactly
        three non-empty parts.
        """
        parts = reference.split("/")
        if len(parts) != 3 or not all(parts):
            raise InvalidRepositoryReferenceError(reference)
        hostname, owner, name = parts
        return cls(hostname=hostname, owner=owner, name=name, username=username, email=email)

    @property
    def reference(self) -> str:
        return f"{self.hostname}/{self.owner}/{self.name}"

    @property
    def slug(self) -> str:
        """``owner/repo`` as used by hosting APIs."""
        return f"{self.owner}/{self.name}"


class PullRequest(BaseModel):
    """A pull (or merge) request opened on the hosting provider."""

    model_config = ConfigDict(frozen=True)

    number: int
    url: str = ""
    source_branch: str = ""
    target_branch: str = ""
