"""Git workspace collaborator — one cloned repository on disk.

This module provides the ``GitWorkspace`` protocol the orchestrator depends
on and ``GitCliWorkspace``, the implementation that shells out to ``git``.

All methods are intentionally small and map closely to a single git
command, so callers can reason about side effects:

- ``clone(secret)`` — clone ``https://host/owner/repo.git`` into
  ``<workspace_dir>/<repo>`` authenticating with the secret as a token.
- ``configure()`` — set ``user.name`` / ``user.email`` for the repository.
- ``checkout_branch(name)`` — switch to ``name``, creating it from the
  current position when no local or remote branch of that name exists.
- ``branch_exists(name)`` — whether ``origin`` has a branch called ``name``;
  each name is looked up once and pushes are remembered.
- ``pull(branch)`` — ``git pull origin <branch>``.
- ``diff()`` — ``git status --porcelain``; empty output means no changes.
- ``stage_all()`` / ``commit(message)`` / ``push(branch)``.

Every git invocation goes through ``_git(...)`` which raises
``GitCommandError`` with the sub-command name on failure or timeout.  The
secret never appears in logs or error messages.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote

from gitdeployer.core.process import run_command
from gitdeployer.errors import GitCommandError
from gitdeployer.models.git import GitRepositoryRef

logger = logging.getLogger(__name__)


@runtime_checkable
class GitWorkspace(Protocol):
    """Protocol for one repository working tree."""

    ref: GitRepositoryRef

    @property
    def root(self) -> Path:
        ...

    def clone(self, secret: str) -> None:
        ...

    def configure(self) -> None:
        ...

    def checkout_branch(self, name: str) -> None:
        ...

    def branch_exists(self, name: str) -> bool:
        ...

    def pull(self, branch: str) -> None:
        ...

    def diff(self) -> str:
        ...

    def stage_all(self) -> None:
        ...

    def commit(self, message: str) -> None:
        ...

    def push(self, branch: str) -> None:
        ...


class GitCliWorkspace:
    """``GitWorkspace`` backed by the ``git`` binary.

    Parameters
    ----------
    ref:
        Repository identity and committer.
    workspace_dir:
        Directory the repository is cloned into (as ``<workspace_dir>/<repo>``).
    git_bin:
        The git executable.
    timeout:
        Seconds allowed per git invocation.
    """

    def __init__(
        self,
        ref: GitRepositoryRef,
        workspace_dir: Path,
        *,
        git_bin: str = "git",
        timeout: float | None = None,
    ) -> None:
        self.ref = ref
        self.workspace_dir = Path(workspace_dir)
        self.git_bin = git_bin
        self.timeout = timeout
        self._secrets: tuple[str, ...] = ()
        # branch name -> present on origin; filled by ls-remote and push
        self._remote_heads: dict[str, bool] = {}

    @property
    def root(self) -> Path:
        return self.workspace_dir / self.ref.name

    def clone_url(self, secret: str) -> str:
        user = quote(self.ref.username or "git", safe="")
        token = quote(secret, safe="")
        return f"https://{user}:{token}@{self.ref.hostname}/{self.ref.slug}.git"

    def clone(self, secret: str) -> None:
        self._secrets = (secret, quote(secret, safe=""))
        self._remote_heads.clear()
        self.workspace_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning git repository %s", self.ref.reference)
        self._git(["clone", self.clone_url(secret), str(self.root)], cwd=self.workspace_dir)

    def configure(self) -> None:
        self._git(["config", "user.name", self.ref.username])
        self._git(["config", "user.email", self.ref.email])

    def checkout_branch(self, name: str) -> None:
        if self._local_branch_exists(name) or self.branch_exists(name):
            self._git(["checkout", name])
        else:
            self._git(["checkout", "-b", name])

    def branch_exists(self, name: str) -> bool:
        """Whether ``origin`` has ``name``; asked once per branch, then remembered."""
        if name not in self._remote_heads:
            out = self._git(["ls-remote", "--heads", "origin", name])
            self._remote_heads[name] = bool(out.strip())
        return self._remote_heads[name]

    def pull(self, branch: str) -> None:
        self._git(["pull", "origin", branch])

    def diff(self) -> str:
        return self._git(["status", "--porcelain"])

    def stage_all(self) -> None:
        self._git(["add", "-A"])

    def commit(self, message: str) -> None:
        self._git(["commit", "-m", message])

    def push(self, branch: str) -> None:
        self._git(["push", "-u", "origin", branch])
        self._remote_heads[branch] = True

    def _local_branch_exists(self, name: str) -> bool:
        try:
            self._git(["show-ref", "--verify", "--quiet", f"refs/heads/{name}"])
        except GitCommandError:
            return False
        return True

    def _git(self, args: list[str], *, cwd: Path | None = None) -> str:
        return run_command(
            self.git_bin,
            args,
            cwd=cwd or self.root,
            timeout=self.timeout,
            secrets=self._secrets,
            error_cls=GitCommandError,
            forward_output=False,
        )
