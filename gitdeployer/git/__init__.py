"""Git collaborators: repository workspaces and pull-request providers."""

from gitdeployer.git.providers import GitHubProvider, GitLabProvider, GitProvider, create_provider
from gitdeployer.git.workspace import GitCliWorkspace, GitWorkspace

__all__ = [
    "GitCliWorkspace",
    "GitHubProvider",
    "GitLabProvider",
    "GitProvider",
    "GitWorkspace",
    "create_provider",
]
