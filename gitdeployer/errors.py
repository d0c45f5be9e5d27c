"""Exception hierarchy for the git deployer.

Every failure raised by the deployer derives from ``DeployerError`` so the
CLI can map them to exit codes in one place.  The classes fall into four
groups:

- configuration errors (``ConfigError``) — raised before any mutation;
- collaborator errors (secret fetch, git, renderer, pull requests, upload);
- data errors (``FieldsNotFoundError``, ``InventoryFormatError``);
- invariant violations (``NoDiffDetectedError``).

Collaborator errors raised inside the batch loop are wrapped in a
``DeployStepError`` that names the failed operation; the original error is
kept as ``__cause__``.
"""

from __future__ import annotations


class DeployerError(RuntimeError):
    """Base class for all deployer failures."""


class ConfigError(DeployerError):
    """Raised when required input is missing or malformed."""


class InvalidRepositoryReferenceError(ConfigError):
    """Raised when a repository reference is not ``host/owner/repo``."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"invalid git repository reference: {reference!r}")


class SecretAccessError(DeployerError):
    """Raised when a secret cannot be fetched or fails its integrity check."""


class CommandError(DeployerError):
    """Raised when an external process fails to start or exits non-zero."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class GitCommandError(CommandError):
    """Raised when a git sub-command fails."""


class ProviderError(DeployerError):
    """Raised when the pull-request host rejects a request."""


class UnsupportedProviderError(ProviderError):
    """Raised when no provider implementation exists for a hostname."""


class ArtifactUploadError(DeployerError):
    """Raised when an artifact cannot be uploaded."""


class ResultUploadError(DeployerError):
    """Raised when the deploy result cannot be uploaded.

    ``deploy_error`` holds the failure being reported, if any.
    """

    def __init__(self, message: str, *, deploy_error: BaseException | None = None) -> None:
        self.deploy_error = deploy_error
        super().__init__(message)


class FieldsNotFoundError(DeployerError):
    """Raised when required columns are missing from the inventory header."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(f"fields {self.fields!r} not found in header")


class InventoryFormatError(DeployerError):
    """Raised when an inventory data row cannot be interpreted."""


class NoDiffDetectedError(DeployerError):
    """Raised when a batch produced no changes in a workspace."""

    def __init__(self, branch: str) -> None:
        self.branch = branch
        super().__init__(
            "no diff detected between the rendered manifest and the manifest "
            f"on branch {branch}"
        )


class DeployCancelledError(DeployerError):
    """Raised when the deploy is cancelled between or during steps."""


class DeployStepError(DeployerError):
    """Wraps a collaborator failure with the name of the failed operation."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        super().__init__(f"{operation}: {cause}")
