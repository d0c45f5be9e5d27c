"""Storage collaborators: secrets in, results and artifacts out."""

from gitdeployer.storage.results import LocalResultStore, ResultStore
from gitdeployer.storage.secrets import FileSecretSource, SecretSource

__all__ = ["FileSecretSource", "LocalResultStore", "ResultStore", "SecretSource"]
