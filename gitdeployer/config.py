"""Environment-driven configuration.

Three settings objects, all immutable once built:

- ``RuntimeSettings`` — how the deployer itself runs (log level, working
  directories, binaries, timeouts).  Overridable via ``GITDEPLOYER_*``
  environment variables or a ``.env`` file.
- ``DeployParams`` — the rollout parameters handed over by the delivery
  pipeline as ``CLOUD_DEPLOY_customTarget_*`` variables (plus the
  ``platform-revision`` / ``workload-revision`` and tag-match deploy
  parameters).
- ``DeployRequest`` — identity of the rollout (``CLOUD_DEPLOY_*``).

Examples
--------
Override via environment::

    export GITDEPLOYER_LOG_LEVEL=DEBUG
    export GITDEPLOYER_WORKSPACE_DIR=/workspace
    export CLOUD_DEPLOY_customTarget_hydrationBatchSize=5
"""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_CUSTOM_TARGET = "CLOUD_DEPLOY_customTarget_"

DEFAULT_USERNAME = "Cloud Deploy"
DEFAULT_WAIT_SECONDS = 30.0
DEFAULT_SOURCE_OF_TRUTH = "source_of_truth.csv"
DEFAULT_BASE_DIR = "base_library/"
DEFAULT_OVERLAY_DIR = "overlays/"
DEFAULT_OUTPUT_DIR = "output"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a duration such as ``30s``, ``1m30s`` or ``500ms`` into seconds.

    A bare number is read as seconds.  Raises ``ValueError`` otherwise.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


def _split_tags(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split(",") if value else []
    return value


def _custom_target(name: str) -> AliasChoices:
    # Field name stays accepted so tests and callers can build params directly.
    return AliasChoices(f"{_CUSTOM_TARGET}{name}", name)


class RuntimeSettings(BaseSettings):
    """Settings for the deployer process itself."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GITDEPLOYER_",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    log_level: str = "INFO"

    # Working directories
    workspace_dir: Path = Path(".")
    storage_dir: Path = Path(".gitdeployer/results")
    secrets_dir: Path = Path(".gitdeployer/secrets")

    # External binaries
    hydrate_bin: str = "hydrate"
    git_bin: str = "git"

    # Per-call timeouts imposed on collaborators
    command_timeout_seconds: float = 600.0
    provider_timeout_seconds: float = 30.0

    # Pull-request hosts
    github_api_url: str = "https://api.github.com"
    gitlab_api_url: str = "https://gitlab.com/api/v4"

    # Reported in result metadata
    build_commit: str = "unknown"


class DeployParams(BaseSettings):
    """Validated rollout parameters.

    At least one of ``platform_revision`` / ``workload_revision`` must be
    set.  Empty environment values are treated as unset.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Required
    git_source_repo: str = Field(validation_alias=_custom_target("gitSourceRepo"))
    git_source_branch: str = Field(validation_alias=_custom_target("gitSourceBranch"))
    git_output_repo: str = Field(validation_alias=_custom_target("gitOutputRepo"))
    git_output_branch: str = Field(validation_alias=_custom_target("gitOutputBranch"))
    git_secret: str = Field(validation_alias=_custom_target("gitSecret"))
    cluster_group: str = Field(validation_alias=_custom_target("hydrationClusterGroup"))
    batch_size: int = Field(validation_alias=_custom_target("hydrationBatchSize"))

    # Revisions being rolled out
    platform_revision: str = Field(
        default="", validation_alias=AliasChoices("platform-revision", "platform_revision")
    )
    workload_revision: str = Field(
        default="", validation_alias=AliasChoices("workload-revision", "workload_revision")
    )

    # Committer and pull request
    git_username: str = Field(default=DEFAULT_USERNAME, validation_alias=_custom_target("gitUsername"))
    git_email: str = Field(default="", validation_alias=_custom_target("gitEmail"))
    git_commit_message: str = Field(default="", validation_alias=_custom_target("gitCommitMessage"))
    pull_request_title: str = Field(default="", validation_alias=_custom_target("gitPullRequestTitle"))
    pull_request_body: str = Field(default="", validation_alias=_custom_target("gitPullRequestBody"))
    enable_pull_request_merge: bool = Field(
        default=False, validation_alias=_custom_target("gitEnablePullRequestMerge")
    )

    # Hydration layout, relative to the source repository root
    source_of_truth: str = Field(
        default=DEFAULT_SOURCE_OF_TRUTH, validation_alias=_custom_target("hydrationSourceOfTruth")
    )
    base_dir: str = Field(default=DEFAULT_BASE_DIR, validation_alias=_custom_target("hydrationBaseDir"))
    overlay_dir: str = Field(default=DEFAULT_OVERLAY_DIR, validation_alias=_custom_target("hydrationOverlayDir"))
    output_dir: str = Field(default=DEFAULT_OUTPUT_DIR, validation_alias=_custom_target("hydrationOutputDir"))

    wait_between_batches: float = Field(
        default=DEFAULT_WAIT_SECONDS,
        validation_alias=_custom_target("hydrationWaitTimeBetweenBatches"),
    )

    # Tag matching; "any" takes precedence over "all"
    match_any_tags: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("match-clusters-having-any-listed-tag", "match_any_tags"),
    )
    match_all_tags: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("match-clusters-having-all-listed-tags", "match_all_tags"),
    )

    @field_validator("match_any_tags", "match_all_tags", mode="before")
    @classmethod
    def _parse_tags(cls, value: Any) -> Any:
        return _split_tags(value)

    @field_validator("wait_between_batches", mode="before")
    @classmethod
    def _parse_wait(cls, value: Any) -> Any:
        if isinstance(value, timedelta):
            return value.total_seconds()
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @model_validator(mode="after")
    def _require_revision(self) -> DeployParams:
        if not self.platform_revision and not self.workload_revision:
            raise ValueError(
                "at least one of parameter 'platform-revision' and "
                "'workload-revision' is required"
            )
        return self

    @property
    def separate_output_repo(self) -> bool:
        """Whether hydrated manifests go to a different repository."""
        return self.git_source_repo != self.git_output_repo


class DeployRequest(BaseSettings):
    """Identity of the rollout being deployed."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUD_DEPLOY_",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    project: str = ""
    location: str = ""
    pipeline: str = Field(
        default="", validation_alias=AliasChoices("CLOUD_DEPLOY_DELIVERY_PIPELINE", "pipeline")
    )
    target: str = ""
    release: str = ""
    rollout: str


# Module-level singleton — import as `from gitdeployer.config import settings`
settings = RuntimeSettings()
