"""Batch orchestrator — the central coordinator of a rollout.

The orchestrator wires together the secret source, the source/output git
workspaces, the inventory, the hydration runner, the pull-request provider
and the result store into one sequential deploy:

    INIT -> SECRET_FETCHED -> SOURCE_WORKSPACE_READY
        -> OUTPUT_WORKSPACE_READY (separate output repo only)
        -> CLUSTERS_SELECTED -> BATCH_RUNNING* -> ARTIFACT_UPLOADED
        -> SUCCEEDED

Any step may move the run to FAILED.  The first error aborts the deploy;
there is no retry and no resume.  Batches already pushed stay pushed and are
listed in the failure result.

Per batch, in order:
1. reset every distinct workspace to a fresh feature branch;
2. write the new revisions for the batch's clusters;
3. hydrate once;
4. for each distinct workspace: require a diff, commit, push, open (and
   optionally merge) a pull request;
5. wait before the next batch (interruptible).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager

from gitdeployer.config import DeployParams, DeployRequest, RuntimeSettings
from gitdeployer.core.batching import partition
from gitdeployer.core.cancellation import CancellationToken
from gitdeployer.core.hydration import HydrateCliRenderer, HydrationRunner, Renderer
from gitdeployer.core.inventory import InventoryStore
from gitdeployer.core.reporter import ResultReporter
from gitdeployer.core.state_machine import DeployStateMachine
from gitdeployer.core.workspaces import WorkspaceHandle, WorkspacePair
from gitdeployer.errors import (
    DeployCancelledError,
    DeployStepError,
    NoDiffDetectedError,
)
from gitdeployer.git.providers import GitProvider, create_provider
from gitdeployer.git.workspace import GitCliWorkspace, GitWorkspace
from gitdeployer.models.batches import Batch, BatchOutcome, BatchStatus
from gitdeployer.models.git import GitRepositoryRef, PullRequest
from gitdeployer.models.results import DeployResult
from gitdeployer.models.states import DeployState
from gitdeployer.storage.results import LocalResultStore, ResultStore
from gitdeployer.storage.secrets import FileSecretSource, SecretSource

logger = logging.getLogger(__name__)

INVENTORY_ARTIFACT_NAME = "source_of_truth.csv"

WorkspaceFactory = Callable[[GitRepositoryRef], GitWorkspace]
ProviderFactory = Callable[[GitRepositoryRef, str], GitProvider]


class BatchOrchestrator:
    """Drives one rollout from secret fetch to result upload.

    Parameters
    ----------
    params:
        Validated rollout parameters.
    request:
        Identity of the rollout (used for branch names and messages).
    secrets:
        Secret source for the git token.
    store:
        Result/artifact store.
    workspace_factory:
        Builds a ``GitWorkspace`` for a repository reference.
    provider_factory:
        Builds a ``GitProvider`` for a repository reference and token.
    renderer:
        The manifest renderer.
    cancel:
        Cancellation token checked before every step and during waits.
    build_commit:
        Reported in result metadata.
    """

    def __init__(
        self,
        params: DeployParams,
        request: DeployRequest,
        *,
        secrets: SecretSource,
        store: ResultStore,
        workspace_factory: WorkspaceFactory,
        provider_factory: ProviderFactory,
        renderer: Renderer,
        cancel: CancellationToken | None = None,
        build_commit: str = "unknown",
    ) -> None:
        self.params = params
        self.request = request
        self.secrets = secrets
        self.store = store
        self.workspace_factory = workspace_factory
        self.provider_factory = provider_factory
        self.cancel = cancel or CancellationToken()
        self.reporter = ResultReporter(store, build_commit=build_commit)
        self.hydration = HydrationRunner(
            renderer,
            base_dir=params.base_dir,
            overlay_dir=params.overlay_dir,
            output_dir=params.output_dir,
            inventory_path=params.source_of_truth,
        )

        self.state_machine = DeployStateMachine()
        self.outcomes: list[BatchOutcome] = []
        self.pair: WorkspacePair | None = None

    @classmethod
    def from_settings(
        cls,
        params: DeployParams,
        request: DeployRequest,
        settings: RuntimeSettings,
        *,
        cancel: CancellationToken | None = None,
    ) -> BatchOrchestrator:
        """Wire the production collaborators from runtime settings."""
        return cls(
            params,
            request,
            secrets=FileSecretSource(settings.secrets_dir),
            store=LocalResultStore(settings.storage_dir, request.rollout),
            workspace_factory=lambda ref: GitCliWorkspace(
                ref,
                settings.workspace_dir,
                git_bin=settings.git_bin,
                timeout=settings.command_timeout_seconds,
            ),
            provider_factory=lambda ref, token: create_provider(ref, token, settings),
            renderer=HydrateCliRenderer(settings.hydrate_bin, timeout=settings.command_timeout_seconds),
            cancel=cancel,
            build_commit=settings.build_commit,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def process(self) -> DeployResult:
        """Deploy and upload the outcome, succeeded or failed.

        Returns the uploaded result.  Raises ``ResultUploadError`` only when
        the upload itself fails.
        """
        logger.info("Processing deploy request for rollout %s", self.request.rollout)
        try:
            result = self.deploy()
        except Exception as exc:
            logger.error("Deploy failed: %s", exc)
            result = self.reporter.failure(exc, published_branches=self.published_branches())
            self.reporter.report(result, deploy_error=exc)
            return result
        self.reporter.report(result)
        return result

    def deploy(self) -> DeployResult:
        """Run the full rollout and return the success result.

        Raises on the first failing step; the state machine ends in FAILED.
        """
        try:
            return self._deploy()
        except Exception as exc:
            self.state_machine.fail(str(exc))
            raise

    def published_branches(self) -> list[str]:
        """``repo:branch`` for every feature branch pushed so far."""
        return [
            f"{repo}:{outcome.branch}"
            for outcome in self.outcomes
            for repo in outcome.published_repositories
        ]

    # ------------------------------------------------------------------
    # Deploy flow
    # ------------------------------------------------------------------

    def _deploy(self) -> DeployResult:
        params = self.params
        sm = self.state_machine

        # Configuration errors abort before anything is touched.
        source_ref = GitRepositoryRef.parse(
            params.git_source_repo, username=params.git_username, email=params.git_email
        )
        output_ref = source_ref
        if params.separate_output_repo:
            output_ref = GitRepositoryRef.parse(
                params.git_output_repo, username=params.git_username, email=params.git_email
            )

        logger.info("Accessing secret %s", params.git_secret)
        with self._step("unable to access git secret"):
            secret = self.secrets.fetch(params.git_secret).decode("utf-8").strip()
        sm.transition(DeployState.SECRET_FETCHED)

        with self._step("unable to set up git workspace"):
            source_ws = self.workspace_factory(source_ref)
            self._setup_workspace(source_ws, params.git_source_branch, secret)
        sm.transition(DeployState.SOURCE_WORKSPACE_READY, source_ref.reference)

        if params.separate_output_repo:
            with self._step("unable to set up git workspace"):
                output_ws = self.workspace_factory(output_ref)
                self._setup_workspace(output_ws, params.git_output_branch, secret)
            sm.transition(DeployState.OUTPUT_WORKSPACE_READY, output_ref.reference)
            self.pair = WorkspacePair(
                source=WorkspaceHandle("source", source_ws, params.git_source_branch, params.git_output_branch),
                output=WorkspaceHandle("output", output_ws, params.git_output_branch, params.git_output_branch),
            )
        else:
            self.pair = WorkspacePair.unified(
                source_ws, params.git_source_branch, params.git_output_branch
            )

        inventory = InventoryStore(self.pair.source.workspace.root / params.source_of_truth)
        logger.info(
            "Determining clusters to update: cluster group %s, match any tag %s, match all tags %s",
            params.cluster_group,
            params.match_any_tags,
            params.match_all_tags,
        )
        with self._step("unable to determine clusters to be updated"):
            clusters = inventory.select_clusters(
                params.cluster_group, params.match_any_tags, params.match_all_tags
            )
        logger.info("Determined clusters to update: %s", clusters)
        sm.transition(DeployState.CLUSTERS_SELECTED, f"{len(clusters)} cluster(s)")

        batches = partition(clusters, params.batch_size, self.request.rollout)
        for batch in batches:
            sm.transition(DeployState.BATCH_RUNNING, batch.branch_name)
            self._run_batch(self.pair, inventory, batch, secret)
            logger.info("Completed processing batch %s with branch %s", batch.clusters, batch.branch_name)
            if batch.index < batch.total:
                logger.info("Waiting %.1fs before the next batch", params.wait_between_batches)
                self.cancel.wait(params.wait_between_batches)
        logger.info("Completed processing all %d batch(es)", len(batches))

        with self._step("error uploading deploy artifact"):
            artifact_uri = self.store.upload_artifact(INVENTORY_ARTIFACT_NAME, inventory.path)
        logger.info("Uploaded deploy artifact to %s", artifact_uri)
        sm.transition(DeployState.ARTIFACT_UPLOADED)

        result = self.reporter.success([artifact_uri])
        sm.transition(DeployState.SUCCEEDED)
        return result

    def _run_batch(self, pair: WorkspacePair, inventory: InventoryStore, batch: Batch, secret: str) -> None:
        branch = batch.branch_name
        logger.info("Processing batch %s with branch %s", batch.clusters, branch)
        published: list[str] = []
        pull_requests: list[int] = []

        try:
            for handle in pair.distinct():
                with self._step("unable to reset git workspace"):
                    self._reset_workspace(handle.workspace, handle.base_branch, branch)

            with self._step("unable to update platform and workload revisions"):
                inventory.update_revisions(
                    batch.clusters, self.params.platform_revision, self.params.workload_revision
                )

            with self._step("unable to hydrate"):
                self.hydration.hydrate(pair.source.workspace.root, pair.output.workspace.root)

            for handle in pair.distinct():
                workspace = handle.workspace
                with self._step("unable to run git status"):
                    changes = workspace.diff()
                if not changes.strip():
                    raise NoDiffDetectedError(branch)

                logger.info("Committing and pushing %s changes to branch %s", handle.role, branch)
                with self._step("unable to commit and push changes"):
                    self._commit_and_push(workspace, branch)
                published.append(workspace.ref.reference)

                with self._step("unable to handle destination branch"):
                    pr = self._handle_destination_branch(workspace, branch, handle.destination_branch, secret)
                if pr is not None:
                    pull_requests.append(pr.number)
        except Exception as exc:
            self.outcomes.append(
                BatchOutcome(
                    index=batch.index,
                    branch=branch,
                    clusters=batch.clusters,
                    status=BatchStatus.FAILED,
                    published_repositories=published,
                    pull_requests=pull_requests,
                    error=str(exc),
                )
            )
            raise

        self.outcomes.append(
            BatchOutcome(
                index=batch.index,
                branch=branch,
                clusters=batch.clusters,
                status=BatchStatus.PUBLISHED,
                published_repositories=published,
                pull_requests=pull_requests,
            )
        )

    # ------------------------------------------------------------------
    # Git steps
    # ------------------------------------------------------------------

    def _setup_workspace(self, workspace: GitWorkspace, branch: str, secret: str) -> None:
        """Clone, configure and check out ``branch``, pulling it if it exists remotely."""
        workspace.clone(secret)
        workspace.configure()
        self._checkout_and_pull(workspace, branch)

    def _reset_workspace(self, workspace: GitWorkspace, base_branch: str, feature_branch: str) -> None:
        """Bring ``base_branch`` up to date, then branch ``feature_branch`` off it."""
        workspace.configure()
        self._checkout_and_pull(workspace, base_branch)
        self._checkout_and_pull(workspace, feature_branch)

    def _checkout_and_pull(self, workspace: GitWorkspace, branch: str) -> None:
        logger.info("Checking out branch %s in %s", branch, workspace.ref.reference)
        workspace.checkout_branch(branch)
        if workspace.branch_exists(branch):
            workspace.pull(branch)

    def _commit_and_push(self, workspace: GitWorkspace, branch: str) -> None:
        workspace.stage_all()
        workspace.commit(self.commit_message())
        workspace.push(branch)

    def _handle_destination_branch(
        self,
        workspace: GitWorkspace,
        feature_branch: str,
        destination_branch: str,
        secret: str,
    ) -> PullRequest | None:
        """Open a pull request to ``destination_branch`` and merge it if enabled."""
        if not destination_branch:
            return None

        with closing(self.provider_factory(workspace.ref, secret)) as provider:
            logger.info("Opening pull request from %s to %s", feature_branch, destination_branch)
            pr = provider.open_pull_request(
                feature_branch,
                destination_branch,
                self.pull_request_title(feature_branch),
                self.pull_request_body(),
            )
            if self.params.enable_pull_request_merge:
                logger.info("Merging pull request %d", pr.number)
                provider.merge_pull_request(pr.number)
        return pr

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def commit_message(self) -> str:
        if self.params.git_commit_message:
            return self.params.git_commit_message
        r = self.request
        return f"Delivery Pipeline: {r.pipeline} Release: {r.release} Rollout: {r.rollout}"

    def pull_request_title(self, feature_branch: str) -> str:
        return self.params.pull_request_title or f"[Rollout Manager]: {feature_branch}"

    def pull_request_body(self) -> str:
        if self.params.pull_request_body:
            return self.params.pull_request_body
        r = self.request
        return (
            f"Project: {r.project}\n"
            f"Location: {r.location}\n"
            f"Delivery Pipeline: {r.pipeline}\n"
            f"Target: {r.target}\n"
            f"Release: {r.release}\n"
            f"Rollout: {r.rollout}"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _step(self, operation: str) -> Iterator[None]:
        """Check for cancellation, then wrap collaborator failures with ``operation``."""
        self.cancel.raise_if_cancelled(operation)
        try:
            yield
        except (DeployCancelledError, DeployStepError, NoDiffDetectedError):
            raise
        except Exception as exc:
            raise DeployStepError(operation, exc) from exc
