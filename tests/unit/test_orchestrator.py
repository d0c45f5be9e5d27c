"""Tests for BatchOrchestrator — batch flow, workspace handling, failure reporting."""

from __future__ import annotations

import time

import pytest

from gitdeployer.config import RuntimeSettings
from gitdeployer.core.cancellation import CancellationToken
from gitdeployer.core.orchestrator import INVENTORY_ARTIFACT_NAME, BatchOrchestrator
from gitdeployer.errors import (
    DeployCancelledError,
    DeployStepError,
    FieldsNotFoundError,
    GitCommandError,
    InvalidRepositoryReferenceError,
    NoDiffDetectedError,
    ProviderError,
    ResultUploadError,
    SecretAccessError,
)
from gitdeployer.git.workspace import GitCliWorkspace
from gitdeployer.models.batches import BatchStatus
from gitdeployer.models.git import GitRepositoryRef
from gitdeployer.models.results import PUBLISHED_BRANCHES_METADATA_KEY, ResultStatus
from gitdeployer.models.states import DeployState
from gitdeployer.storage.results import LocalResultStore
from gitdeployer.storage.secrets import FileSecretSource

ROLLOUT = "rel-7-to-prod-0001"


def _wrap_workspaces(orchestrator: BatchOrchestrator, configure) -> None:
    """Apply ``configure(ws)`` to every workspace the orchestrator creates."""
    build = orchestrator.workspace_factory

    def factory(ref):
        ws = build(ref)
        configure(ws)
        return ws

    orchestrator.workspace_factory = factory


def _states(orchestrator: BatchOrchestrator) -> list[DeployState]:
    return [t.to_state for t in orchestrator.state_machine.history]


class TestSingleBatch:
    def test_success(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(batch_size=0))

        result = orchestrator.process()

        assert result.result_status == ResultStatus.SUCCEEDED
        assert result.artifact_files == [f"mem://artifacts/{INVENTORY_ARTIFACT_NAME}"]
        assert fakes["store"].results == [result]
        assert orchestrator.state_machine.state == DeployState.SUCCEEDED
        assert _states(orchestrator) == [
            DeployState.SECRET_FETCHED,
            DeployState.SOURCE_WORKSPACE_READY,
            DeployState.CLUSTERS_SELECTED,
            DeployState.BATCH_RUNNING,
            DeployState.ARTIFACT_UPLOADED,
            DeployState.SUCCEEDED,
        ]

    def test_git_call_sequence(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(batch_size=0))
        orchestrator.process()

        ws = fakes["workspaces"]["fleet"]
        assert ws.call_names() == [
            # setup
            "clone", "configure", "checkout_branch", "branch_exists", "pull",
            # reset
            "configure", "checkout_branch", "branch_exists", "pull", "checkout_branch", "branch_exists",
            # publish
            "diff", "stage_all", "commit", "push",
        ]
        assert ws.pushed == [f"{ROLLOUT}__1/1"]

    def test_secret_is_decoded_and_stripped(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        orchestrator.process()
        assert fakes["workspaces"]["fleet"].secret == "s3cr3t"
        assert all(p.token == "s3cr3t" for p in fakes["providers"])

    def test_default_messages(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(batch_size=0))
        orchestrator.process()

        ws = fakes["workspaces"]["fleet"]
        assert ws.commits == [f"Delivery Pipeline: fleet Release: rel-7 Rollout: {ROLLOUT}"]
        provider = fakes["providers"][0]
        assert provider.titles == [f"[Rollout Manager]: {ROLLOUT}__1/1"]
        assert provider.bodies[0].splitlines() == [
            "Project: acme-prod",
            "Location: us-central1",
            "Delivery Pipeline: fleet",
            "Target: prod",
            "Release: rel-7",
            f"Rollout: {ROLLOUT}",
        ]

    def test_custom_messages(self, make_orchestrator, make_params):
        params = make_params(
            batch_size=0,
            git_commit_message="bump platform",
            pull_request_title="Rollout",
            pull_request_body="Automated",
        )
        orchestrator, fakes = make_orchestrator(params)
        orchestrator.process()
        assert fakes["workspaces"]["fleet"].commits == ["bump platform"]
        assert fakes["providers"][0].titles == ["Rollout"]
        assert fakes["providers"][0].bodies == ["Automated"]

    def test_pull_request_targets_output_branch(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(batch_size=0, git_output_branch="live"))
        orchestrator.process()
        pr = fakes["providers"][0].opened[0]
        assert pr.source_branch == f"{ROLLOUT}__1/1"
        assert pr.target_branch == "live"
        assert fakes["providers"][0].merged == []

    def test_merge_when_enabled(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(batch_size=0, enable_pull_request_merge=True))
        orchestrator.process()
        assert fakes["providers"][0].merged == [1]
        assert orchestrator.outcomes[0].pull_requests == [1]

    def test_providers_closed_after_each_pull_request(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        orchestrator.process()
        assert len(fakes["providers"]) == 4
        assert all(p.closed for p in fakes["providers"])

    def test_revisions_written_and_uploaded(self, make_orchestrator, make_params, read_revisions):
        orchestrator, fakes = make_orchestrator(make_params(batch_size=0, workload_revision="w2"))
        orchestrator.process()

        ws = fakes["workspaces"]["fleet"]
        revisions = read_revisions(ws.root / "source_of_truth.csv")
        assert revisions["prod-1"] == ("p2", "w2")
        assert revisions["prod-10"] == ("p2", "w2")
        assert revisions["stage-1"] == ("p0", "w0")

        name, content = fakes["store"].artifacts[0]
        assert name == INVENTORY_ARTIFACT_NAME
        assert "prod-1,prod,\"canary,us\",p2,w2" in content


class TestBatches:
    def test_ten_clusters_in_batches_of_three(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        result = orchestrator.process()

        assert result.succeeded
        ws = fakes["workspaces"]["fleet"]
        assert ws.pushed == [f"{ROLLOUT}__{i}/4" for i in range(1, 5)]
        assert len(fakes["renderer"].calls) == 4
        assert [o.clusters for o in orchestrator.outcomes] == [
            ["prod-1", "prod-2", "prod-3"],
            ["prod-4", "prod-5", "prod-6"],
            ["prod-7", "prod-8", "prod-9"],
            ["prod-10"],
        ]
        assert all(o.status == BatchStatus.PUBLISHED for o in orchestrator.outcomes)
        assert _states(orchestrator).count(DeployState.BATCH_RUNNING) == 4

    def test_each_batch_only_updates_its_clusters(self, make_orchestrator, read_revisions):
        orchestrator, fakes = make_orchestrator()
        snapshots: list[dict[str, str]] = []

        def snapshot(_: int) -> None:
            ws = fakes["workspaces"]["fleet"]
            revisions = read_revisions(ws.root / "source_of_truth.csv")
            snapshots.append({name: rev[0] for name, rev in revisions.items()})

        fakes["renderer"].on_render = snapshot
        orchestrator.process()

        assert snapshots[0]["prod-3"] == "p2"
        assert snapshots[0]["prod-4"] == "p1"
        assert snapshots[1]["prod-6"] == "p2"
        assert snapshots[1]["prod-7"] == "p1"

    def test_match_any_tags(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(match_any_tags=["canary"]))
        orchestrator.process()
        assert [o.clusters for o in orchestrator.outcomes] == [["prod-1", "prod-4"]]

    def test_no_clusters_selected(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(cluster_group="dev"))
        result = orchestrator.process()

        assert result.succeeded
        assert fakes["renderer"].calls == []
        assert fakes["workspaces"]["fleet"].pushed == []
        assert [name for name, _ in fakes["store"].artifacts] == [INVENTORY_ARTIFACT_NAME]
        assert _states(orchestrator)[-3:] == [
            DeployState.CLUSTERS_SELECTED,
            DeployState.ARTIFACT_UPLOADED,
            DeployState.SUCCEEDED,
        ]


class TestSeparateOutputRepository:
    @pytest.fixture
    def params(self, make_params):
        return make_params(
            batch_size=5,
            git_output_repo="github.com/acme/rendered",
            git_output_branch="live",
        )

    def test_both_workspaces_published(self, make_orchestrator, params):
        orchestrator, fakes = make_orchestrator(params)
        result = orchestrator.process()

        assert result.succeeded
        source = fakes["workspaces"]["fleet"]
        output = fakes["workspaces"]["rendered"]
        branches = [f"{ROLLOUT}__1/2", f"{ROLLOUT}__2/2"]
        assert source.pushed == branches
        assert output.pushed == branches
        assert DeployState.OUTPUT_WORKSPACE_READY in _states(orchestrator)
        assert orchestrator.outcomes[0].published_repositories == [
            "github.com/acme/fleet",
            "github.com/acme/rendered",
        ]

    def test_pull_request_destinations(self, make_orchestrator, params):
        orchestrator, fakes = make_orchestrator(params)
        orchestrator.process()

        targets = {
            (p.ref.name, pr.target_branch) for p in fakes["providers"] for pr in p.opened
        }
        assert targets == {("fleet", "live"), ("rendered", "live")}

    def test_merge_targets_destination_branch_in_both_repositories(self, make_orchestrator, params):
        params = params.model_copy(update={"enable_pull_request_merge": True})
        orchestrator, fakes = make_orchestrator(params)
        orchestrator.process()

        merged = {
            (p.ref.name, pr.target_branch)
            for p in fakes["providers"]
            for pr in p.opened
            if pr.number in p.merged
        }
        assert merged == {("fleet", "live"), ("rendered", "live")}

    def test_source_workspace_still_resets_to_source_branch(self, make_orchestrator, params):
        orchestrator, fakes = make_orchestrator(params)
        orchestrator.process()
        checkouts = [c[1] for c in fakes["workspaces"]["fleet"].calls if c[0] == "checkout_branch"]
        assert checkouts[:3] == ["main", "main", f"{ROLLOUT}__1/2"]

    def test_output_workspace_resets_to_output_branch(self, make_orchestrator, params):
        orchestrator, fakes = make_orchestrator(params)
        orchestrator.process()
        checkouts = [c[1] for c in fakes["workspaces"]["rendered"].calls if c[0] == "checkout_branch"]
        assert checkouts[:3] == ["live", "live", f"{ROLLOUT}__1/2"]

    def test_output_directory_cleaned_in_output_repo(self, make_orchestrator, params, tmp_dir):
        orchestrator, fakes = make_orchestrator(params)

        def seed_stale_output(ws):
            if ws.ref.name == "rendered":
                ws.files = {"output/stale.yaml": "old", "output/.gitkeep": ""}

        _wrap_workspaces(orchestrator, seed_stale_output)
        orchestrator.process()

        out = fakes["workspaces"]["rendered"].root / "output"
        assert sorted(p.name for p in out.iterdir()) == [".gitkeep"]


class TestFailures:
    def test_provider_closed_when_merge_fails(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(enable_pull_request_merge=True))
        build = orchestrator.provider_factory

        def failing_provider(ref, secret):
            provider = build(ref, secret)

            def merge(number):
                raise ProviderError("merge conflict")

            provider.merge_pull_request = merge
            return provider

        orchestrator.provider_factory = failing_provider
        result = orchestrator.process()

        assert result.failure_message == "unable to handle destination branch: merge conflict"
        assert fakes["providers"][0].closed is True

    def test_no_diff_detected(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        _wrap_workspaces(orchestrator, lambda ws: setattr(ws, "dirty", False))

        result = orchestrator.process()

        assert result.result_status == ResultStatus.FAILED
        assert result.failure_message == (
            "no diff detected between the rendered manifest and the manifest "
            f"on branch {ROLLOUT}__1/4"
        )
        assert fakes["store"].results == [result]
        assert fakes["workspaces"]["fleet"].pushed == []
        assert orchestrator.state_machine.state == DeployState.FAILED
        assert orchestrator.outcomes[0].status == BatchStatus.FAILED

    def test_no_diff_raised_from_deploy(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()
        _wrap_workspaces(orchestrator, lambda ws: setattr(ws, "dirty", False))
        with pytest.raises(NoDiffDetectedError) as exc_info:
            orchestrator.deploy()
        assert exc_info.value.branch == f"{ROLLOUT}__1/4"

    def test_failure_after_first_batch_lists_published_branch(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        _wrap_workspaces(orchestrator, lambda ws: setattr(ws, "diffs", [" M a\n", ""]))

        result = orchestrator.process()

        assert result.result_status == ResultStatus.FAILED
        assert result.metadata[PUBLISHED_BRANCHES_METADATA_KEY] == f"github.com/acme/fleet:{ROLLOUT}__1/4"
        assert [o.status for o in orchestrator.outcomes] == [BatchStatus.PUBLISHED, BatchStatus.FAILED]
        assert orchestrator.published_branches() == [f"github.com/acme/fleet:{ROLLOUT}__1/4"]

    def test_secret_failure(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(git_secret="other"))
        fakes["secrets"].secrets.clear()

        with pytest.raises(DeployStepError) as exc_info:
            orchestrator.deploy()

        assert exc_info.value.operation == "unable to access git secret"
        assert isinstance(exc_info.value.__cause__, SecretAccessError)
        assert fakes["workspaces"] == {}

    def test_invalid_repository_reference_aborts_first(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(git_source_repo="github.com/acme"))
        result = orchestrator.process()

        assert result.result_status == ResultStatus.FAILED
        assert "invalid git repository reference" in result.failure_message
        assert fakes["secrets"].fetched == []

    def test_invalid_output_reference(self, make_orchestrator, make_params):
        orchestrator, fakes = make_orchestrator(make_params(git_output_repo="not-a-ref"))
        with pytest.raises(InvalidRepositoryReferenceError):
            orchestrator.deploy()
        assert fakes["secrets"].fetched == []

    def test_git_failure_is_wrapped(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        _wrap_workspaces(
            orchestrator,
            lambda ws: ws.fail_on.update(push=GitCommandError("push rejected")),
        )

        result = orchestrator.process()

        assert result.failure_message == "unable to commit and push changes: push rejected"
        assert orchestrator.outcomes[0].published_repositories == []

    def test_missing_inventory_columns(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()
        _wrap_workspaces(
            orchestrator,
            lambda ws: setattr(ws, "files", {"source_of_truth.csv": "cluster_name\nc1\n"}),
        )

        with pytest.raises(DeployStepError) as exc_info:
            orchestrator.deploy()

        assert str(exc_info.value) == (
            "unable to determine clusters to be updated: "
            "fields ['cluster_group', 'cluster_tags'] not found in header"
        )
        assert isinstance(exc_info.value.__cause__, FieldsNotFoundError)

    def test_artifact_upload_failure(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        fakes["store"].fail_artifacts = True
        result = orchestrator.process()
        assert result.failure_message.startswith("error uploading deploy artifact:")

    def test_result_upload_failure_after_success(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        fakes["store"].fail_results = True
        with pytest.raises(ResultUploadError) as exc_info:
            orchestrator.process()
        assert exc_info.value.deploy_error is None
        assert orchestrator.state_machine.state == DeployState.SUCCEEDED

    def test_result_upload_failure_keeps_deploy_error(self, make_orchestrator):
        orchestrator, fakes = make_orchestrator()
        _wrap_workspaces(orchestrator, lambda ws: setattr(ws, "dirty", False))
        fakes["store"].fail_results = True

        with pytest.raises(ResultUploadError) as exc_info:
            orchestrator.process()
        assert isinstance(exc_info.value.deploy_error, NoDiffDetectedError)


class TestCancellation:
    def test_cancelled_before_start(self, make_orchestrator):
        token = CancellationToken()
        token.cancel("received SIGTERM")
        orchestrator, fakes = make_orchestrator(cancel=token)

        result = orchestrator.process()

        assert result.result_status == ResultStatus.FAILED
        assert "deploy cancelled" in result.failure_message
        assert fakes["secrets"].fetched == []

    def test_cancelled_mid_batch(self, make_orchestrator):
        token = CancellationToken()
        orchestrator, fakes = make_orchestrator(cancel=token)
        fakes["renderer"].on_render = lambda n: token.cancel("received SIGINT") if n == 2 else None

        with pytest.raises(DeployCancelledError):
            orchestrator.deploy()

        assert fakes["workspaces"]["fleet"].pushed == [f"{ROLLOUT}__1/4"]
        assert [o.status for o in orchestrator.outcomes] == [BatchStatus.PUBLISHED, BatchStatus.FAILED]
        assert orchestrator.state_machine.state == DeployState.FAILED

    def test_cancelled_during_wait(self, make_orchestrator, make_params):
        token = CancellationToken()
        orchestrator, fakes = make_orchestrator(make_params(wait_between_batches=30), cancel=token)
        build = orchestrator.provider_factory

        # Cancel once the first pull request is open; the 30s wait must not run out.
        def provider_factory(ref, secret):
            provider = build(ref, secret)
            open_pull_request = provider.open_pull_request

            def open_then_cancel(*args):
                pr = open_pull_request(*args)
                token.cancel("received SIGTERM")
                return pr

            provider.open_pull_request = open_then_cancel
            return provider

        orchestrator.provider_factory = provider_factory
        started = time.monotonic()

        result = orchestrator.process()

        assert time.monotonic() - started < 5
        assert "waiting between batches" in result.failure_message
        assert len(orchestrator.outcomes) == 1
        assert orchestrator.outcomes[0].status == BatchStatus.PUBLISHED


class TestFromSettings:
    def test_wires_production_collaborators(self, tmp_dir, make_params, deploy_request):
        settings = RuntimeSettings(
            workspace_dir=tmp_dir / "ws",
            storage_dir=tmp_dir / "results",
            secrets_dir=tmp_dir / "secrets",
        )
        orchestrator = BatchOrchestrator.from_settings(make_params(), deploy_request, settings)

        assert isinstance(orchestrator.secrets, FileSecretSource)
        assert isinstance(orchestrator.store, LocalResultStore)
        assert orchestrator.store.root == tmp_dir / "results" / ROLLOUT

        ws = orchestrator.workspace_factory(GitRepositoryRef.parse("github.com/acme/fleet"))
        assert isinstance(ws, GitCliWorkspace)
        assert ws.root == tmp_dir / "ws" / "fleet"
