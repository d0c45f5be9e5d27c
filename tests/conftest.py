"""Shared test fixtures for gitdeployer."""

from __future__ import annotations

import csv
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from gitdeployer.config import DeployParams, DeployRequest
from gitdeployer.core.cancellation import CancellationToken
from gitdeployer.core.orchestrator import BatchOrchestrator
from gitdeployer.errors import ArtifactUploadError, ResultUploadError, SecretAccessError
from gitdeployer.models.git import GitRepositoryRef, PullRequest
from gitdeployer.models.results import DeployResult

INVENTORY_HEADER = (
    "cluster_name,cluster_group,cluster_tags,"
    "platform_repository_revision,workload_repository_revision\n"
)

INVENTORY_TEXT = INVENTORY_HEADER + (
    'prod-1,prod,"canary,us",p1,w1\n'
    'prod-2,prod,"us",p1,w1\n'
    'prod-3,prod,"eu",p1,w1\n'
    'prod-4,prod,"canary,eu",p1,w1\n'
    'prod-5,prod,"us,eu",p1,w1\n'
    'prod-6,prod,"us",p1,w1\n'
    'prod-7,prod,"eu",p1,w1\n'
    'prod-8,prod,"us",p1,w1\n'
    'prod-9,prod,"eu",p1,w1\n'
    'prod-10,prod,"us",p1,w1\n'
    'stage-1,staging,"canary",p0,w0\n'
)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeWorkspace:
    """In-memory ``GitWorkspace``; records every call in ``calls``.

    ``files`` are written under ``root`` on clone.  ``diffs`` (if given) is
    consumed one entry per ``diff()`` call; otherwise ``dirty`` decides.
    """

    def __init__(
        self,
        ref: GitRepositoryRef,
        root: Path,
        *,
        files: dict[str, str] | None = None,
        remote_branches: set[str] | None = None,
    ) -> None:
        self.ref = ref
        self._root = root
        self.files = files or {}
        self.remote_branches = set(remote_branches or ())
        self.calls: list[tuple[Any, ...]] = []
        self.branch = ""
        self.dirty = True
        self.diffs: list[str] | None = None
        self.fail_on: dict[str, Exception] = {}
        self.secret = ""
        self.commits: list[str] = []
        self.pushed: list[str] = []

    @property
    def root(self) -> Path:
        return self._root

    def _record(self, name: str, *args: Any) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]
        self.calls.append((name, *args))

    def clone(self, secret: str) -> None:
        self._record("clone")
        self.secret = secret
        self._root.mkdir(parents=True, exist_ok=True)
        for rel, text in self.files.items():
            path = self._root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")

    def configure(self) -> None:
        self._record("configure")

    def checkout_branch(self, name: str) -> None:
        self._record("checkout_branch", name)
        self.branch = name

    def branch_exists(self, name: str) -> bool:
        self._record("branch_exists", name)
        return name in self.remote_branches

    def pull(self, branch: str) -> None:
        self._record("pull", branch)

    def diff(self) -> str:
        self._record("diff")
        if self.diffs is not None:
            return self.diffs.pop(0)
        return " M output/rendered.yaml\n" if self.dirty else ""

    def stage_all(self) -> None:
        self._record("stage_all")

    def commit(self, message: str) -> None:
        self._record("commit", message)
        self.commits.append(message)

    def push(self, branch: str) -> None:
        self._record("push", branch)
        self.pushed.append(branch)
        self.remote_branches.add(branch)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeProvider:
    """Pull-request provider that numbers requests sequentially."""

    def __init__(self, ref: GitRepositoryRef, token: str) -> None:
        self.ref = ref
        self.token = token
        self.opened: list[PullRequest] = []
        self.titles: list[str] = []
        self.bodies: list[str] = []
        self.merged: list[int] = []
        self.closed = False

    def open_pull_request(self, source_branch: str, target_branch: str, title: str, body: str) -> PullRequest:
        pr = PullRequest(
            number=len(self.opened) + 1,
            source_branch=source_branch,
            target_branch=target_branch,
        )
        self.opened.append(pr)
        self.titles.append(title)
        self.bodies.append(body)
        return pr

    def merge_pull_request(self, number: int) -> None:
        self.merged.append(number)

    def close(self) -> None:
        self.closed = True


class FakeRenderer:
    """Renderer that writes one manifest into the output directory."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Path]] = []
        self.on_render: Callable[[int], None] | None = None

    def render(self, *, base_dir: Path, overlay_dir: Path, output_dir: Path, inventory: Path) -> None:
        self.calls.append(
            {"base_dir": base_dir, "overlay_dir": overlay_dir, "output_dir": output_dir, "inventory": inventory}
        )
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "rendered.yaml").write_text(inventory.read_text(encoding="utf-8"), encoding="utf-8")
        if self.on_render is not None:
            self.on_render(len(self.calls))


class FakeSecretSource:
    def __init__(self, secrets: dict[str, bytes]) -> None:
        self.secrets = secrets
        self.fetched: list[str] = []

    def fetch(self, secret_id: str) -> bytes:
        self.fetched.append(secret_id)
        try:
            return self.secrets[secret_id]
        except KeyError:
            raise SecretAccessError(f"failed to access secret {secret_id}") from None


class FakeResultStore:
    def __init__(self) -> None:
        self.results: list[DeployResult] = []
        self.artifacts: list[tuple[str, str]] = []
        self.fail_results = False
        self.fail_artifacts = False

    def upload_result(self, result: DeployResult) -> str:
        if self.fail_results:
            raise ResultUploadError("bucket unavailable")
        self.results.append(result)
        return "mem://results.json"

    def upload_artifact(self, name: str, local_path: Path) -> str:
        if self.fail_artifacts:
            raise ArtifactUploadError("bucket unavailable")
        self.artifacts.append((name, Path(local_path).read_text(encoding="utf-8")))
        return f"mem://artifacts/{name}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def inventory_file(tmp_dir: Path) -> Path:
    """Provide an inventory CSV with ten prod clusters and one staging cluster."""
    path = tmp_dir / "source_of_truth.csv"
    path.write_text(INVENTORY_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def make_inventory(tmp_dir: Path) -> Callable[[str], Path]:
    """Factory fixture: write arbitrary CSV text to a temp inventory file."""

    def _factory(text: str, name: str = "inventory.csv") -> Path:
        path = tmp_dir / name
        path.write_bytes(text.encode("utf-8"))
        return path

    return _factory


@pytest.fixture
def read_revisions() -> Callable[[Path], dict[str, tuple[str, str]]]:
    """Read an inventory as ``{cluster_name: (platform_rev, workload_rev)}``."""

    def _read(path: Path) -> dict[str, tuple[str, str]]:
        with open(path, encoding="utf-8", newline="") as fh:
            return {
                row["cluster_name"]: (
                    row["platform_repository_revision"],
                    row["workload_repository_revision"],
                )
                for row in csv.DictReader(fh)
                if row.get("cluster_name")
            }

    return _read


@pytest.fixture
def make_params() -> Callable[..., DeployParams]:
    """Factory fixture: build DeployParams with sensible defaults."""

    def _factory(**overrides: Any) -> DeployParams:
        defaults: dict[str, Any] = {
            "git_source_repo": "github.com/acme/fleet",
            "git_source_branch": "main",
            "git_output_repo": "github.com/acme/fleet",
            "git_output_branch": "main",
            "git_secret": "git-token",
            "cluster_group": "prod",
            "batch_size": 3,
            "platform_revision": "p2",
            "wait_between_batches": 0,
        }
        defaults.update(overrides)
        return DeployParams(**defaults)

    return _factory


@pytest.fixture
def deploy_request() -> DeployRequest:
    return DeployRequest(
        project="acme-prod",
        location="us-central1",
        pipeline="fleet",
        target="prod",
        release="rel-7",
        rollout="rel-7-to-prod-0001",
    )


@pytest.fixture
def make_orchestrator(tmp_dir: Path, deploy_request: DeployRequest, make_params):
    """Factory fixture: a BatchOrchestrator wired to fakes.

    Returns ``(orchestrator, fakes)`` where ``fakes`` exposes the
    workspaces (by repo name), providers, renderer, secrets and store.
    """

    def _factory(params: DeployParams | None = None, **kwargs: Any):
        params = params or make_params()
        fakes: dict[str, Any] = {
            "workspaces": {},
            "providers": [],
            "renderer": kwargs.pop("renderer", None) or FakeRenderer(),
            "secrets": kwargs.pop("secrets", None) or FakeSecretSource({params.git_secret: b"s3cr3t\n"}),
            "store": kwargs.pop("store", None) or FakeResultStore(),
            "remote_branches": {"main"},
        }

        def workspace_factory(ref: GitRepositoryRef) -> FakeWorkspace:
            files = {params.source_of_truth: INVENTORY_TEXT} if ref.reference == params.git_source_repo else {}
            ws = FakeWorkspace(
                ref,
                tmp_dir / "workspace" / ref.name,
                files=files,
                remote_branches=fakes["remote_branches"],
            )
            fakes["workspaces"][ref.name] = ws
            return ws

        def provider_factory(ref: GitRepositoryRef, token: str) -> FakeProvider:
            provider = FakeProvider(ref, token)
            fakes["providers"].append(provider)
            return provider

        orchestrator = BatchOrchestrator(
            params,
            deploy_request,
            secrets=fakes["secrets"],
            store=fakes["store"],
            workspace_factory=workspace_factory,
            provider_factory=provider_factory,
            renderer=fakes["renderer"],
            cancel=kwargs.pop("cancel", CancellationToken()),
            build_commit=kwargs.pop("build_commit", "abc123"),
        )
        return orchestrator, fakes

    return _factory
