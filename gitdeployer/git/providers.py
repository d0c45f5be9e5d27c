"""Pull-request providers keyed by repository hostname.

``GitProvider`` is the protocol the orchestrator depends on.  Two HTTP
implementations are provided:

- ``GitHubProvider`` — GitHub REST v3 pull requests (``github.com``);
- ``GitLabProvider`` — GitLab REST v4 merge requests (``gitlab.com``).

``create_provider`` picks one by hostname.  Each provider owns an
``httpx.Client`` with a request timeout, released by ``close()`` or by using
the provider as a context manager; every transport or status error is
raised as ``ProviderError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from gitdeployer.config import RuntimeSettings
from gitdeployer.errors import ProviderError, UnsupportedProviderError
from gitdeployer.models.git import GitRepositoryRef, PullRequest

logger = logging.getLogger(__name__)


@runtime_checkable
class GitProvider(Protocol):
    """Protocol for pull-request hosting backends."""

    def open_pull_request(self, source_branch: str, target_branch: str, title: str, body: str) -> PullRequest:
        ...

    def merge_pull_request(self, number: int) -> None:
        ...

    def close(self) -> None:
        ...


class _HttpProvider:
    """Shared request/response handling for the HTTP providers."""

    def __init__(self, ref: GitRepositoryRef, client: httpx.Client, *, owns_client: bool) -> None:
        self.ref = ref
        self._client = client
        self._owns_client = owns_client

    def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> _HttpProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{method} {url} failed with status {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{method} {url} failed: {exc}") from exc
        if not response.content:
            return {}
        return response.json()


class GitHubProvider(_HttpProvider):
    """Pull requests on GitHub."""

    def __init__(
        self,
        ref: GitRepositoryRef,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(
            ref,
            client
            or httpx.Client(
                base_url=api_url,
                timeout=timeout,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
            ),
            owns_client=client is None,
        )

    def open_pull_request(self, source_branch: str, target_branch: str, title: str, body: str) -> PullRequest:
        data = self._request(
            "POST",
            f"/repos/{self.ref.slug}/pulls",
            json={"title": title, "body": body, "head": source_branch, "base": target_branch},
        )
        pr = PullRequest(
            number=int(data["number"]),
            url=data.get("html_url", ""),
            source_branch=source_branch,
            target_branch=target_branch,
        )
        logger.info("Opened pull request #%d on %s", pr.number, self.ref.reference)
        return pr

    def merge_pull_request(self, number: int) -> None:
        self._request("PUT", f"/repos/{self.ref.slug}/pulls/{number}/merge", json={})
        logger.info("Merged pull request #%d on %s", number, self.ref.reference)


class GitLabProvider(_HttpProvider):
    """Merge requests on GitLab."""

    def __init__(
        self,
        ref: GitRepositoryRef,
        token: str,
        *,
        api_url: str = "https://gitlab.com/api/v4",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(
            ref,
            client
            or httpx.Client(
                base_url=api_url,
                timeout=timeout,
                headers={"PRIVATE-TOKEN": token},
            ),
            owns_client=client is None,
        )

    @property
    def _project(self) -> str:
        return quote(self.ref.slug, safe="")

    def open_pull_request(self, source_branch: str, target_branch: str, title: str, body: str) -> PullRequest:
        data = self._request(
            "POST",
            f"/projects/{self._project}/merge_requests",
            json={
                "source_branch": source_branch,
                "target_branch": target_branch,
                "title": title,
                "description": body,
            },
        )
        pr = PullRequest(
            number=int(data["iid"]),
            url=data.get("web_url", ""),
            source_branch=source_branch,
            target_branch=target_branch,
        )
        logger.info("Opened merge request !%d on %s", pr.number, self.ref.reference)
        return pr

    def merge_pull_request(self, number: int) -> None:
        self._request("PUT", f"/projects/{self._project}/merge_requests/{number}/merge")
        logger.info("Merged merge request !%d on %s", number, self.ref.reference)


# Hostname -> provider factory(ref, token, settings)
_PROVIDERS: dict[str, Callable[[GitRepositoryRef, str, RuntimeSettings], GitProvider]] = {
    "github.com": lambda ref, token, s: GitHubProvider(
        ref, token, api_url=s.github_api_url, timeout=s.provider_timeout_seconds
    ),
    "gitlab.com": lambda ref, token, s: GitLabProvider(
        ref, token, api_url=s.gitlab_api_url, timeout=s.provider_timeout_seconds
    ),
}


def supported_hosts() -> list[str]:
    return sorted(_PROVIDERS)


def create_provider(
    ref: GitRepositoryRef,
    token: str,
    settings: RuntimeSettings | None = None,
) -> GitProvider:
    """Return the provider for ``ref.hostname``.

    Raises ``UnsupportedProviderError`` for unknown hosts.
    """
    factory = _PROVIDERS.get(ref.hostname.lower())
    if factory is None:
        raise UnsupportedProviderError(
            f"unsupported git provider {ref.hostname!r}; supported: {', '.join(supported_hosts())}"
        )
    return factory(ref, token, settings or RuntimeSettings())
