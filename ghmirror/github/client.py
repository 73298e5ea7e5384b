"""GitHub REST client with lenient, per-element page decoding."""

from __future__ import annotations

import dataclasses
import os
import typing as typ

import httpx
import msgspec

from .errors import GitHubAPIError, GitHubConfigError
from .models import (
    Branch,
    CheckRun,
    Commit,
    Issue,
    LenientPage,
    PullRequestFile,
    PullRequestSimple,
    SkippedItem,
    WorkflowJob,
    WorkflowRun,
)

PER_PAGE = 100

_HTTP_OK_MIN = 200
_HTTP_OK_MAX = 300
_HTTP_FORBIDDEN = 403
_HTTP_CONFLICT = 409
_RAW_PAYLOAD_LIMIT = 2000
DEFAULT_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_S = 20.0


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubRestConfig:
    """Configuration for the GitHub REST API client."""

    token: str
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    user_agent: str = "ghmirror/0.1"
    api_version: str = "2022-11-28"

    @classmethod
    def from_env(cls, token: str) -> GitHubRestConfig:
        """Build configuration for ``token`` using ``GHMIRROR_GITHUB_*`` overrides."""
        base_url = os.environ.get("GHMIRROR_GITHUB_API_URL", "").strip()
        raw_timeout = os.environ.get("GHMIRROR_GITHUB_TIMEOUT_S", "").strip()
        timeout_s = DEFAULT_TIMEOUT_S
        if raw_timeout:
            try:
                timeout_s = float(raw_timeout)
            except ValueError as exc:
                msg = (
                    "GHMIRROR_GITHUB_TIMEOUT_S must be a number, "
                    f"got: {raw_timeout!r}"
                )
                raise ValueError(msg) from exc
        return cls(
            token=token,
            base_url=base_url or DEFAULT_BASE_URL,
            timeout_s=timeout_s,
        )


def _encode_raw(item: object) -> str:
    """Re-encode a rejected element for the dead-letter payload."""
    try:
        raw = msgspec.json.encode(item).decode("utf-8")
    except (TypeError, msgspec.EncodeError):
        raw = repr(item)
    if len(raw) > _RAW_PAYLOAD_LIMIT:
        return raw[:_RAW_PAYLOAD_LIMIT] + "...(truncated)"
    return raw


def decode_lenient_array[T](raw_items: list[typ.Any], model: type[T]) -> LenientPage[T]:
    """Validate each element of ``raw_items`` against ``model`` independently.

    Elements that fail validation are collected as :class:`SkippedItem` with
    their original index instead of failing the whole page.
    """
    items: list[T] = []
    skipped: list[SkippedItem] = []
    for index, raw in enumerate(raw_items):
        try:
            items.append(msgspec.convert(raw, type=model))
        except msgspec.ValidationError as exc:
            skipped.append(
                SkippedItem(
                    index=index,
                    raw=_encode_raw(raw),
                    error=f"Schema parse error at index {index}: {exc}",
                )
            )
    return LenientPage(items=items, skipped=skipped)


def _is_rate_limited(response: httpx.Response) -> bool:
    return (
        response.status_code == _HTTP_FORBIDDEN
        and response.headers.get("x-ratelimit-remaining") == "0"
    )


class GitHubRestClient:
    """Stateless REST client bound to one resolved credential."""

    def __init__(
        self,
        config: GitHubRestConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._headers = {
            "Authorization": f"Bearer {config.token}",
            "User-Agent": config.user_agent,
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": config.api_version,
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_s
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitHubRestClient:
        """Return the client for use as an async context manager."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close owned HTTP resources on exit."""
        await self.aclose()

    async def _get_json(
        self,
        path: str,
        params: dict[str, typ.Any],
        *,
        allow_status: frozenset[int] = frozenset(),
    ) -> object | None:
        """GET ``path`` and return the decoded body.

        Returns ``None`` for statuses listed in ``allow_status``. Transport
        errors propagate untouched.
        """
        response = await self._client.get(
            path, params=params, headers=self._headers
        )
        if response.status_code in allow_status:
            return None
        if not _HTTP_OK_MIN <= response.status_code < _HTTP_OK_MAX:
            raise GitHubAPIError.http_error(
                response.status_code,
                path,
                rate_limited=_is_rate_limited(response),
            )
        return msgspec.json.decode(response.content)

    async def fetch_page[T](
        self,
        path: str,
        model: type[T],
        *,
        params: dict[str, typ.Any] | None = None,
        envelope: str | None = None,
        allow_status: frozenset[int] = frozenset(),
    ) -> LenientPage[T]:
        """Fetch one page and decode its elements leniently.

        ``envelope`` names the array field for endpoints that wrap their
        results in an object (check runs, workflow runs, jobs). A body without
        the expected array decodes to an empty page.
        """
        body = await self._get_json(path, params or {}, allow_status=allow_status)
        if envelope is not None and isinstance(body, dict):
            body = body.get(envelope)
        if not isinstance(body, list):
            return LenientPage.empty()
        return decode_lenient_array(body, model)

    async def list_branches(self, owner: str, repo: str) -> LenientPage[Branch]:
        """Return the first page of branches."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/branches",
            Branch,
            params={"per_page": PER_PAGE},
        )

    async def list_pull_requests(
        self, owner: str, repo: str, *, page: int
    ) -> LenientPage[PullRequestSimple]:
        """Return one page of pull requests in every state."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/pulls",
            PullRequestSimple,
            params={"state": "all", "per_page": PER_PAGE, "page": page},
        )

    async def list_issues(
        self, owner: str, repo: str, *, page: int
    ) -> LenientPage[Issue]:
        """Return one page of issues (pull requests included) in every state."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/issues",
            Issue,
            params={"state": "all", "per_page": PER_PAGE, "page": page},
        )

    async def list_commits(self, owner: str, repo: str) -> LenientPage[Commit]:
        """Return the most recent page of commits.

        GitHub answers 409 for a repository without any commits; that is an
        empty listing rather than an error.
        """
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/commits",
            Commit,
            params={"per_page": PER_PAGE},
            allow_status=frozenset({_HTTP_CONFLICT}),
        )

    async def list_check_runs_for_ref(
        self, owner: str, repo: str, ref: str
    ) -> LenientPage[CheckRun]:
        """Return the check runs reported against ``ref``."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/commits/{ref}/check-runs",
            CheckRun,
            params={"per_page": PER_PAGE},
            envelope="check_runs",
        )

    async def list_workflow_runs(
        self, owner: str, repo: str
    ) -> LenientPage[WorkflowRun]:
        """Return the most recent page of workflow runs."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/actions/runs",
            WorkflowRun,
            params={"per_page": PER_PAGE},
            envelope="workflow_runs",
        )

    async def list_jobs_for_run(
        self, owner: str, repo: str, run_id: int
    ) -> LenientPage[WorkflowJob]:
        """Return the jobs of one workflow run."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs",
            WorkflowJob,
            params={"per_page": PER_PAGE},
            envelope="jobs",
        )

    async def list_pull_request_files(
        self, owner: str, repo: str, number: int, *, page: int
    ) -> LenientPage[PullRequestFile]:
        """Return one page of files changed by a pull request."""
        return await self.fetch_page(
            f"/repos/{owner}/{repo}/pulls/{number}/files",
            PullRequestFile,
            params={"per_page": PER_PAGE, "page": page},
        )
