"""Unit tests for the lenient GitHub REST client."""

from __future__ import annotations

import httpx
import pytest

from ghmirror.github.client import (
    PER_PAGE,
    GitHubRestClient,
    GitHubRestConfig,
    decode_lenient_array,
)
from ghmirror.github.errors import GitHubAPIError, GitHubConfigError
from ghmirror.github.models import Issue, PullRequestSimple
from tests.helpers.github_fake import (
    FakeGitHub,
    make_issue,
    make_pr,
    make_workflow_run,
)


class TestDecodeLenientArray:
    """Tests for per-element validation of page bodies."""

    def test_valid_elements_are_all_accepted(self) -> None:
        """Every well-formed element decodes into the page items."""
        page = decode_lenient_array([make_pr(1), make_pr(2)], PullRequestSimple)

        assert [pr.number for pr in page.items] == [1, 2]
        assert page.skipped == []
        assert page.raw_count == 2

    def test_malformed_element_is_skipped_with_index(self) -> None:
        """A malformed element is reported without discarding its neighbours."""
        broken = make_issue(2)
        broken["number"] = "two"

        page = decode_lenient_array([make_issue(1), broken, make_issue(3)], Issue)

        assert [issue.number for issue in page.items] == [1, 3]
        assert len(page.skipped) == 1
        skipped = page.skipped[0]
        assert skipped.index == 1
        assert skipped.error.startswith("Schema parse error at index 1:")
        assert '"number":"two"' in skipped.raw
        assert page.raw_count == 3

    def test_oversized_raw_payload_is_truncated(self) -> None:
        """Raw payloads kept for dead letters are capped."""
        broken = make_issue(1, pull_request=False)
        broken["body"] = "x" * 5000
        broken["id"] = None

        page = decode_lenient_array([broken], Issue)

        assert page.skipped[0].raw.endswith("...(truncated)")
        assert len(page.skipped[0].raw) < 2100

    def test_non_object_element_is_skipped(self) -> None:
        """Scalars in the array fail validation like any malformed object."""
        page = decode_lenient_array([make_pr(1), 17], PullRequestSimple)

        assert len(page.items) == 1
        assert page.skipped[0].index == 1


class TestGitHubRestClient:
    """Tests for page fetching against a fake API."""

    @pytest.mark.asyncio
    async def test_list_pull_requests_requests_page_and_size(self) -> None:
        """Pull request pages ask for every state at the fixed page size."""
        github = FakeGitHub(pulls=[make_pr(n) for n in range(1, 151)])
        client = github.rest_client()

        page = await client.list_pull_requests("octo", "reef", page=2)

        assert [pr.number for pr in page.items] == list(range(101, 151))
        request = github.requests[0]
        assert request.url.path == "/repos/octo/reef/pulls"
        assert request.url.params["state"] == "all"
        assert request.url.params["per_page"] == str(PER_PAGE)
        assert request.url.params["page"] == "2"
        assert request.headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_empty_repository_commits_is_empty_page(self) -> None:
        """The 409 GitHub returns for an empty repository is zero commits."""
        github = FakeGitHub(commits=None)

        page = await github.rest_client().list_commits("octo", "reef")

        assert page.items == []
        assert page.skipped == []
        assert page.raw_count == 0

    @pytest.mark.asyncio
    async def test_enveloped_listing_is_unwrapped(self) -> None:
        """Workflow runs are read from their ``workflow_runs`` field."""
        github = FakeGitHub(workflow_runs=[make_workflow_run(5), make_workflow_run(6)])

        page = await github.rest_client().list_workflow_runs("octo", "reef")

        assert [run.id for run in page.items] == [5, 6]

    @pytest.mark.asyncio
    async def test_server_error_raises_api_error(self) -> None:
        """Non-2xx responses outside the allow-list propagate."""
        github = FakeGitHub(failures={"/repos/octo/reef/issues": 502})

        with pytest.raises(GitHubAPIError) as excinfo:
            await github.rest_client().list_issues("octo", "reef", page=1)

        assert excinfo.value.status_code == 502
        assert excinfo.value.rate_limited is False

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_is_flagged(self) -> None:
        """A 403 with no remaining quota is reported as rate limited."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, headers={"x-ratelimit-remaining": "0"})

        http_client = httpx.AsyncClient(
            base_url="https://api.github.test",
            transport=httpx.MockTransport(handler),
        )
        client = GitHubRestClient(
            GitHubRestConfig(token="t", base_url="https://api.github.test"),
            http_client=http_client,
        )

        with pytest.raises(GitHubAPIError) as excinfo:
            await client.list_branches("octo", "reef")

        assert excinfo.value.rate_limited is True

    def test_blank_token_is_rejected(self) -> None:
        """A client cannot be built without a token."""
        with pytest.raises(GitHubConfigError):
            GitHubRestClient(GitHubRestConfig(token="  "))


class TestGitHubRestConfig:
    """Tests for environment overrides of the REST configuration."""

    def test_defaults_without_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unset variables keep the public API defaults."""
        monkeypatch.delenv("GHMIRROR_GITHUB_API_URL", raising=False)
        monkeypatch.delenv("GHMIRROR_GITHUB_TIMEOUT_S", raising=False)

        config = GitHubRestConfig.from_env("token")

        assert config.base_url == "https://api.github.com"
        assert config.timeout_s == 20.0

    def test_overrides_are_applied(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Base URL and timeout come from the environment when set."""
        monkeypatch.setenv("GHMIRROR_GITHUB_API_URL", "https://ghe.example.test/api/v3")
        monkeypatch.setenv("GHMIRROR_GITHUB_TIMEOUT_S", "5.5")

        config = GitHubRestConfig.from_env("token")

        assert config.base_url == "https://ghe.example.test/api/v3"
        assert config.timeout_s == 5.5

    def test_invalid_timeout_names_variable(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A non-numeric timeout is rejected with the variable name."""
        monkeypatch.setenv("GHMIRROR_GITHUB_TIMEOUT_S", "soon")

        with pytest.raises(ValueError, match="GHMIRROR_GITHUB_TIMEOUT_S"):
            GitHubRestConfig.from_env("token")
