"""Unit tests for the chunked bootstrap fetch steps."""

from __future__ import annotations

import typing as typ

import pytest

from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.steps import (
    ChunkResult,
    InvalidCursorError,
    PullRequestFileSyncRequest,
    WorkflowRunsResult,
    parse_cursor,
)
from ghmirror.projection.storage import (
    CheckRun,
    Commit,
    DeadLetter,
    Issue,
    PullRequest,
    User,
    WorkflowJob,
    WorkflowRun,
)
from tests.helpers.github_fake import (
    make_check_run,
    make_commit,
    make_issue,
    make_job,
    make_pr,
    make_user,
    make_workflow_run,
)
from tests.unit.bootstrap_test_helpers import (
    INSTALLATION_ID,
    REPOSITORY_ID,
    count_rows,
    fetch_all,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from ghmirror.projection.queries import RepositoryRef
    from tests.helpers.github_fake import FakeGitHub
    from tests.unit.conftest import RecordingScheduler, StepsFactory


def _requested_pages(github: FakeGitHub, suffix: str) -> list[int]:
    return [int(r.url.params["page"]) for r in github.requests_for(suffix)]


@pytest.mark.parametrize(
    ("cursor", "expected"), [(None, 1), ("1", 1), ("4", 4), ("12", 12)]
)
def test_parse_cursor(cursor: str | None, expected: int) -> None:
    """Cursors name the next page; ``None`` starts from the first."""
    assert parse_cursor(cursor) == expected


@pytest.mark.parametrize("cursor", ["0", "-2", "next", ""])
def test_parse_cursor_rejects_non_pages(cursor: str) -> None:
    """Anything but a positive page number is rejected."""
    with pytest.raises(InvalidCursorError, match="positive page number"):
        parse_cursor(cursor)


class TestPaginatedChunks:
    """Tests for the shared page loop behind pull requests and issues."""

    @pytest.mark.asyncio
    async def test_short_page_ends_the_listing(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """350 pull requests are fetched in four pages with no cursor left."""
        github.pulls = [make_pr(n) for n in range(1, 351)]

        result = await make_steps().fetch_pull_requests_chunk(repository)

        assert result == ChunkResult(count=350, next_cursor=None)
        assert _requested_pages(github, "/pulls") == [1, 2, 3, 4]
        assert await count_rows(session_factory, PullRequest) == 350

    @pytest.mark.asyncio
    async def test_page_budget_hands_back_a_cursor(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """A chunk stops at its page budget and the cursor resumes after it."""
        github.pulls = [make_pr(n) for n in range(1, 351)]
        steps = make_steps(BootstrapConfig(pages_per_chunk=3))

        first = await steps.fetch_pull_requests_chunk(repository)
        second = await steps.fetch_pull_requests_chunk(repository, first.next_cursor)

        assert first == ChunkResult(count=300, next_cursor="4")
        assert second == ChunkResult(count=50, next_cursor=None)
        assert _requested_pages(github, "/pulls") == [1, 2, 3, 4]
        assert await count_rows(session_factory, PullRequest) == 350

    @pytest.mark.asyncio
    async def test_exact_multiple_ends_on_empty_page(
        self,
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """When the total is a multiple of the page size an empty page ends it."""
        github.pulls = [make_pr(n) for n in range(1, 201)]

        result = await make_steps().fetch_pull_requests_chunk(repository)

        assert result == ChunkResult(count=200, next_cursor=None)
        assert _requested_pages(github, "/pulls") == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_malformed_element_is_dead_lettered(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """One bad issue is set aside and the rest of the listing continues."""
        github.issues = [make_issue(n) for n in range(1, 251)]
        github.issues[150]["number"] = "one hundred fifty-one"

        result = await make_steps().fetch_issues_chunk(repository)

        assert result == ChunkResult(count=249, next_cursor=None)
        assert _requested_pages(github, "/issues") == [1, 2, 3]
        assert await count_rows(session_factory, Issue) == 249
        (letter,) = await fetch_all(session_factory, DeadLetter)
        assert letter.delivery_id == f"bootstrap-issue:{REPOSITORY_ID}:page2:idx50"
        assert "one hundred fifty-one" in letter.payload_json

    @pytest.mark.asyncio
    async def test_replaying_a_dead_lettered_page_is_idempotent(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Refetching the same page keeps one dead letter and one row per issue."""
        github.issues = [make_issue(n) for n in range(1, 4)]
        github.issues[1]["title"] = 42
        steps = make_steps()

        await steps.fetch_issues_chunk(repository)
        await steps.fetch_issues_chunk(repository)

        assert await count_rows(session_factory, DeadLetter) == 1
        assert await count_rows(session_factory, Issue) == 2

    @pytest.mark.asyncio
    async def test_issue_listing_skips_pull_requests(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Pull requests in the issues listing are not stored as issues."""
        github.issues = [
            make_issue(1),
            make_issue(2, pull_request=True),
            make_issue(3),
            make_issue(4, pull_request=True),
        ]

        result = await make_steps().fetch_issues_chunk(repository)

        assert result.count == 2
        rows = await fetch_all(session_factory, Issue)
        assert sorted(row.number for row in rows) == [1, 3]

    @pytest.mark.asyncio
    async def test_users_are_written_once_per_chunk(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Many pull requests by one author produce a single user row."""
        author = make_user(77, "mona")
        github.pulls = [make_pr(n, author=author) for n in range(1, 6)]

        await make_steps().fetch_pull_requests_chunk(repository)

        (user,) = await fetch_all(session_factory, User)
        assert user.github_user_id == 77
        assert user.login == "mona"


class TestSinglePageSteps:
    """Tests for branches, commits, check runs and workflow runs."""

    @pytest.mark.asyncio
    async def test_empty_repository_has_no_commits(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """A 409 from the commits listing means zero commits, not a failure."""
        github.commits = None

        assert await make_steps().fetch_commits(repository) == 0
        assert await count_rows(session_factory, Commit) == 0
        assert await count_rows(session_factory, DeadLetter) == 0

    @pytest.mark.asyncio
    async def test_commits_collect_linked_authors(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Commit authors with GitHub accounts are written as users."""
        github.commits = [
            make_commit("a" * 40, author=make_user(5, "dev")),
            make_commit("b" * 40),
        ]

        assert await make_steps().fetch_commits(repository) == 2
        (user,) = await fetch_all(session_factory, User)
        assert user.login == "dev"

    @pytest.mark.asyncio
    async def test_check_runs_are_fetched_per_sha(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Each head SHA is queried separately and all runs are stored."""
        first, second = "1" * 40, "2" * 40
        github.check_runs = {
            first: [make_check_run(1, first), make_check_run(2, first)],
            second: [make_check_run(3, second, conclusion="failure")],
        }

        count = await make_steps().fetch_check_runs_chunk(repository, [first, second])

        assert count == 3
        assert len(github.requests_for("/check-runs")) == 2
        rows = await fetch_all(session_factory, CheckRun)
        assert {row.head_sha for row in rows} == {first, second}

    @pytest.mark.asyncio
    async def test_workflow_jobs_only_for_active_or_finished_runs(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Jobs are fetched for running and concluded runs only."""
        github.workflow_runs = [
            make_workflow_run(30),
            make_workflow_run(31, status="in_progress", conclusion=None),
            make_workflow_run(32, status="waiting", conclusion=None),
        ]
        github.jobs = {30: [make_job(100, 30)], 31: [make_job(101, 31)]}

        result = await make_steps().fetch_workflow_runs(repository)

        assert result == WorkflowRunsResult(run_count=3, job_count=2)
        assert {r.url.path for r in github.requests_for("/jobs")} == {
            "/repos/octo/reef/actions/runs/30/jobs",
            "/repos/octo/reef/actions/runs/31/jobs",
        }
        assert await count_rows(session_factory, WorkflowRun) == 3
        assert await count_rows(session_factory, WorkflowJob) == 2
        (actor,) = await fetch_all(session_factory, User)
        assert actor.login == "ci-bot"

    @pytest.mark.asyncio
    async def test_workflow_job_fetches_are_capped(
        self,
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
    ) -> None:
        """Only the configured number of runs have their jobs fetched."""
        github.workflow_runs = [make_workflow_run(run_id) for run_id in range(1, 6)]

        await make_steps(BootstrapConfig(workflow_run_job_limit=2)).fetch_workflow_runs(
            repository
        )

        assert len(github.requests_for("/jobs")) == 2


class TestFileSyncScheduling:
    """Tests for reading open pull requests and scheduling file syncs."""

    @pytest.mark.asyncio
    async def test_open_pull_requests_are_scheduled(
        self,
        repository: RepositoryRef,
        github: FakeGitHub,
        make_steps: StepsFactory,
        file_syncs: RecordingScheduler,
    ) -> None:
        """One file sync is scheduled per open pull request head."""
        github.pulls = [
            make_pr(1, head_sha="a" * 40),
            make_pr(2, state="closed"),
            make_pr(3, head_sha="c" * 40),
        ]
        steps = make_steps()
        await steps.fetch_pull_requests_chunk(repository)

        targets = await steps.get_open_pr_sync_targets(repository)
        scheduled = await steps.schedule_pr_file_syncs(repository, targets)

        assert scheduled == 2
        assert file_syncs.requests == [
            PullRequestFileSyncRequest(
                owner_login="octo",
                name="reef",
                repository_id=REPOSITORY_ID,
                pull_request_number=1,
                head_sha="a" * 40,
                installation_id=INSTALLATION_ID,
            ),
            PullRequestFileSyncRequest(
                owner_login="octo",
                name="reef",
                repository_id=REPOSITORY_ID,
                pull_request_number=3,
                head_sha="c" * 40,
                installation_id=INSTALLATION_ID,
            ),
        ]
