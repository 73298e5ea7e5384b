"""Chunked fetch steps that make up a repository bootstrap.

Each paginated step processes at most ``pages_per_chunk`` pages per call and
returns a cursor naming the next unfetched page, or ``None`` once GitHub
returned a short page. Pages are written as soon as they are transformed, so
a chunk that fails part way leaves every completed page in the store and a
retry of the same cursor rewrites them idempotently.
"""

from __future__ import annotations

import dataclasses
import typing as typ

from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.observability import BootstrapEventLogger
from ghmirror.github.client import PER_PAGE
from ghmirror.github.transformers import (
    UserCollector,
    branch_record,
    check_run_record,
    commit_record,
    is_pull_request_issue,
    issue_record,
    pull_request_record,
    workflow_job_record,
    workflow_run_record,
)
from ghmirror.logging import get_logger, log_debug
from ghmirror.projection.dead_letters import DeadLetterItem, make_delivery_id

if typ.TYPE_CHECKING:
    from ghmirror.github.client import GitHubRestClient
    from ghmirror.github.models import (
        Issue,
        LenientPage,
        PullRequestSimple,
        SkippedItem,
    )
    from ghmirror.github.transformers import CheckRunRecord, WorkflowJobRecord
    from ghmirror.projection.dead_letters import DeadLetterKind, DeadLetterSink
    from ghmirror.projection.queries import (
        OpenPullRequestTarget,
        ProjectionQueries,
        RepositoryRef,
    )
    from ghmirror.projection.writer import OverviewCounts, ProjectionWriter

logger = get_logger(__name__)

_ACTIVE_RUN_STATUSES = frozenset({"in_progress", "queued"})


class InvalidCursorError(ValueError):
    """Raised when a persisted cursor is not a positive page number."""

    def __init__(self, cursor: str) -> None:
        """Record the offending cursor."""
        super().__init__(f"cursor must be a positive page number, got: {cursor!r}")


def parse_cursor(cursor: str | None) -> int:
    """Return the page a chunk starts from; ``None`` starts at page 1."""
    if cursor is None:
        return 1
    try:
        page = int(cursor)
    except ValueError as exc:
        raise InvalidCursorError(cursor) from exc
    if page < 1:
        raise InvalidCursorError(cursor)
    return page


@dataclasses.dataclass(frozen=True, slots=True)
class ChunkResult:
    """Outcome of one chunk invocation."""

    count: int
    next_cursor: str | None


@dataclasses.dataclass(frozen=True, slots=True)
class WorkflowRunsResult:
    """Outcome of the workflow runs step."""

    run_count: int
    job_count: int


@dataclasses.dataclass(frozen=True, slots=True)
class PullRequestFileSyncRequest:
    """Payload of the follow-up job that mirrors one pull request's files."""

    owner_login: str
    name: str
    repository_id: int
    pull_request_number: int
    head_sha: str
    installation_id: int


class FileSyncScheduler(typ.Protocol):
    """Enqueue a pull request file sync."""

    def __call__(self, request: PullRequestFileSyncRequest) -> None:
        """Schedule ``request`` on the job queue."""
        ...


class BootstrapSteps:
    """Fetch, transform and persist one resource kind per step.

    One instance is bound to a single resolved credential via its client.
    """

    def __init__(  # noqa: PLR0913
        self,
        client: GitHubRestClient,
        writer: ProjectionWriter,
        dead_letters: DeadLetterSink,
        queries: ProjectionQueries,
        config: BootstrapConfig | None = None,
        *,
        schedule_file_sync: FileSyncScheduler | None = None,
        events: BootstrapEventLogger | None = None,
    ) -> None:
        """Wire the collaborators the steps drive."""
        self._client = client
        self._writer = writer
        self._dead_letters = dead_letters
        self._queries = queries
        self._config = config or BootstrapConfig()
        self._schedule_file_sync = schedule_file_sync
        self._events = events or BootstrapEventLogger()

    async def _dead_letter(
        self,
        repository: RepositoryRef,
        kind: DeadLetterKind,
        page: int | str,
        skipped: typ.Sequence[SkippedItem],
    ) -> None:
        if not skipped:
            return
        await self._dead_letters.write(
            [
                DeadLetterItem(
                    delivery_id=make_delivery_id(
                        kind, repository.repository_id, page, item.index
                    ),
                    reason=item.error,
                    payload_json=item.raw,
                )
                for item in skipped
            ]
        )
        self._events.log_page_dead_lettered(
            repo_slug=repository.full_name,
            kind=kind,
            page=page,
            skipped=len(skipped),
        )

    async def _run_chunk[T](
        self,
        repository: RepositoryRef,
        cursor: str | None,
        *,
        kind: DeadLetterKind,
        stage: str,
        fetch: typ.Callable[[int], typ.Awaitable[LenientPage[T]]],
        write: typ.Callable[[list[T], UserCollector], typ.Awaitable[int]],
    ) -> ChunkResult:
        """Run the shared pagination loop for one chunk."""
        start = parse_cursor(cursor)
        users = UserCollector()
        count = 0
        next_cursor: str | None = str(start + self._config.pages_per_chunk)

        for page_number in range(start, start + self._config.pages_per_chunk):
            page = await fetch(page_number)
            await self._dead_letter(repository, kind, page_number, page.skipped)
            count += await write(page.items, users)
            log_debug(
                logger,
                "Fetched %s page %d for %s: %d accepted, %d skipped",
                stage,
                page_number,
                repository.full_name,
                len(page.items),
                len(page.skipped),
            )
            if page.raw_count < PER_PAGE:
                next_cursor = None
                break

        await self._writer.upsert_users(users.flush())
        self._events.log_chunk_completed(
            repo_slug=repository.full_name,
            stage=stage,
            count=count,
            next_cursor=next_cursor,
        )
        return ChunkResult(count=count, next_cursor=next_cursor)

    async def fetch_branches(self, repository: RepositoryRef) -> int:
        """Mirror the first page of branches."""
        page = await self._client.list_branches(repository.owner_login, repository.name)
        await self._dead_letter(repository, "branch", 1, page.skipped)
        return await self._writer.upsert_branches(
            repository.repository_id, [branch_record(branch) for branch in page.items]
        )

    async def fetch_pull_requests_chunk(
        self, repository: RepositoryRef, cursor: str | None = None
    ) -> ChunkResult:
        """Mirror up to ``pages_per_chunk`` pages of pull requests."""

        async def fetch(page: int) -> LenientPage[PullRequestSimple]:
            return await self._client.list_pull_requests(
                repository.owner_login, repository.name, page=page
            )

        async def write(items: list[PullRequestSimple], users: UserCollector) -> int:
            return await self._writer.upsert_pull_requests(
                repository.repository_id,
                [pull_request_record(pr, users) for pr in items],
                skip_projections=True,
            )

        return await self._run_chunk(
            repository,
            cursor,
            kind="pr",
            stage="pull_requests",
            fetch=fetch,
            write=write,
        )

    async def fetch_issues_chunk(
        self, repository: RepositoryRef, cursor: str | None = None
    ) -> ChunkResult:
        """Mirror up to ``pages_per_chunk`` pages of issues.

        Pull requests returned by the issues listing still count towards the
        page size but are not written as issues.
        """

        async def fetch(page: int) -> LenientPage[Issue]:
            return await self._client.list_issues(
                repository.owner_login, repository.name, page=page
            )

        async def write(items: list[Issue], users: UserCollector) -> int:
            return await self._writer.upsert_issues(
                repository.repository_id,
                [
                    issue_record(issue, users)
                    for issue in items
                    if not is_pull_request_issue(issue)
                ],
                skip_projections=True,
            )

        return await self._run_chunk(
            repository,
            cursor,
            kind="issue",
            stage="issues",
            fetch=fetch,
            write=write,
        )

    async def fetch_commits(self, repository: RepositoryRef) -> int:
        """Mirror the most recent page of commits; an empty repository yields 0."""
        page = await self._client.list_commits(repository.owner_login, repository.name)
        await self._dead_letter(repository, "commit", 1, page.skipped)
        users = UserCollector()
        count = await self._writer.upsert_commits(
            repository.repository_id,
            [commit_record(commit, users) for commit in page.items],
        )
        await self._writer.upsert_users(users.flush())
        return count

    async def fetch_check_runs_chunk(
        self, repository: RepositoryRef, head_shas: typ.Sequence[str]
    ) -> int:
        """Mirror check runs for each SHA in ``head_shas``, one request at a time."""
        records: list[CheckRunRecord] = []
        for sha in head_shas:
            page = await self._client.list_check_runs_for_ref(
                repository.owner_login, repository.name, sha
            )
            await self._dead_letter(repository, "check-run", sha, page.skipped)
            records.extend(check_run_record(run) for run in page.items)
        return await self._writer.upsert_check_runs(repository.repository_id, records)

    async def fetch_workflow_runs(
        self, repository: RepositoryRef
    ) -> WorkflowRunsResult:
        """Mirror recent workflow runs and the jobs of active or finished runs."""
        users = UserCollector()
        page = await self._client.list_workflow_runs(
            repository.owner_login, repository.name
        )
        await self._dead_letter(repository, "workflow-run", 1, page.skipped)
        runs = [workflow_run_record(run, users) for run in page.items]

        job_run_ids = [
            run.github_run_id
            for run in runs
            if run.status in _ACTIVE_RUN_STATUSES or run.conclusion is not None
        ][: self._config.workflow_run_job_limit]

        jobs: list[WorkflowJobRecord] = []
        for run_id in job_run_ids:
            job_page = await self._client.list_jobs_for_run(
                repository.owner_login, repository.name, run_id
            )
            await self._dead_letter(
                repository, "workflow-job", f"run{run_id}", job_page.skipped
            )
            jobs.extend(workflow_job_record(job) for job in job_page.items)

        run_count = await self._writer.upsert_workflow_runs(
            repository.repository_id, runs
        )
        job_count = await self._writer.upsert_workflow_jobs(
            repository.repository_id, jobs
        )
        await self._writer.upsert_users(users.flush())
        return WorkflowRunsResult(run_count=run_count, job_count=job_count)

    async def get_open_pr_sync_targets(
        self, repository: RepositoryRef
    ) -> list[OpenPullRequestTarget]:
        """Read open pull requests with a head SHA from the store."""
        return await self._queries.open_pr_sync_targets(repository.repository_id)

    async def schedule_pr_file_syncs(
        self,
        repository: RepositoryRef,
        targets: typ.Sequence[OpenPullRequestTarget],
    ) -> int:
        """Enqueue one file sync per target and return how many were scheduled."""
        if self._schedule_file_sync is None:
            return 0
        for target in targets:
            self._schedule_file_sync(
                PullRequestFileSyncRequest(
                    owner_login=repository.owner_login,
                    name=repository.name,
                    repository_id=repository.repository_id,
                    pull_request_number=target.pull_request_number,
                    head_sha=target.head_sha,
                    installation_id=repository.installation_id,
                )
            )
        return len(targets)

    async def refresh_projections(self, repository: RepositoryRef) -> OverviewCounts:
        """Recompute the projections skipped while pages were written."""
        return await self._writer.refresh_overview(repository.repository_id)
