"""Stage orchestration and scheduling for repository bootstraps.

A bootstrap walks a fixed sequence of stages. Paginated stages call their
chunk step repeatedly, persisting the returned cursor on the sync job after
every chunk, so a retried run picks up at the last completed chunk.

Usage
-----
>>> workflow = BootstrapWorkflow(session_factory, steps)
>>> await workflow.run("repo-bootstrap:1:2", repository)

"""

from __future__ import annotations

import enum
import itertools
import typing as typ

from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.jobs import SyncJobJournal
from ghmirror.bootstrap.observability import BootstrapEventLogger
from ghmirror.bootstrap.steps import ChunkResult, parse_cursor
from ghmirror.common.time import utcnow
from ghmirror.logging import get_logger, log_info
from ghmirror.projection.storage import SyncJobState

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from ghmirror.bootstrap.jobs import SyncJobSnapshot
    from ghmirror.bootstrap.steps import BootstrapSteps
    from ghmirror.projection.queries import RepositoryRef

logger = get_logger(__name__)

type ChunkStep = typ.Callable[[RepositoryRef, str | None], typ.Awaitable[ChunkResult]]


class BootstrapStage(enum.StrEnum):
    """Stages of a bootstrap in execution order."""

    BRANCHES = "branches"
    PULL_REQUESTS = "pull_requests"
    ISSUES = "issues"
    COMMITS = "commits"
    CHECK_RUNS = "check_runs"
    WORKFLOW_RUNS = "workflow_runs"
    PR_FILE_SYNCS = "pr_file_syncs"
    DONE = "done"


STAGE_ORDER: tuple[BootstrapStage, ...] = tuple(BootstrapStage)

_STEP_LABELS: dict[BootstrapStage, str] = {
    BootstrapStage.BRANCHES: "Fetching branches",
    BootstrapStage.PULL_REQUESTS: "Fetching pull requests",
    BootstrapStage.ISSUES: "Fetching issues",
    BootstrapStage.COMMITS: "Fetching commits",
    BootstrapStage.CHECK_RUNS: "Fetching check runs",
    BootstrapStage.WORKFLOW_RUNS: "Fetching workflow runs",
    BootstrapStage.PR_FILE_SYNCS: "Scheduling pull request file syncs",
}


def next_stage(stage: BootstrapStage) -> BootstrapStage:
    """Return the stage after ``stage``; ``done`` is its own successor."""
    if stage is BootstrapStage.DONE:
        return stage
    return STAGE_ORDER[STAGE_ORDER.index(stage) + 1]


class BootstrapWorkflow:
    """Run the stages of one repository bootstrap against a sync job."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        steps: BootstrapSteps,
        config: BootstrapConfig | None = None,
        *,
        events: BootstrapEventLogger | None = None,
    ) -> None:
        """Bind the workflow to its steps and the sync job journal."""
        self._journal = SyncJobJournal(session_factory)
        self._steps = steps
        self._config = config or BootstrapConfig()
        self._events = events or BootstrapEventLogger()

    async def run(
        self, lock_key: str, repository: RepositoryRef
    ) -> SyncJobSnapshot | None:
        """Run or resume the bootstrap tracked by ``lock_key``.

        Returns the finished job, or ``None`` when the job had already
        finished and nothing was run. Any error marks the job ``retry`` and is
        re-raised unchanged for the job queue to act on.
        """
        job = await self._journal.begin_attempt(lock_key)
        if job is None:
            log_info(
                logger,
                "Skipping bootstrap of %s: sync job %s already finished",
                repository.full_name,
                lock_key,
            )
            return None

        stage = BootstrapStage(job.stage) if job.stage else BootstrapStage.BRANCHES
        cursor = job.cursor
        started_at = utcnow()
        self._events.log_run_started(repo_slug=repository.full_name, lock_key=lock_key)

        try:
            while stage is not BootstrapStage.DONE:
                await self._journal.set_current_step(lock_key, _STEP_LABELS[stage])
                await self._run_stage(lock_key, repository, stage, cursor)
                stage = next_stage(stage)
                cursor = None
            await self._steps.refresh_projections(repository)
            await self._journal.mark_done(lock_key)
        except Exception as exc:
            await self._journal.mark_retry(lock_key, exc)
            self._events.log_run_failed(
                repo_slug=repository.full_name,
                stage=stage,
                error=exc,
                duration=utcnow() - started_at,
            )
            raise

        finished = await self._journal.get(lock_key)
        self._events.log_run_completed(
            repo_slug=repository.full_name,
            items_fetched=finished.items_fetched,
            duration=utcnow() - started_at,
        )
        return finished

    async def _run_stage(
        self,
        lock_key: str,
        repository: RepositoryRef,
        stage: BootstrapStage,
        cursor: str | None,
    ) -> None:
        match stage:
            case BootstrapStage.BRANCHES:
                count = await self._steps.fetch_branches(repository)
                await self._finish_stage(lock_key, repository, stage, count, count)
            case BootstrapStage.PULL_REQUESTS:
                await self._run_paged_stage(
                    lock_key,
                    repository,
                    stage,
                    cursor,
                    self._steps.fetch_pull_requests_chunk,
                )
            case BootstrapStage.ISSUES:
                await self._run_paged_stage(
                    lock_key, repository, stage, cursor, self._steps.fetch_issues_chunk
                )
            case BootstrapStage.COMMITS:
                count = await self._steps.fetch_commits(repository)
                await self._finish_stage(lock_key, repository, stage, count, count)
            case BootstrapStage.CHECK_RUNS:
                await self._run_paged_stage(
                    lock_key,
                    repository,
                    stage,
                    cursor,
                    await self._check_run_step(repository),
                )
            case BootstrapStage.WORKFLOW_RUNS:
                result = await self._steps.fetch_workflow_runs(repository)
                count = result.run_count + result.job_count
                await self._finish_stage(lock_key, repository, stage, count, count)
            case BootstrapStage.PR_FILE_SYNCS:
                targets = await self._steps.get_open_pr_sync_targets(repository)
                scheduled = (
                    await self._steps.schedule_pr_file_syncs(repository, targets)
                    if targets
                    else 0
                )
                await self._finish_stage(lock_key, repository, stage, 0, scheduled)
            case BootstrapStage.DONE:
                return

    async def _check_run_step(self, repository: RepositoryRef) -> ChunkStep:
        """Return a chunk step walking open pull request head SHAs in batches.

        The cursor is the 1-based number of the next batch.
        """
        targets = await self._steps.get_open_pr_sync_targets(repository)
        head_shas = dict.fromkeys(target.head_sha for target in targets)
        batches = list(itertools.batched(head_shas, self._config.check_run_sha_batch))

        async def step(repo: RepositoryRef, cursor: str | None) -> ChunkResult:
            index = parse_cursor(cursor)
            if index > len(batches):
                return ChunkResult(count=0, next_cursor=None)
            count = await self._steps.fetch_check_runs_chunk(repo, batches[index - 1])
            next_cursor = str(index + 1) if index < len(batches) else None
            return ChunkResult(count=count, next_cursor=next_cursor)

        return step

    async def _run_paged_stage(
        self,
        lock_key: str,
        repository: RepositoryRef,
        stage: BootstrapStage,
        cursor: str | None,
        step: ChunkStep,
    ) -> None:
        total = 0
        chunks = 0
        while True:
            result = await step(repository, cursor)
            total += result.count
            chunks += 1
            if result.next_cursor is None:
                await self._finish_stage(
                    lock_key, repository, stage, result.count, total
                )
                return

            cursor = result.next_cursor
            await self._journal.save_position(
                lock_key, stage=stage, cursor=cursor, items_delta=result.count
            )
            if chunks % self._config.progress_every_chunks == 0:
                await self._journal.set_current_step(
                    lock_key, f"{_STEP_LABELS[stage]} (from page {cursor})"
                )

    async def _finish_stage(
        self,
        lock_key: str,
        repository: RepositoryRef,
        stage: BootstrapStage,
        items_delta: int,
        items: int,
    ) -> None:
        """Advance the job past ``stage``.

        ``items_delta`` is what this call adds to the job total; ``items`` is
        what the stage produced in this attempt and is only logged.
        """
        await self._journal.complete_step(
            lock_key,
            label=stage,
            next_stage=next_stage(stage),
            items_delta=items_delta,
        )
        self._events.log_stage_completed(
            repo_slug=repository.full_name, stage=stage, items=items
        )


class BootstrapEnqueuer(typ.Protocol):
    """Hand a claimed sync job to the job queue."""

    def __call__(self, lock_key: str) -> None:
        """Enqueue the bootstrap for ``lock_key``."""
        ...


class BootstrapScheduler:
    """Start bootstraps without exceeding the per-installation run limit.

    Jobs that do not fit a free slot stay ``pending`` until :meth:`drain` is
    called for their installation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        enqueue: BootstrapEnqueuer,
        config: BootstrapConfig | None = None,
    ) -> None:
        """Store the journal, the enqueue callable and the run limit."""
        self._journal = SyncJobJournal(session_factory)
        self._enqueue = enqueue
        self._config = config or BootstrapConfig()

    async def request(self, repository: RepositoryRef) -> SyncJobSnapshot:
        """Open a sync job for ``repository`` and start it if a slot is free.

        A job that is already active is returned unchanged.
        """
        job = await self._journal.open_job(
            installation_id=repository.installation_id,
            repository_id=repository.repository_id,
        )
        if job.state is not SyncJobState.PENDING:
            return job

        active = await self._journal.count_active(repository.installation_id)
        if active >= self._config.max_running_per_installation:
            log_info(
                logger,
                "Queued bootstrap of %s: %d of %d runs active for installation %d",
                repository.full_name,
                active,
                self._config.max_running_per_installation,
                repository.installation_id,
            )
            return job

        if await self._journal.claim(job.lock_key):
            self._enqueue(job.lock_key)
        return await self._journal.get(job.lock_key)

    async def drain(self, installation_id: int) -> list[str]:
        """Start pending jobs of ``installation_id`` into free slots.

        Returns the lock keys that were started.
        """
        free = (
            self._config.max_running_per_installation
            - await self._journal.count_active(installation_id)
        )
        if free <= 0:
            return []

        started: list[str] = []
        for lock_key in await self._journal.pending_lock_keys(installation_id, free):
            if await self._journal.claim(lock_key):
                self._enqueue(lock_key)
                started.append(lock_key)
        return started
