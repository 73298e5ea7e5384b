"""Idempotent batch upserts into the projection store."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import typing as typ

from sqlalchemy import false, func, select
from sqlalchemy.exc import IntegrityError

from ghmirror.common.time import utcnow
from ghmirror.projection.errors import WriteTimeoutError
from ghmirror.projection.storage import (
    Base,
    Branch,
    CheckRun,
    Commit,
    Issue,
    PullRequest,
    PullRequestFile,
    RepositoryOverview,
    User,
    WorkflowJob,
    WorkflowRun,
)

if typ.TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from ghmirror.github.transformers import (
        BranchRecord,
        CheckRunRecord,
        CommitRecord,
        IssueRecord,
        PullRequestFileRecord,
        PullRequestRecord,
        UserRecord,
        WorkflowJobRecord,
        WorkflowRunRecord,
    )

DEFAULT_BATCH_SIZE = 50
DEFAULT_WRITE_TIMEOUT_S = 30.0
FAILING_CONCLUSIONS = frozenset({"failure", "timed_out", "action_required"})

type RowValues = dict[str, typ.Any]


@dataclasses.dataclass(frozen=True, slots=True)
class OverviewCounts:
    """Counts recomputed for a repository overview row."""

    open_pull_request_count: int
    open_issue_count: int
    failing_check_run_count: int


def _values(record: object, **extra: object) -> RowValues:
    values = dataclasses.asdict(typ.cast("typ.Any", record))
    values.update(extra)
    return values


async def _merge_rows(
    session: AsyncSession,
    model: type[Base],
    key_attr: str,
    rows: dict[typ.Any, RowValues],
    scope: RowValues,
    *,
    keep_existing_when_none: bool = False,
) -> None:
    """Insert or update ``rows`` keyed by ``key_attr`` within ``scope``.

    Existing rows are updated in place. With ``keep_existing_when_none`` a
    ``None`` in the new values leaves the stored value untouched.
    """
    model_any = typ.cast("typ.Any", model)
    key_column = getattr(model_any, key_attr)
    stmt = select(model_any).where(key_column.in_(list(rows)))
    for name, value in scope.items():
        stmt = stmt.where(getattr(model_any, name) == value)
    existing = {getattr(row, key_attr): row for row in await session.scalars(stmt)}

    for key, values in rows.items():
        row = existing.get(key)
        if row is None:
            session.add(model_any(**scope, **values))
            continue
        for name, value in values.items():
            if value is None and keep_existing_when_none:
                continue
            setattr(row, name, value)


class ProjectionWriter:
    """Write transformed records in bounded, individually committed batches.

    Every method is safe to repeat with the same records: rows are matched on
    their natural key and overwritten, never duplicated.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        write_timeout_s: float = DEFAULT_WRITE_TIMEOUT_S,
    ) -> None:
        """Store the session factory and batching limits."""
        if batch_size < 1:
            msg = f"batch_size must be positive, got: {batch_size}"
            raise ValueError(msg)
        self._session_factory = session_factory
        self._batch_size = batch_size
        self._write_timeout_s = write_timeout_s

    async def _write_batches[R](
        self,
        kind: str,
        records: typ.Sequence[R],
        write_batch: typ.Callable[[AsyncSession, tuple[R, ...]], typ.Awaitable[None]],
    ) -> int:
        for batch in itertools.batched(records, self._batch_size):
            try:
                async with asyncio.timeout(self._write_timeout_s):
                    await self._commit_batch(batch, write_batch)
            except TimeoutError as exc:
                raise WriteTimeoutError.for_kind(kind, self._write_timeout_s) from exc
        return len(records)

    async def _commit_batch[R](
        self,
        batch: tuple[R, ...],
        write_batch: typ.Callable[[AsyncSession, tuple[R, ...]], typ.Awaitable[None]],
    ) -> None:
        """Merge and commit one batch, merging again over a concurrent insert.

        Another job may insert one of the batch's keys between the lookup and
        the commit. The rollback discards the pending inserts; the second merge
        finds those rows and updates them. A second ``IntegrityError`` is not a
        race and propagates.
        """
        async with self._session_factory() as session:
            await write_batch(session, batch)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
            else:
                return
            await write_batch(session, batch)
            await session.commit()

    async def upsert_branches(
        self, repository_id: int, records: typ.Sequence[BranchRecord]
    ) -> int:
        """Upsert branches keyed by name."""

        async def write(session: AsyncSession, batch: tuple[BranchRecord, ...]) -> None:
            rows = {record.name: _values(record) for record in batch}
            await _merge_rows(
                session, Branch, "name", rows, {"repository_id": repository_id}
            )

        return await self._write_batches("branches", records, write)

    async def upsert_users(self, records: typ.Sequence[UserRecord]) -> int:
        """Upsert users keyed by their external id."""

        async def write(session: AsyncSession, batch: tuple[UserRecord, ...]) -> None:
            rows = {record.github_user_id: _values(record) for record in batch}
            await _merge_rows(session, User, "github_user_id", rows, {})

        return await self._write_batches("users", records, write)

    async def upsert_pull_requests(
        self,
        repository_id: int,
        records: typ.Sequence[PullRequestRecord],
        *,
        skip_projections: bool = False,
    ) -> int:
        """Upsert pull requests keyed by number.

        Unless ``skip_projections`` is set the repository overview is
        refreshed once all batches are written.
        """

        async def write(
            session: AsyncSession, batch: tuple[PullRequestRecord, ...]
        ) -> None:
            now = utcnow()
            rows = {record.number: _values(record, cached_at=now) for record in batch}
            await _merge_rows(
                session, PullRequest, "number", rows, {"repository_id": repository_id}
            )

        count = await self._write_batches("pull_requests", records, write)
        if not skip_projections:
            await self.refresh_overview(repository_id)
        return count

    async def upsert_issues(
        self,
        repository_id: int,
        records: typ.Sequence[IssueRecord],
        *,
        skip_projections: bool = False,
    ) -> int:
        """Upsert issues keyed by number, refreshing the overview unless skipped."""

        async def write(session: AsyncSession, batch: tuple[IssueRecord, ...]) -> None:
            now = utcnow()
            rows = {record.number: _values(record, cached_at=now) for record in batch}
            await _merge_rows(
                session, Issue, "number", rows, {"repository_id": repository_id}
            )

        count = await self._write_batches("issues", records, write)
        if not skip_projections:
            await self.refresh_overview(repository_id)
        return count

    async def upsert_commits(
        self, repository_id: int, records: typ.Sequence[CommitRecord]
    ) -> int:
        """Upsert commits keyed by SHA, keeping stored values the record omits."""

        async def write(session: AsyncSession, batch: tuple[CommitRecord, ...]) -> None:
            now = utcnow()
            rows = {record.sha: _values(record, cached_at=now) for record in batch}
            await _merge_rows(
                session,
                Commit,
                "sha",
                rows,
                {"repository_id": repository_id},
                keep_existing_when_none=True,
            )

        return await self._write_batches("commits", records, write)

    async def upsert_check_runs(
        self, repository_id: int, records: typ.Sequence[CheckRunRecord]
    ) -> int:
        """Upsert check runs keyed by their external id."""

        async def write(
            session: AsyncSession, batch: tuple[CheckRunRecord, ...]
        ) -> None:
            rows = {record.github_check_run_id: _values(record) for record in batch}
            await _merge_rows(
                session,
                CheckRun,
                "github_check_run_id",
                rows,
                {"repository_id": repository_id},
            )

        return await self._write_batches("check_runs", records, write)

    async def upsert_workflow_runs(
        self, repository_id: int, records: typ.Sequence[WorkflowRunRecord]
    ) -> int:
        """Upsert workflow runs keyed by their external id."""

        async def write(
            session: AsyncSession, batch: tuple[WorkflowRunRecord, ...]
        ) -> None:
            rows = {record.github_run_id: _values(record) for record in batch}
            await _merge_rows(
                session,
                WorkflowRun,
                "github_run_id",
                rows,
                {"repository_id": repository_id},
            )

        return await self._write_batches("workflow_runs", records, write)

    async def upsert_workflow_jobs(
        self, repository_id: int, records: typ.Sequence[WorkflowJobRecord]
    ) -> int:
        """Upsert workflow jobs keyed by their external id."""

        async def write(
            session: AsyncSession, batch: tuple[WorkflowJobRecord, ...]
        ) -> None:
            rows = {record.github_job_id: _values(record) for record in batch}
            await _merge_rows(
                session,
                WorkflowJob,
                "github_job_id",
                rows,
                {"repository_id": repository_id},
            )

        return await self._write_batches("workflow_jobs", records, write)

    async def upsert_pull_request_files(
        self, repository_id: int, records: typ.Sequence[PullRequestFileRecord]
    ) -> int:
        """Upsert pull request files keyed by (number, head SHA, filename)."""

        async def write(
            session: AsyncSession, batch: tuple[PullRequestFileRecord, ...]
        ) -> None:
            groups: dict[tuple[int, str], dict[str, RowValues]] = {}
            for record in batch:
                values = _values(record)
                number = values.pop("pull_request_number")
                head_sha = values.pop("head_sha")
                groups.setdefault((number, head_sha), {})[record.filename] = values
            for (number, head_sha), rows in groups.items():
                await _merge_rows(
                    session,
                    PullRequestFile,
                    "filename",
                    rows,
                    {
                        "repository_id": repository_id,
                        "pull_request_number": number,
                        "head_sha": head_sha,
                    },
                )

        return await self._write_batches("pull_request_files", records, write)

    async def refresh_overview(self, repository_id: int) -> OverviewCounts:
        """Recompute the overview counts for ``repository_id``."""
        async with asyncio.timeout(self._write_timeout_s):
            async with self._session_factory() as session:
                counts = OverviewCounts(
                    open_pull_request_count=await self._count(
                        session,
                        select(func.count()).select_from(PullRequest).where(
                            PullRequest.repository_id == repository_id,
                            PullRequest.state == "open",
                        ),
                    ),
                    open_issue_count=await self._count(
                        session,
                        select(func.count()).select_from(Issue).where(
                            Issue.repository_id == repository_id,
                            Issue.state == "open",
                            Issue.is_pull_request == false(),
                        ),
                    ),
                    failing_check_run_count=await self._count(
                        session,
                        select(func.count()).select_from(CheckRun).where(
                            CheckRun.repository_id == repository_id,
                            CheckRun.conclusion.in_(FAILING_CONCLUSIONS),
                        ),
                    ),
                )
                overview = await session.get(RepositoryOverview, repository_id)
                if overview is None:
                    overview = RepositoryOverview(repository_id=repository_id)
                    session.add(overview)
                overview.open_pull_request_count = counts.open_pull_request_count
                overview.open_issue_count = counts.open_issue_count
                overview.failing_check_run_count = counts.failing_check_run_count
                overview.refreshed_at = utcnow()
                await session.commit()
        return counts

    @staticmethod
    async def _count(session: AsyncSession, stmt: Select[tuple[int]]) -> int:
        return int(await session.scalar(stmt) or 0)
