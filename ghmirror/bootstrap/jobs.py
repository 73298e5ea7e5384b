"""Persisted state of bootstrap runs.

A :class:`~ghmirror.projection.storage.SyncJob` row records the stage and
cursor of the last completed chunk, so a retried run resumes where the failed
attempt stopped instead of starting over.
"""

from __future__ import annotations

import dataclasses
import typing as typ

from sqlalchemy import func, select, update

from ghmirror.projection.storage import SyncJob, SyncJobState, lock_key_for

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

ACTIVE_STATES = (SyncJobState.RUNNING, SyncJobState.RETRY)
RESUMABLE_STATES = (SyncJobState.PENDING, SyncJobState.RUNNING, SyncJobState.RETRY)
_ERROR_LIMIT = 2000


class SyncJobNotFoundError(LookupError):
    """Raised when no sync job exists for a lock key."""

    def __init__(self, lock_key: str) -> None:
        """Record the missing lock key."""
        self.lock_key = lock_key
        super().__init__(f"no sync job for lock key {lock_key!r}")


@dataclasses.dataclass(frozen=True, slots=True)
class SyncJobSnapshot:
    """Detached view of a sync job row."""

    lock_key: str
    installation_id: int
    repository_id: int
    state: SyncJobState
    stage: str | None
    cursor: str | None
    attempt_count: int
    items_fetched: int
    completed_steps: tuple[str, ...]
    current_step: str | None
    last_error: str | None


def _snapshot(job: SyncJob) -> SyncJobSnapshot:
    return SyncJobSnapshot(
        lock_key=job.lock_key,
        installation_id=job.installation_id,
        repository_id=job.repository_id,
        state=SyncJobState(job.state),
        stage=job.stage,
        cursor=job.cursor,
        attempt_count=job.attempt_count,
        items_fetched=job.items_fetched,
        completed_steps=tuple(job.completed_steps or ()),
        current_step=job.current_step,
        last_error=job.last_error,
    )


def _describe(error: BaseException) -> str:
    text = f"{type(error).__name__}: {error}"
    return text[:_ERROR_LIMIT]


class SyncJobJournal:
    """Read and update sync job rows, one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for journal writes."""
        self._session_factory = session_factory

    async def _require(self, session: AsyncSession, lock_key: str) -> SyncJob:
        job = await session.scalar(select(SyncJob).where(SyncJob.lock_key == lock_key))
        if job is None:
            raise SyncJobNotFoundError(lock_key)
        return job

    async def get(self, lock_key: str) -> SyncJobSnapshot:
        """Return the current state of the job for ``lock_key``."""
        async with self._session_factory() as session:
            return _snapshot(await self._require(session, lock_key))

    async def open_job(
        self, *, installation_id: int, repository_id: int
    ) -> SyncJobSnapshot:
        """Return the job for a repository, creating or resetting it to pending.

        A finished job is reset so the repository can be bootstrapped again;
        a pending or active job is returned unchanged.
        """
        lock_key = lock_key_for(installation_id, repository_id)
        async with self._session_factory() as session:
            job = await session.scalar(
                select(SyncJob).where(SyncJob.lock_key == lock_key)
            )
            if job is None:
                job = SyncJob(
                    lock_key=lock_key,
                    installation_id=installation_id,
                    repository_id=repository_id,
                    state=SyncJobState.PENDING,
                    attempt_count=0,
                    items_fetched=0,
                    completed_steps=[],
                )
                session.add(job)
            elif job.state in (SyncJobState.DONE, SyncJobState.FAILED):
                job.state = SyncJobState.PENDING
                job.stage = None
                job.cursor = None
                job.attempt_count = 0
                job.last_error = None
                job.current_step = None
                job.completed_steps = []
                job.items_fetched = 0
            snapshot = _snapshot(job)
            await session.commit()
            return snapshot

    async def begin_attempt(self, lock_key: str) -> SyncJobSnapshot | None:
        """Mark the job running and count the attempt.

        Returns ``None`` when the job already finished (``done`` or
        ``failed``), which happens when a duplicate message is delivered.
        """
        async with self._session_factory() as session:
            job = await self._require(session, lock_key)
            if job.state not in RESUMABLE_STATES:
                return None
            job.state = SyncJobState.RUNNING
            job.attempt_count += 1
            job.last_error = None
            snapshot = _snapshot(job)
            await session.commit()
            return snapshot

    async def save_position(
        self,
        lock_key: str,
        *,
        stage: str,
        cursor: str | None,
        items_delta: int = 0,
    ) -> None:
        """Persist the stage and cursor reached after a completed chunk."""
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.lock_key == lock_key)
                .values(
                    stage=stage,
                    cursor=cursor,
                    items_fetched=SyncJob.items_fetched + items_delta,
                )
            )
            await session.commit()

    async def set_current_step(self, lock_key: str, current_step: str | None) -> None:
        """Update the human-readable progress line."""
        async with self._session_factory() as session:
            await session.execute(
                update(SyncJob)
                .where(SyncJob.lock_key == lock_key)
                .values(current_step=current_step)
            )
            await session.commit()

    async def complete_step(
        self,
        lock_key: str,
        *,
        label: str,
        next_stage: str,
        items_delta: int = 0,
    ) -> None:
        """Record ``label`` as completed and move on to ``next_stage``."""
        async with self._session_factory() as session:
            job = await self._require(session, lock_key)
            completed = list(job.completed_steps or [])
            if label not in completed:
                completed.append(label)
            job.completed_steps = completed
            job.current_step = None
            job.stage = next_stage
            job.cursor = None
            job.items_fetched += items_delta
            await session.commit()

    async def mark_done(self, lock_key: str) -> None:
        """Mark the job finished."""
        await self._set_state(lock_key, SyncJobState.DONE, None)

    async def mark_retry(self, lock_key: str, error: BaseException) -> None:
        """Record ``error`` and leave the job for the job queue to retry."""
        await self._set_state(lock_key, SyncJobState.RETRY, _describe(error))

    async def mark_failed(self, lock_key: str, error: BaseException | str) -> None:
        """Mark the job permanently failed."""
        message = error if isinstance(error, str) else _describe(error)
        await self._set_state(lock_key, SyncJobState.FAILED, message)

    async def _set_state(
        self, lock_key: str, state: SyncJobState, last_error: str | None
    ) -> None:
        async with self._session_factory() as session:
            job = await self._require(session, lock_key)
            job.state = state
            job.last_error = last_error
            job.current_step = None
            await session.commit()

    async def count_active(self, installation_id: int) -> int:
        """Return how many jobs of ``installation_id`` hold a running slot."""
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(SyncJob)
                .where(
                    SyncJob.installation_id == installation_id,
                    SyncJob.state.in_(ACTIVE_STATES),
                )
            )
            return int(count or 0)

    async def pending_lock_keys(self, installation_id: int, limit: int) -> list[str]:
        """Return up to ``limit`` pending lock keys, oldest first."""
        async with self._session_factory() as session:
            result = await session.scalars(
                select(SyncJob.lock_key)
                .where(
                    SyncJob.installation_id == installation_id,
                    SyncJob.state == SyncJobState.PENDING,
                )
                .order_by(SyncJob.created_at, SyncJob.id)
                .limit(limit)
            )
            return list(result)

    async def claim(self, lock_key: str) -> bool:
        """Move a pending job to running; ``False`` if another caller won."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(SyncJob)
                .where(
                    SyncJob.lock_key == lock_key,
                    SyncJob.state == SyncJobState.PENDING,
                )
                .values(state=SyncJobState.RUNNING)
            )
            await session.commit()
            return typ.cast("typ.Any", result).rowcount == 1
