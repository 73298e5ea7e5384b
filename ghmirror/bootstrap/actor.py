"""Dramatiq actors that run bootstraps and pull request file syncs.

Usage
-----
Queue a bootstrap for a claimed sync job:

>>> bootstrap_repository_job.send(
...     database_url="postgresql+asyncpg://...",
...     lock_key="repo-bootstrap:42:1296269",
... )

"""

from __future__ import annotations

import asyncio
import dataclasses
import threading
import typing as typ

import dramatiq
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ghmirror.bootstrap._broker import ensure_broker_configured
from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.jobs import SyncJobJournal
from ghmirror.bootstrap.observability import categorize_error, is_retryable
from ghmirror.bootstrap.runner import run_bootstrap, run_file_sync
from ghmirror.bootstrap.steps import PullRequestFileSyncRequest
from ghmirror.bootstrap.workflow import BootstrapScheduler
from ghmirror.github.tokens import StoredCredentialResolver
from ghmirror.logging import get_logger, log_error

if typ.TYPE_CHECKING:
    from ghmirror.bootstrap.steps import FileSyncScheduler
    from ghmirror.bootstrap.workflow import BootstrapEnqueuer

type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

MAX_RETRIES = 5
MIN_BACKOFF_MS = 15_000
MAX_BACKOFF_MS = 15 * 60_000
BOOTSTRAP_TIME_LIMIT_MS = 2 * 60 * 60_000
FILE_SYNC_TIME_LIMIT_MS = 10 * 60_000

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return the cached session factory for ``database_url``.

    Thread-safe: Dramatiq runs actors on several worker threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ENGINE_CACHE.setdefault(
                database_url, create_async_engine(database_url)
            )
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def should_retry(retries: int, exception: Exception) -> bool:
    """Retry predicate for the bootstrap actors.

    ``retries`` counts the retries already made for the message.
    Authentication and configuration failures are never retried.
    """
    return retries < MAX_RETRIES and is_retryable(exception)


def is_final_failure(attempt_count: int, exception: Exception) -> bool:
    """Return ``True`` when no further attempt will follow ``exception``."""
    return attempt_count > MAX_RETRIES or not is_retryable(exception)


def _run_actor_async[T](
    database_url: str,
    async_fn: typ.Callable[[SessionFactory], typ.Awaitable[T]],
) -> T:
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    return asyncio.run(async_fn(session_factory))


def bootstrap_enqueuer(database_url: str) -> BootstrapEnqueuer:
    """Return a callable that queues a bootstrap for a lock key."""

    def enqueue(lock_key: str) -> None:
        bootstrap_repository_job.send(database_url, lock_key)

    return enqueue


def file_sync_scheduler(database_url: str) -> FileSyncScheduler:
    """Return a callable that queues one pull request file sync."""

    def schedule(request: PullRequestFileSyncRequest) -> None:
        sync_pull_request_files_job.send(
            database_url, **dataclasses.asdict(request)
        )

    return schedule


async def _bootstrap_async(
    session_factory: SessionFactory, database_url: str, lock_key: str
) -> int | None:
    config = BootstrapConfig.from_env()
    journal = SyncJobJournal(session_factory)
    scheduler = BootstrapScheduler(
        session_factory, bootstrap_enqueuer(database_url), config
    )

    try:
        finished = await run_bootstrap(
            session_factory,
            lock_key,
            resolver=StoredCredentialResolver(session_factory),
            config=config,
            schedule_file_sync=file_sync_scheduler(database_url),
        )
    except Exception as exc:
        job = await journal.get(lock_key)
        if is_final_failure(job.attempt_count, exc):
            await journal.mark_failed(lock_key, exc)
            log_error(
                logger,
                "Bootstrap %s failed after %d attempts: error_category=%s",
                lock_key,
                job.attempt_count,
                categorize_error(exc),
            )
            await scheduler.drain(job.installation_id)
        raise

    job = await journal.get(lock_key)
    await scheduler.drain(job.installation_id)
    return None if finished is None else finished.items_fetched


try:
    _current_broker = dramatiq.get_broker()
except ModuleNotFoundError:
    _current_broker = None

if _current_broker is None:
    dramatiq.set_broker(StubBroker())


@dramatiq.actor(
    max_retries=MAX_RETRIES,
    min_backoff=MIN_BACKOFF_MS,
    max_backoff=MAX_BACKOFF_MS,
    time_limit=BOOTSTRAP_TIME_LIMIT_MS,
    retry_when=should_retry,
)
def bootstrap_repository_job(database_url: str, lock_key: str) -> int | None:
    """Run or resume the bootstrap tracked by ``lock_key``.

    Returns the total number of items fetched, or ``None`` when the job had
    already finished. When the last attempt fails the job is marked failed
    and pending jobs of the same installation are started.
    """

    async def execute(session_factory: SessionFactory) -> int | None:
        return await _bootstrap_async(session_factory, database_url, lock_key)

    return _run_actor_async(database_url, execute)


@dramatiq.actor(
    max_retries=MAX_RETRIES,
    min_backoff=MIN_BACKOFF_MS,
    max_backoff=MAX_BACKOFF_MS,
    time_limit=FILE_SYNC_TIME_LIMIT_MS,
    retry_when=should_retry,
)
def sync_pull_request_files_job(  # noqa: PLR0913
    database_url: str,
    *,
    owner_login: str,
    name: str,
    repository_id: int,
    pull_request_number: int,
    head_sha: str,
    installation_id: int,
) -> int:
    """Mirror the files of one pull request and return how many were written."""
    request = PullRequestFileSyncRequest(
        owner_login=owner_login,
        name=name,
        repository_id=repository_id,
        pull_request_number=pull_request_number,
        head_sha=head_sha,
        installation_id=installation_id,
    )

    async def execute(session_factory: SessionFactory) -> int:
        result = await run_file_sync(
            session_factory,
            request,
            resolver=StoredCredentialResolver(session_factory),
            config=BootstrapConfig.from_env(),
        )
        return result.file_count

    return _run_actor_async(database_url, execute)
