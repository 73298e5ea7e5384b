"""Assemble the pipeline for one job from a session factory and a credential."""

from __future__ import annotations

import typing as typ

from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.files import FileSyncResult, PullRequestFileSync
from ghmirror.bootstrap.jobs import SyncJobJournal
from ghmirror.bootstrap.steps import BootstrapSteps
from ghmirror.bootstrap.workflow import BootstrapWorkflow
from ghmirror.github.client import GitHubRestClient, GitHubRestConfig
from ghmirror.projection.dead_letters import DeadLetterSink
from ghmirror.projection.queries import ProjectionQueries
from ghmirror.projection.writer import ProjectionWriter

if typ.TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from ghmirror.bootstrap.jobs import SyncJobSnapshot
    from ghmirror.bootstrap.observability import BootstrapEventLogger
    from ghmirror.bootstrap.steps import FileSyncScheduler, PullRequestFileSyncRequest
    from ghmirror.github.tokens import TokenResolver

type SessionFactory = async_sessionmaker[AsyncSession]


def _writer(
    session_factory: SessionFactory, config: BootstrapConfig
) -> ProjectionWriter:
    return ProjectionWriter(
        session_factory,
        batch_size=config.write_batch_size,
        write_timeout_s=config.write_timeout_s,
    )


async def run_bootstrap(  # noqa: PLR0913
    session_factory: SessionFactory,
    lock_key: str,
    *,
    resolver: TokenResolver,
    config: BootstrapConfig | None = None,
    schedule_file_sync: FileSyncScheduler | None = None,
    http_client: httpx.AsyncClient | None = None,
    events: BootstrapEventLogger | None = None,
) -> SyncJobSnapshot | None:
    """Resolve the credential for ``lock_key``'s repository and run its workflow.

    ``http_client`` replaces the client the REST wrapper would open, which is
    how tests route requests to a fake GitHub.
    """
    config = config or BootstrapConfig()
    job = await SyncJobJournal(session_factory).get(lock_key)
    queries = ProjectionQueries(session_factory)
    repository = await queries.load_repository(job.repository_id)
    token = await resolver.resolve(
        repository.installation_id, repository.connected_by_user_id
    )

    async with GitHubRestClient(
        GitHubRestConfig.from_env(token), http_client=http_client
    ) as client:
        steps = BootstrapSteps(
            client,
            _writer(session_factory, config),
            DeadLetterSink(session_factory, write_timeout_s=config.write_timeout_s),
            queries,
            config,
            schedule_file_sync=schedule_file_sync,
            events=events,
        )
        workflow = BootstrapWorkflow(session_factory, steps, config, events=events)
        return await workflow.run(lock_key, repository)


async def run_file_sync(
    session_factory: SessionFactory,
    request: PullRequestFileSyncRequest,
    *,
    resolver: TokenResolver,
    config: BootstrapConfig | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FileSyncResult:
    """Mirror the files of the pull request named by ``request``."""
    config = config or BootstrapConfig()
    repository = await ProjectionQueries(session_factory).load_repository(
        request.repository_id
    )
    token = await resolver.resolve(
        request.installation_id, repository.connected_by_user_id
    )

    async with GitHubRestClient(
        GitHubRestConfig.from_env(token), http_client=http_client
    ) as client:
        sync = PullRequestFileSync(
            client,
            _writer(session_factory, config),
            DeadLetterSink(session_factory, write_timeout_s=config.write_timeout_s),
        )
        return await sync.sync(request)
