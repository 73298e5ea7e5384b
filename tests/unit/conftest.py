"""Unit-test fixtures for the bootstrap pipeline."""

from __future__ import annotations

import typing as typ

import pytest
import pytest_asyncio

from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.observability import BootstrapEventLogger
from ghmirror.bootstrap.steps import BootstrapSteps, PullRequestFileSyncRequest
from ghmirror.projection.dead_letters import DeadLetterSink
from ghmirror.projection.queries import ProjectionQueries
from ghmirror.projection.writer import ProjectionWriter
from tests.helpers.github_fake import FakeGitHub
from tests.unit.bootstrap_test_helpers import create_repository

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from ghmirror.projection.queries import RepositoryRef


@pytest_asyncio.fixture
async def repository(
    session_factory: async_sessionmaker[AsyncSession],
) -> RepositoryRef:
    """Return the default connected repository ``octo/reef``."""
    return await create_repository(session_factory)


@pytest.fixture
def github() -> FakeGitHub:
    """Return an empty fake GitHub API."""
    return FakeGitHub()


class RecordingScheduler:
    """File sync scheduler that keeps the requests it was given."""

    def __init__(self) -> None:
        """Start with no scheduled requests."""
        self.requests: list[PullRequestFileSyncRequest] = []

    def __call__(self, request: PullRequestFileSyncRequest) -> None:
        """Record ``request``."""
        self.requests.append(request)


@pytest.fixture
def file_syncs() -> RecordingScheduler:
    """Return a scheduler capturing pull request file syncs."""
    return RecordingScheduler()


class StepsFactory(typ.Protocol):
    """Callable fixture building steps bound to the fake GitHub."""

    def __call__(self, config: BootstrapConfig | None = None) -> BootstrapSteps: ...


@pytest.fixture
def make_steps(
    session_factory: async_sessionmaker[AsyncSession],
    github: FakeGitHub,
    file_syncs: RecordingScheduler,
) -> StepsFactory:
    """Return a factory for steps wired to the fake GitHub and sqlite store."""

    def factory(config: BootstrapConfig | None = None) -> BootstrapSteps:
        config = config or BootstrapConfig()
        return BootstrapSteps(
            github.rest_client(),
            ProjectionWriter(
                session_factory,
                batch_size=config.write_batch_size,
                write_timeout_s=config.write_timeout_s,
            ),
            DeadLetterSink(session_factory),
            ProjectionQueries(session_factory),
            config,
            schedule_file_sync=file_syncs,
            events=BootstrapEventLogger(),
        )

    return factory
