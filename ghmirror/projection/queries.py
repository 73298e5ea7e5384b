"""Read models the bootstrap pipeline takes from the projection store."""

from __future__ import annotations

import dataclasses
import typing as typ

from sqlalchemy import select

from ghmirror.projection.errors import RepositoryNotFoundError
from ghmirror.projection.storage import PullRequest, Repository

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryRef:
    """Identity of a connected repository as the pipeline needs it."""

    repository_id: int
    installation_id: int
    owner_login: str
    name: str
    connected_by_user_id: str | None = None

    @property
    def full_name(self) -> str:
        """Return the ``owner/name`` slug."""
        return f"{self.owner_login}/{self.name}"


@dataclasses.dataclass(frozen=True, slots=True)
class OpenPullRequestTarget:
    """Open pull request whose files should be synchronised."""

    pull_request_number: int
    head_sha: str


def _to_ref(repo: Repository) -> RepositoryRef:
    return RepositoryRef(
        repository_id=repo.github_repo_id,
        installation_id=repo.installation_id,
        owner_login=repo.owner_login,
        name=repo.name,
        connected_by_user_id=repo.connected_by_user_id,
    )


class ProjectionQueries:
    """Read-only queries against the projection store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for reads."""
        self._session_factory = session_factory

    async def load_repository(self, repository_id: int) -> RepositoryRef:
        """Return the connected repository or raise ``RepositoryNotFoundError``."""
        async with self._session_factory() as session:
            repo = await session.get(Repository, repository_id)
        if repo is None:
            raise RepositoryNotFoundError(repository_id)
        return _to_ref(repo)

    async def find_repository(self, full_name: str) -> RepositoryRef | None:
        """Return the connected repository named ``owner/name``, if any."""
        async with self._session_factory() as session:
            repo = await session.scalar(
                select(Repository).where(Repository.full_name == full_name)
            )
        return None if repo is None else _to_ref(repo)

    async def open_pr_sync_targets(
        self, repository_id: int
    ) -> list[OpenPullRequestTarget]:
        """Return open pull requests with a known head SHA, ordered by number."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PullRequest.number, PullRequest.head_sha)
                .where(
                    PullRequest.repository_id == repository_id,
                    PullRequest.state == "open",
                    PullRequest.head_sha != "",
                )
                .order_by(PullRequest.number)
            )
            return [
                OpenPullRequestTarget(pull_request_number=number, head_sha=head_sha)
                for number, head_sha in result.all()
            ]

