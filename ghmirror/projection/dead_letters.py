"""Write-once sink for payloads the pipeline could not decode."""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ghmirror.projection.errors import WriteTimeoutError
from ghmirror.projection.storage import DeadLetter
from ghmirror.projection.writer import DEFAULT_WRITE_TIMEOUT_S

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

type DeadLetterKind = typ.Literal[
    "branch",
    "pr",
    "issue",
    "commit",
    "check-run",
    "workflow-run",
    "workflow-job",
    "pr-file",
]


@dataclasses.dataclass(frozen=True, slots=True)
class DeadLetterItem:
    """One rejected payload with a deterministic delivery id."""

    delivery_id: str
    reason: str
    payload_json: str


def make_delivery_id(
    kind: DeadLetterKind, repository_id: int, page: int | str, index: int
) -> str:
    """Return the delivery id for element ``index`` of ``page``.

    ``page`` is a page number, or the ref a single-page listing was fetched
    for (a head SHA, a workflow run). The id depends only on its inputs, so a
    retried page maps each rejected element onto the same id.
    """
    location = f"page{page}" if isinstance(page, int) else page
    return f"bootstrap-{kind}:{repository_id}:{location}:idx{index}"


class DeadLetterSink:
    """Persist dead letters, skipping delivery ids already recorded."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        write_timeout_s: float = DEFAULT_WRITE_TIMEOUT_S,
    ) -> None:
        """Store the session factory and the time bound for each write."""
        self._session_factory = session_factory
        self._write_timeout_s = write_timeout_s

    async def write(self, items: typ.Sequence[DeadLetterItem]) -> int:
        """Insert ``items`` not yet present and return how many were new."""
        if not items:
            return 0

        unique = {item.delivery_id: item for item in items}
        try:
            async with asyncio.timeout(self._write_timeout_s):
                return await self._insert_new(unique)
        except TimeoutError as exc:
            raise WriteTimeoutError.for_kind(
                "dead_letters", self._write_timeout_s
            ) from exc

    async def _insert_new(self, unique: dict[str, DeadLetterItem]) -> int:
        async with self._session_factory() as session:
            fresh = await self._add_fresh(session, unique)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent replay recorded some of these ids first.
                await session.rollback()
                fresh = await self._add_fresh(session, unique)
                await session.commit()
        return len(fresh)

    @staticmethod
    async def _add_fresh(
        session: AsyncSession, unique: dict[str, DeadLetterItem]
    ) -> list[DeadLetterItem]:
        existing = set(
            await session.scalars(
                select(DeadLetter.delivery_id).where(DeadLetter.delivery_id.in_(unique))
            )
        )
        fresh = [item for key, item in unique.items() if key not in existing]
        session.add_all(
            DeadLetter(
                delivery_id=item.delivery_id,
                reason=item.reason,
                payload_json=item.payload_json,
            )
            for item in fresh
        )
        return fresh
