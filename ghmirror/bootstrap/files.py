"""Follow-up job body that mirrors the files changed by one pull request."""

from __future__ import annotations

import dataclasses
import typing as typ

from ghmirror.bootstrap.observability import BootstrapEventLogger
from ghmirror.github.client import PER_PAGE
from ghmirror.github.transformers import pull_request_file_record
from ghmirror.logging import get_logger, log_info
from ghmirror.projection.dead_letters import DeadLetterItem, make_delivery_id

if typ.TYPE_CHECKING:
    from ghmirror.bootstrap.steps import PullRequestFileSyncRequest
    from ghmirror.github.client import GitHubRestClient
    from ghmirror.projection.dead_letters import DeadLetterSink
    from ghmirror.projection.writer import ProjectionWriter

logger = get_logger(__name__)

# GitHub stops listing pull request files after 3000 entries.
MAX_FILE_PAGES = 30


@dataclasses.dataclass(frozen=True, slots=True)
class FileSyncResult:
    """Outcome of one pull request file sync."""

    file_count: int
    dead_lettered: int
    pages: int


class PullRequestFileSync:
    """Fetch and store the file list of a pull request at a head SHA."""

    def __init__(
        self,
        client: GitHubRestClient,
        writer: ProjectionWriter,
        dead_letters: DeadLetterSink,
        *,
        events: BootstrapEventLogger | None = None,
    ) -> None:
        """Wire the client and the projection writers."""
        self._client = client
        self._writer = writer
        self._dead_letters = dead_letters
        self._events = events or BootstrapEventLogger()

    async def sync(self, request: PullRequestFileSyncRequest) -> FileSyncResult:
        """Mirror every page of files for ``request``."""
        slug = f"{request.owner_login}/{request.name}"
        file_count = 0
        dead_lettered = 0
        pages = 0

        for page_number in range(1, MAX_FILE_PAGES + 1):
            page = await self._client.list_pull_request_files(
                request.owner_login,
                request.name,
                request.pull_request_number,
                page=page_number,
            )
            pages += 1
            if page.skipped:
                location = (
                    f"pr{request.pull_request_number}@{request.head_sha}"
                    f":page{page_number}"
                )
                dead_lettered += await self._dead_letters.write(
                    [
                        DeadLetterItem(
                            delivery_id=make_delivery_id(
                                "pr-file", request.repository_id, location, item.index
                            ),
                            reason=item.error,
                            payload_json=item.raw,
                        )
                        for item in page.skipped
                    ]
                )
                self._events.log_page_dead_lettered(
                    repo_slug=slug,
                    kind="pr-file",
                    page=location,
                    skipped=len(page.skipped),
                )

            file_count += await self._writer.upsert_pull_request_files(
                request.repository_id,
                [
                    pull_request_file_record(
                        item,
                        pull_request_number=request.pull_request_number,
                        head_sha=request.head_sha,
                    )
                    for item in page.items
                ],
            )
            if page.raw_count < PER_PAGE:
                break

        log_info(
            logger,
            "Synced %d files for %s#%d at %s",
            file_count,
            slug,
            request.pull_request_number,
            request.head_sha,
        )
        return FileSyncResult(
            file_count=file_count, dead_lettered=dead_lettered, pages=pages
        )
