"""Repository bootstrap: chunked steps, stage orchestration and scheduling.

Public API
----------
BootstrapConfig
    Chunk, batch and concurrency limits, loadable from the environment.
BootstrapSteps
    Fetch-transform-write steps, one per resource kind.
BootstrapWorkflow
    Runs the stages of one bootstrap and persists its progress.
BootstrapScheduler
    Starts bootstraps within the per-installation run limit.
PullRequestFileSync
    Follow-up job body mirroring the files of one pull request.

The Dramatiq actors live in :mod:`ghmirror.bootstrap.actor`, which is not
imported here because importing it installs a broker.

Example:
>>> steps = BootstrapSteps(client, writer, dead_letters, queries)
>>> result = await steps.fetch_pull_requests_chunk(repository, cursor=None)
>>> result.next_cursor is None
True

"""

from ghmirror.bootstrap.config import BootstrapConfig
from ghmirror.bootstrap.files import FileSyncResult, PullRequestFileSync
from ghmirror.bootstrap.jobs import (
    SyncJobJournal,
    SyncJobNotFoundError,
    SyncJobSnapshot,
)
from ghmirror.bootstrap.observability import (
    BootstrapEventLogger,
    BootstrapEventType,
    ErrorCategory,
    categorize_error,
    is_retryable,
)
from ghmirror.bootstrap.runner import run_bootstrap, run_file_sync
from ghmirror.bootstrap.steps import (
    BootstrapSteps,
    ChunkResult,
    InvalidCursorError,
    PullRequestFileSyncRequest,
    WorkflowRunsResult,
)
from ghmirror.bootstrap.workflow import (
    BootstrapScheduler,
    BootstrapStage,
    BootstrapWorkflow,
)

__all__ = [
    "BootstrapConfig",
    "BootstrapEventLogger",
    "BootstrapEventType",
    "BootstrapScheduler",
    "BootstrapStage",
    "BootstrapSteps",
    "BootstrapWorkflow",
    "ChunkResult",
    "ErrorCategory",
    "FileSyncResult",
    "InvalidCursorError",
    "PullRequestFileSync",
    "PullRequestFileSyncRequest",
    "SyncJobJournal",
    "SyncJobNotFoundError",
    "SyncJobSnapshot",
    "WorkflowRunsResult",
    "categorize_error",
    "is_retryable",
    "run_bootstrap",
    "run_file_sync",
]
