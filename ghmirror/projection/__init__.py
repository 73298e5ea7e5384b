"""Projection store: schema, batch writer, dead letters and read queries."""

from __future__ import annotations

from .dead_letters import DeadLetterItem, DeadLetterSink, make_delivery_id
from .errors import (
    RepositoryNotFoundError,
    TimezoneAwareRequiredError,
    WriteTimeoutError,
)
from .queries import OpenPullRequestTarget, ProjectionQueries, RepositoryRef
from .storage import (
    Base,
    Repository,
    SyncJob,
    SyncJobState,
    init_projection_storage,
    lock_key_for,
)
from .writer import OverviewCounts, ProjectionWriter

__all__ = [
    "Base",
    "DeadLetterItem",
    "DeadLetterSink",
    "OpenPullRequestTarget",
    "OverviewCounts",
    "ProjectionQueries",
    "ProjectionWriter",
    "Repository",
    "RepositoryNotFoundError",
    "RepositoryRef",
    "SyncJob",
    "SyncJobState",
    "TimezoneAwareRequiredError",
    "WriteTimeoutError",
    "init_projection_storage",
    "lock_key_for",
    "make_delivery_id",
]
