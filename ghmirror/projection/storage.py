"""Persistence models for the GitHub projection store."""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

from ghmirror.common.time import utcnow
from ghmirror.projection.errors import TimezoneAwareRequiredError


class SyncJobState(enum.StrEnum):
    """Lifecycle of a bootstrap run."""

    PENDING = "pending"
    RUNNING = "running"
    RETRY = "retry"
    DONE = "done"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base declarative class for projection models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


_REPOSITORY_FK = "repositories.github_repo_id"


class Repository(Base):
    """Connected GitHub repository; created by the connect flow."""

    __tablename__ = "repositories"

    github_repo_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False
    )
    installation_id: Mapped[int] = mapped_column(BigInteger)
    owner_login: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(511), unique=True)
    default_branch: Mapped[str] = mapped_column(String(255), default="main")
    connected_by_user_id: Mapped[str | None] = mapped_column(
        String(255), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class Branch(Base):
    """Branch head pointer."""

    __tablename__ = "branches"
    __table_args__ = (
        UniqueConstraint("repository_id", "name", name="uq_branches_repo_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str] = mapped_column(String(64))
    protected: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class User(Base):
    """GitHub account observed as an author, actor or assignee."""

    __tablename__ = "users"

    github_user_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False
    )
    login: Mapped[str] = mapped_column(String(255))
    avatar_url: Mapped[str | None] = mapped_column(String(1024), default=None)
    site_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    type: Mapped[str] = mapped_column(String(32), default="User")
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class PullRequest(Base):
    """Pull request state mirrored from GitHub."""

    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "number", name="uq_pull_requests_repo_number"
        ),
        Index("ix_pull_requests_repo_state", "repository_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    github_pr_id: Mapped[int] = mapped_column(BigInteger, unique=True)
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    draft: Mapped[bool] = mapped_column(Boolean, default=False)
    title: Mapped[str] = mapped_column(Text())
    body: Mapped[str | None] = mapped_column(Text(), default=None)
    author_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    assignee_user_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    requested_reviewer_user_ids: Mapped[list[int]] = mapped_column(
        JSON, default=list
    )
    label_names: Mapped[list[str]] = mapped_column(JSON, default=list)
    base_ref_name: Mapped[str] = mapped_column(String(255))
    head_ref_name: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str] = mapped_column(String(64))
    mergeable_state: Mapped[str | None] = mapped_column(String(32), default=None)
    merged_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    closed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    cached_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class Issue(Base):
    """Issue state mirrored from GitHub."""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_issues_repo_number"),
        Index("ix_issues_repo_state", "repository_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    github_issue_id: Mapped[int] = mapped_column(BigInteger, unique=True)
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(Text())
    body: Mapped[str | None] = mapped_column(Text(), default=None)
    author_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    assignee_user_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    label_names: Mapped[list[str]] = mapped_column(JSON, default=list)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    is_pull_request: Mapped[bool] = mapped_column(Boolean, default=False)
    closed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    cached_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class Commit(Base):
    """Commit summary mirrored from the commit listing."""

    __tablename__ = "commits"
    __table_args__ = (
        UniqueConstraint("repository_id", "sha", name="uq_commits_repo_sha"),
        Index("ix_commits_repo_time", "repository_id", "committed_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    sha: Mapped[str] = mapped_column(String(64))
    author_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    committer_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    message_headline: Mapped[str] = mapped_column(Text(), default="")
    authored_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    committed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    additions: Mapped[int | None] = mapped_column(Integer, default=None)
    deletions: Mapped[int | None] = mapped_column(Integer, default=None)
    changed_files: Mapped[int | None] = mapped_column(Integer, default=None)
    cached_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class CheckRun(Base):
    """Check run reported against a commit."""

    __tablename__ = "check_runs"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "github_check_run_id", name="uq_check_runs_repo_run"
        ),
        Index("ix_check_runs_repo_sha", "repository_id", "head_sha"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    github_check_run_id: Mapped[int] = mapped_column(BigInteger)
    name: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32))
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    completed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())


class WorkflowRun(Base):
    """GitHub Actions workflow run."""

    __tablename__ = "workflow_runs"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "github_run_id", name="uq_workflow_runs_repo_run"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    github_run_id: Mapped[int] = mapped_column(BigInteger)
    workflow_id: Mapped[int] = mapped_column(BigInteger)
    workflow_name: Mapped[str | None] = mapped_column(String(255), default=None)
    run_number: Mapped[int] = mapped_column(Integer)
    run_attempt: Mapped[int | None] = mapped_column(Integer, default=None)
    event: Mapped[str] = mapped_column(String(64))
    status: Mapped[str | None] = mapped_column(String(32), default=None)
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    head_branch: Mapped[str | None] = mapped_column(String(255), default=None)
    head_sha: Mapped[str] = mapped_column(String(64))
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    html_url: Mapped[str | None] = mapped_column(String(1024), default=None)
    github_created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())


class WorkflowJob(Base):
    """Job belonging to a workflow run."""

    __tablename__ = "workflow_jobs"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "github_job_id", name="uq_workflow_jobs_repo_job"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    github_job_id: Mapped[int] = mapped_column(BigInteger)
    github_run_id: Mapped[int] = mapped_column(BigInteger)
    name: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32))
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    completed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())
    runner_name: Mapped[str | None] = mapped_column(String(255), default=None)
    steps_json: Mapped[str | None] = mapped_column(Text(), default=None)


class PullRequestFile(Base):
    """File touched by a pull request at a given head SHA."""

    __tablename__ = "pull_request_files"
    __table_args__ = (
        UniqueConstraint(
            "repository_id",
            "pull_request_number",
            "head_sha",
            "filename",
            name="uq_pull_request_files_identity",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    pull_request_number: Mapped[int] = mapped_column(Integer)
    head_sha: Mapped[str] = mapped_column(String(64))
    filename: Mapped[str] = mapped_column(String(1024))
    status: Mapped[str] = mapped_column(String(16))
    additions: Mapped[int] = mapped_column(Integer, default=0)
    deletions: Mapped[int] = mapped_column(Integer, default=0)
    changes: Mapped[int] = mapped_column(Integer, default=0)
    patch: Mapped[str | None] = mapped_column(Text(), default=None)
    previous_filename: Mapped[str | None] = mapped_column(String(1024), default=None)


class RepositoryOverview(Base):
    """Counts derived from the primary tables for list views."""

    __tablename__ = "repository_overviews"

    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE"), primary_key=True
    )
    open_pull_request_count: Mapped[int] = mapped_column(Integer, default=0)
    open_issue_count: Mapped[int] = mapped_column(Integer, default=0)
    failing_check_run_count: Mapped[int] = mapped_column(Integer, default=0)
    refreshed_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class DeadLetter(Base):
    """Write-once record of a payload the pipeline could not process."""

    __tablename__ = "dead_letters"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[str] = mapped_column(String(255), unique=True)
    reason: Mapped[str] = mapped_column(Text())
    payload_json: Mapped[str] = mapped_column(Text())
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class SyncJob(Base):
    """Persisted progress of one bootstrap run."""

    __tablename__ = "sync_jobs"
    __table_args__ = (
        Index("ix_sync_jobs_installation_state", "installation_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    lock_key: Mapped[str] = mapped_column(String(255), unique=True)
    installation_id: Mapped[int] = mapped_column(BigInteger)
    repository_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_REPOSITORY_FK, ondelete="CASCADE")
    )
    state: Mapped[str] = mapped_column(String(16), default=SyncJobState.PENDING)
    stage: Mapped[str | None] = mapped_column(String(32), default=None)
    cursor: Mapped[str | None] = mapped_column(String(64), default=None)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)
    current_step: Mapped[str | None] = mapped_column(String(64), default=None)
    completed_steps: Mapped[list[str]] = mapped_column(JSON, default=list)
    items_fetched: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class InstallationCredential(Base):
    """Installation-scoped access token maintained by the auth subsystem."""

    __tablename__ = "installation_credentials"

    installation_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False
    )
    token: Mapped[str] = mapped_column(Text())
    expires_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())


class UserCredential(Base):
    """User-linked access token from the legacy connect flow."""

    __tablename__ = "user_credentials"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    token: Mapped[str] = mapped_column(Text())
    expires_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())


def lock_key_for(installation_id: int, repository_id: int) -> str:
    """Return the lock key serialising bootstrap runs for a repository."""
    return f"repo-bootstrap:{installation_id}:{repository_id}"


async def init_projection_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
