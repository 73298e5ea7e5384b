"""Pure mappings from GitHub REST shapes to projection records.

Every function here is side-effect free apart from registering embedded users
with the :class:`UserCollector` passed in, which a chunk flushes once at the
end of its invocation.
"""

from __future__ import annotations

import dataclasses
import datetime as dt  # noqa: TC003
import typing as typ

import msgspec

from ghmirror.common.time import parse_github_datetime, utcnow

if typ.TYPE_CHECKING:
    from ghmirror.github.models import (
        Branch,
        CheckRun,
        Commit,
        Issue,
        IssueLabel,
        PullRequestFile,
        PullRequestSimple,
        SimpleUser,
        WorkflowJob,
        WorkflowRun,
    )

type StateName = typ.Literal["open", "closed"]
type UserType = typ.Literal["User", "Bot", "Organization"]


@dataclasses.dataclass(frozen=True, slots=True)
class UserRecord:
    """User row content."""

    github_user_id: int
    login: str
    avatar_url: str | None
    site_admin: bool
    type: UserType


@dataclasses.dataclass(frozen=True, slots=True)
class BranchRecord:
    """Branch row content."""

    name: str
    head_sha: str
    protected: bool


@dataclasses.dataclass(frozen=True, slots=True)
class PullRequestRecord:
    """Pull request row content."""

    github_pr_id: int
    number: int
    state: StateName
    draft: bool
    title: str
    body: str | None
    author_user_id: int | None
    assignee_user_ids: list[int]
    requested_reviewer_user_ids: list[int]
    label_names: list[str]
    base_ref_name: str
    head_ref_name: str
    head_sha: str
    merged_at: dt.datetime | None
    closed_at: dt.datetime | None
    github_updated_at: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class IssueRecord:
    """Issue row content."""

    github_issue_id: int
    number: int
    state: StateName
    title: str
    body: str | None
    author_user_id: int | None
    assignee_user_ids: list[int]
    label_names: list[str]
    comment_count: int
    is_pull_request: bool
    closed_at: dt.datetime | None
    github_updated_at: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class CommitRecord:
    """Commit row content; listing entries carry no diff statistics."""

    sha: str
    author_user_id: int | None
    committer_user_id: int | None
    message_headline: str
    authored_at: dt.datetime | None
    committed_at: dt.datetime | None
    additions: int | None = None
    deletions: int | None = None
    changed_files: int | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class CheckRunRecord:
    """Check run row content."""

    github_check_run_id: int
    name: str
    head_sha: str
    status: str
    conclusion: str | None
    started_at: dt.datetime | None
    completed_at: dt.datetime | None


@dataclasses.dataclass(frozen=True, slots=True)
class WorkflowRunRecord:
    """Workflow run row content."""

    github_run_id: int
    workflow_id: int
    workflow_name: str | None
    run_number: int
    run_attempt: int
    event: str
    status: str | None
    conclusion: str | None
    head_branch: str | None
    head_sha: str
    actor_user_id: int | None
    html_url: str | None
    github_created_at: dt.datetime
    github_updated_at: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class WorkflowJobRecord:
    """Workflow job row content."""

    github_job_id: int
    github_run_id: int
    name: str
    status: str
    conclusion: str | None
    started_at: dt.datetime | None
    completed_at: dt.datetime | None
    runner_name: str | None
    steps_json: str | None


@dataclasses.dataclass(frozen=True, slots=True)
class PullRequestFileRecord:
    """Pull request file row content."""

    pull_request_number: int
    head_sha: str
    filename: str
    status: str
    additions: int
    deletions: int
    changes: int
    patch: str | None
    previous_filename: str | None


def normalize_user_type(value: object) -> UserType:
    """Map GitHub account types onto the three the projection stores."""
    if value == "Bot":
        return "Bot"
    if value == "Organization":
        return "Organization"
    return "User"


def coerce_state(value: object) -> StateName:
    """Return ``open`` for ``"open"`` and ``closed`` for anything else."""
    return "open" if value == "open" else "closed"


def label_names(labels: typ.Iterable[str | IssueLabel]) -> list[str]:
    """Normalise bare-string and object labels to a list of names."""
    names: list[str] = []
    for label in labels:
        if isinstance(label, str):
            names.append(label)
        elif label.name:
            names.append(label.name)
    return names


def message_headline(message: str) -> str:
    """Return the first line of a commit message."""
    return message.split("\n", 1)[0].rstrip("\r")


def _updated_at(value: str | None) -> dt.datetime:
    return parse_github_datetime(value) or utcnow()


class UserCollector:
    """Deduplicate users observed during one chunk invocation.

    The first observation of an external id wins; later observations of the
    same id return the id without replacing the stored record.
    """

    def __init__(self) -> None:
        """Start with no collected users."""
        self._users: dict[int, UserRecord] = {}

    def __len__(self) -> int:
        """Return the number of distinct users collected."""
        return len(self._users)

    def collect(self, user: SimpleUser | dict[str, typ.Any] | None) -> int | None:
        """Register ``user`` and return its external id.

        ``None`` and empty placeholder objects (no ``id``) yield ``None``.
        """
        record = self._to_record(user)
        if record is None:
            return None
        self._users.setdefault(record.github_user_id, record)
        return record.github_user_id

    def collect_many(self, users: typ.Iterable[SimpleUser] | None) -> list[int]:
        """Register each user and return their external ids in order."""
        if users is None:
            return []
        ids: list[int] = []
        for user in users:
            user_id = self.collect(user)
            if user_id is not None:
                ids.append(user_id)
        return ids

    def flush(self) -> list[UserRecord]:
        """Return the collected records and reset the collector."""
        records = list(self._users.values())
        self._users.clear()
        return records

    @staticmethod
    def _to_record(
        user: SimpleUser | dict[str, typ.Any] | None,
    ) -> UserRecord | None:
        match user:
            case None:
                return None
            case dict():
                user_id = user.get("id")
                login = user.get("login")
                if not isinstance(user_id, int) or not isinstance(login, str):
                    return None
                avatar_url = user.get("avatar_url")
                return UserRecord(
                    github_user_id=user_id,
                    login=login,
                    avatar_url=avatar_url if isinstance(avatar_url, str) else None,
                    site_admin=user.get("site_admin") is True,
                    type=normalize_user_type(user.get("type")),
                )
            case _:
                return UserRecord(
                    github_user_id=user.id,
                    login=user.login,
                    avatar_url=user.avatar_url,
                    site_admin=user.site_admin,
                    type=normalize_user_type(user.type),
                )


def branch_record(branch: Branch) -> BranchRecord:
    """Map a branch listing entry."""
    return BranchRecord(
        name=branch.name,
        head_sha=branch.commit.sha,
        protected=branch.protected,
    )


def pull_request_record(
    pr: PullRequestSimple, users: UserCollector
) -> PullRequestRecord:
    """Map a pull request listing entry, collecting its people."""
    return PullRequestRecord(
        github_pr_id=pr.id,
        number=pr.number,
        state=coerce_state(pr.state),
        draft=bool(pr.draft),
        title=pr.title,
        body=pr.body,
        author_user_id=users.collect(pr.user),
        assignee_user_ids=users.collect_many(pr.assignees),
        requested_reviewer_user_ids=users.collect_many(pr.requested_reviewers),
        label_names=[label.name for label in pr.labels],
        base_ref_name=pr.base.ref,
        head_ref_name=pr.head.ref,
        head_sha=pr.head.sha,
        merged_at=parse_github_datetime(pr.merged_at),
        closed_at=parse_github_datetime(pr.closed_at),
        github_updated_at=_updated_at(pr.updated_at),
    )


def is_pull_request_issue(issue: Issue) -> bool:
    """Return ``True`` when an issues listing entry is really a pull request."""
    return issue.pull_request is not None


def issue_record(issue: Issue, users: UserCollector) -> IssueRecord:
    """Map an issue listing entry, collecting its people."""
    return IssueRecord(
        github_issue_id=issue.id,
        number=issue.number,
        state=coerce_state(issue.state),
        title=issue.title,
        body=issue.body,
        author_user_id=users.collect(issue.user),
        assignee_user_ids=users.collect_many(issue.assignees),
        label_names=label_names(issue.labels),
        comment_count=issue.comments,
        is_pull_request=is_pull_request_issue(issue),
        closed_at=parse_github_datetime(issue.closed_at),
        github_updated_at=_updated_at(issue.updated_at),
    )


def commit_record(commit: Commit, users: UserCollector) -> CommitRecord:
    """Map a commit listing entry, collecting linked accounts."""
    detail = commit.commit
    return CommitRecord(
        sha=commit.sha,
        author_user_id=users.collect(commit.author),
        committer_user_id=users.collect(commit.committer),
        message_headline=message_headline(detail.message),
        authored_at=parse_github_datetime(
            detail.author.date if detail.author else None
        ),
        committed_at=parse_github_datetime(
            detail.committer.date if detail.committer else None
        ),
    )


def check_run_record(run: CheckRun) -> CheckRunRecord:
    """Map a check run entry."""
    return CheckRunRecord(
        github_check_run_id=run.id,
        name=run.name,
        head_sha=run.head_sha,
        status=run.status,
        conclusion=run.conclusion,
        started_at=parse_github_datetime(run.started_at),
        completed_at=parse_github_datetime(run.completed_at),
    )


def workflow_run_record(run: WorkflowRun, users: UserCollector) -> WorkflowRunRecord:
    """Map a workflow run entry, collecting its actor."""
    return WorkflowRunRecord(
        github_run_id=run.id,
        workflow_id=run.workflow_id,
        workflow_name=run.name,
        run_number=run.run_number,
        run_attempt=run.run_attempt if run.run_attempt is not None else 1,
        event=run.event,
        status=run.status,
        conclusion=run.conclusion,
        head_branch=run.head_branch,
        head_sha=run.head_sha,
        actor_user_id=users.collect(run.actor),
        html_url=run.html_url,
        github_created_at=_updated_at(run.created_at),
        github_updated_at=_updated_at(run.updated_at),
    )


def workflow_job_record(job: WorkflowJob) -> WorkflowJobRecord:
    """Map a workflow job entry; steps are kept as a JSON document."""
    return WorkflowJobRecord(
        github_job_id=job.id,
        github_run_id=job.run_id,
        name=job.name,
        status=job.status,
        conclusion=job.conclusion,
        started_at=parse_github_datetime(job.started_at),
        completed_at=parse_github_datetime(job.completed_at),
        runner_name=job.runner_name,
        steps_json=(
            msgspec.json.encode(job.steps).decode("utf-8")
            if job.steps is not None
            else None
        ),
    )


def pull_request_file_record(
    file: PullRequestFile, *, pull_request_number: int, head_sha: str
) -> PullRequestFileRecord:
    """Map a pull request file entry for the given head SHA."""
    return PullRequestFileRecord(
        pull_request_number=pull_request_number,
        head_sha=head_sha,
        filename=file.filename,
        status=file.status,
        additions=file.additions,
        deletions=file.deletions,
        changes=file.changes,
        patch=file.patch,
        previous_filename=file.previous_filename,
    )
