"""Typed shapes for the GitHub REST resources mirrored by ghmirror.

Only the fields the projection needs are declared; msgspec ignores the rest
of each payload. Fields GitHub documents as optional or nullable carry
defaults so that a missing key validates, while a present key with the wrong
type still fails and is dead-lettered by the lenient decoder.
"""

from __future__ import annotations

import dataclasses
import typing as typ

import msgspec


class SimpleUser(msgspec.Struct, frozen=True):
    """Embedded user reference (author, actor, assignee)."""

    id: int
    login: str
    avatar_url: str | None = None
    site_admin: bool = False
    type: str = "User"


class BranchCommit(msgspec.Struct, frozen=True):
    """Commit pointer embedded in a branch listing."""

    sha: str


class Branch(msgspec.Struct, frozen=True):
    """Entry of ``GET /repos/{owner}/{repo}/branches``."""

    name: str
    commit: BranchCommit
    protected: bool = False


class GitRef(msgspec.Struct, frozen=True):
    """Base or head reference of a pull request."""

    ref: str
    sha: str


class PullRequestLabel(msgspec.Struct, frozen=True):
    """Label object attached to a pull request."""

    name: str


class PullRequestSimple(msgspec.Struct, frozen=True):
    """Entry of ``GET /repos/{owner}/{repo}/pulls``."""

    id: int
    number: int
    state: str
    title: str
    base: GitRef
    head: GitRef
    body: str | None = None
    draft: bool | None = None
    user: SimpleUser | None = None
    labels: list[PullRequestLabel] = msgspec.field(default_factory=list)
    assignees: list[SimpleUser] | None = None
    requested_reviewers: list[SimpleUser] | None = None
    merged_at: str | None = None
    closed_at: str | None = None
    updated_at: str | None = None


class IssueLabel(msgspec.Struct, frozen=True):
    """Label object attached to an issue; the name may be absent."""

    name: str | None = None


class Issue(msgspec.Struct, frozen=True):
    """Entry of ``GET /repos/{owner}/{repo}/issues``.

    The issues listing also returns pull requests; those carry a
    ``pull_request`` object and are filtered out by the transformer.
    """

    id: int
    number: int
    state: str
    title: str
    body: str | None = None
    user: SimpleUser | None = None
    labels: list[str | IssueLabel] = msgspec.field(default_factory=list)
    assignees: list[SimpleUser] | None = None
    comments: int = 0
    closed_at: str | None = None
    updated_at: str | None = None
    pull_request: dict[str, typ.Any] | None = None


class GitSignature(msgspec.Struct, frozen=True):
    """Git-level author or committer signature."""

    name: str | None = None
    email: str | None = None
    date: str | None = None


class CommitDetail(msgspec.Struct, frozen=True):
    """The ``commit`` object nested in a commit listing entry."""

    message: str
    author: GitSignature | None = None
    committer: GitSignature | None = None


class Commit(msgspec.Struct, frozen=True):
    """Entry of ``GET /repos/{owner}/{repo}/commits``.

    ``author`` and ``committer`` are GitHub accounts and may be ``null`` or an
    empty object when the commit email is not linked to an account, so they
    stay loosely typed here.
    """

    sha: str
    commit: CommitDetail
    author: dict[str, typ.Any] | None = None
    committer: dict[str, typ.Any] | None = None


class CheckRun(msgspec.Struct, frozen=True):
    """Entry of the ``check_runs`` array for a commit ref."""

    id: int
    name: str
    head_sha: str
    status: str
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class WorkflowRun(msgspec.Struct, frozen=True):
    """Entry of the ``workflow_runs`` array for a repository."""

    id: int
    workflow_id: int
    run_number: int
    event: str
    head_sha: str
    created_at: str
    updated_at: str
    name: str | None = None
    run_attempt: int | None = None
    status: str | None = None
    conclusion: str | None = None
    head_branch: str | None = None
    actor: SimpleUser | None = None
    html_url: str | None = None


class WorkflowJob(msgspec.Struct, frozen=True):
    """Entry of the ``jobs`` array for a workflow run."""

    id: int
    run_id: int
    name: str
    status: str
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    runner_name: str | None = None
    steps: list[dict[str, typ.Any]] | None = None


PullRequestFileStatus = typ.Literal[
    "added", "removed", "modified", "renamed", "copied", "changed", "unchanged"
]


class PullRequestFile(msgspec.Struct, frozen=True):
    """Entry of ``GET /repos/{owner}/{repo}/pulls/{number}/files``."""

    filename: str
    status: PullRequestFileStatus
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None
    previous_filename: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class SkippedItem:
    """Page element that failed validation, kept for dead-lettering."""

    index: int
    raw: str
    error: str


@dataclasses.dataclass(frozen=True, slots=True)
class LenientPage[T]:
    """Result of decoding one page element by element."""

    items: list[T]
    skipped: list[SkippedItem] = dataclasses.field(default_factory=list)

    @property
    def raw_count(self) -> int:
        """Number of entries GitHub returned, accepted or not."""
        return len(self.items) + len(self.skipped)

    @classmethod
    def empty(cls) -> LenientPage[T]:
        """Return a page with no entries."""
        return cls(items=[])
