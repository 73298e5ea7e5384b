"""In-memory GitHub REST API served through ``httpx.MockTransport``."""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx

from ghmirror.github.client import GitHubRestClient, GitHubRestConfig

FAKE_API_URL = "https://api.github.test"

type Payload = dict[str, typ.Any]


def make_user(user_id: int, login: str | None = None) -> Payload:
    """Return a user reference as embedded in listings."""
    return {
        "id": user_id,
        "login": login or f"user{user_id}",
        "avatar_url": f"https://avatars.example.test/{user_id}",
        "site_admin": False,
        "type": "User",
    }


def make_branch(name: str, sha: str = "a" * 40) -> Payload:
    """Return a branch listing entry."""
    return {"name": name, "commit": {"sha": sha}, "protected": name == "main"}


def make_pr(
    number: int,
    *,
    author: Payload | None = None,
    state: str = "open",
    head_sha: str | None = None,
) -> Payload:
    """Return a pull request listing entry."""
    return {
        "id": 10_000 + number,
        "number": number,
        "state": state,
        "title": f"Change {number}",
        "body": None,
        "draft": False,
        "user": author if author is not None else make_user(1, "octocat"),
        "labels": [{"name": "enhancement"}],
        "assignees": [],
        "requested_reviewers": [],
        "base": {"ref": "main", "sha": "b" * 40},
        "head": {"ref": f"feature-{number}", "sha": head_sha or f"{number:040x}"},
        "merged_at": None,
        "closed_at": None,
        "updated_at": "2024-07-10T10:00:00Z",
    }


def make_issue(
    number: int, *, pull_request: bool = False, author: Payload | None = None
) -> Payload:
    """Return an issues listing entry; ``pull_request`` marks a PR in disguise."""
    payload: Payload = {
        "id": 20_000 + number,
        "number": number,
        "state": "open",
        "title": f"Issue {number}",
        "body": "details",
        "user": author if author is not None else make_user(2, "hubot"),
        "labels": ["bug", {"name": "triage"}],
        "assignees": [],
        "comments": 3,
        "closed_at": None,
        "updated_at": "2024-07-11T09:30:00Z",
    }
    if pull_request:
        payload["pull_request"] = {"url": f"{FAKE_API_URL}/pulls/{number}"}
    return payload


def make_commit(sha: str, *, author: Payload | None = None) -> Payload:
    """Return a commit listing entry."""
    return {
        "sha": sha,
        "commit": {
            "message": f"Commit {sha[:7]}\n\nLonger description",
            "author": {"name": "Octo", "date": "2024-07-09T08:00:00Z"},
            "committer": {"name": "Octo", "date": "2024-07-09T08:05:00Z"},
        },
        "author": author,
        "committer": {},
    }


def make_check_run(
    run_id: int, head_sha: str, *, conclusion: str | None = "success"
) -> Payload:
    """Return an entry of the ``check_runs`` array."""
    return {
        "id": run_id,
        "name": f"ci-{run_id}",
        "head_sha": head_sha,
        "status": "completed" if conclusion else "in_progress",
        "conclusion": conclusion,
        "started_at": "2024-07-10T10:00:00Z",
        "completed_at": "2024-07-10T10:05:00Z" if conclusion else None,
    }


def make_workflow_run(
    run_id: int, *, status: str = "completed", conclusion: str | None = "success"
) -> Payload:
    """Return an entry of the ``workflow_runs`` array."""
    return {
        "id": run_id,
        "name": "CI",
        "workflow_id": 7,
        "run_number": run_id,
        "event": "push",
        "status": status,
        "conclusion": conclusion,
        "head_branch": "main",
        "head_sha": "c" * 40,
        "actor": make_user(3, "ci-bot"),
        "html_url": f"https://github.test/octo/reef/actions/runs/{run_id}",
        "created_at": "2024-07-10T10:00:00Z",
        "updated_at": "2024-07-10T10:10:00Z",
    }


def make_job(job_id: int, run_id: int) -> Payload:
    """Return an entry of the ``jobs`` array."""
    return {
        "id": job_id,
        "run_id": run_id,
        "name": "build",
        "status": "completed",
        "conclusion": "success",
        "started_at": "2024-07-10T10:01:00Z",
        "completed_at": "2024-07-10T10:04:00Z",
        "runner_name": "runner-1",
        "steps": [{"name": "checkout", "status": "completed", "number": 1}],
    }


def make_file(filename: str, *, status: str = "modified") -> Payload:
    """Return a pull request file entry."""
    return {
        "filename": filename,
        "status": status,
        "additions": 3,
        "deletions": 1,
        "changes": 4,
        "patch": "@@ -1 +1 @@",
    }


@dataclasses.dataclass
class FakeGitHub:
    """Serve canned listings for one repository.

    ``commits`` set to ``None`` answers the commits listing with 409, the
    response GitHub gives for a repository without commits. ``failures`` maps
    a request path to a status code returned instead of data. ``page_failures``
    does the same for one page of a paginated listing.
    """

    branches: list[Payload] = dataclasses.field(default_factory=list)
    pulls: list[Payload] = dataclasses.field(default_factory=list)
    issues: list[Payload] = dataclasses.field(default_factory=list)
    commits: list[Payload] | None = dataclasses.field(default_factory=list)
    check_runs: dict[str, list[Payload]] = dataclasses.field(default_factory=dict)
    workflow_runs: list[Payload] = dataclasses.field(default_factory=list)
    jobs: dict[int, list[Payload]] = dataclasses.field(default_factory=dict)
    files: dict[int, list[Payload]] = dataclasses.field(default_factory=dict)
    failures: dict[str, int] = dataclasses.field(default_factory=dict)
    page_failures: dict[tuple[str, int], int] = dataclasses.field(
        default_factory=dict
    )
    requests: list[httpx.Request] = dataclasses.field(default_factory=list)

    def requests_for(self, suffix: str) -> list[httpx.Request]:
        """Return recorded requests whose path ends with ``suffix``."""
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    @staticmethod
    def _page(items: list[Payload], request: httpx.Request) -> list[Payload]:
        page = int(request.url.params.get("page", "1"))
        per_page = int(request.url.params.get("per_page", "30"))
        start = (page - 1) * per_page
        return items[start : start + per_page]

    def handler(self, request: httpx.Request) -> httpx.Response:  # noqa: PLR0911
        """Answer ``request`` from the canned listings."""
        self.requests.append(request)
        path = request.url.path
        if path in self.failures:
            return httpx.Response(self.failures[path], json={"message": "failure"})
        page = int(request.url.params.get("page", "1"))
        if (path, page) in self.page_failures:
            return httpx.Response(
                self.page_failures[path, page], json={"message": "failure"}
            )

        match path.strip("/").split("/")[3:]:
            case ["branches"]:
                return httpx.Response(200, json=self._page(self.branches, request))
            case ["pulls"]:
                return httpx.Response(200, json=self._page(self.pulls, request))
            case ["issues"]:
                return httpx.Response(200, json=self._page(self.issues, request))
            case ["commits"]:
                if self.commits is None:
                    return httpx.Response(
                        409, json={"message": "Git Repository is empty."}
                    )
                return httpx.Response(200, json=self._page(self.commits, request))
            case ["commits", sha, "check-runs"]:
                runs = self.check_runs.get(sha, [])
                return httpx.Response(
                    200, json={"total_count": len(runs), "check_runs": runs}
                )
            case ["actions", "runs"]:
                return httpx.Response(
                    200,
                    json={
                        "total_count": len(self.workflow_runs),
                        "workflow_runs": self.workflow_runs,
                    },
                )
            case ["actions", "runs", run_id, "jobs"]:
                jobs = self.jobs.get(int(run_id), [])
                return httpx.Response(
                    200, json={"total_count": len(jobs), "jobs": jobs}
                )
            case ["pulls", number, "files"]:
                files = self.files.get(int(number), [])
                return httpx.Response(200, json=self._page(files, request))
            case _:
                return httpx.Response(404, json={"message": "Not Found"})

    def http_client(self) -> httpx.AsyncClient:
        """Return an ``httpx`` client routed to this fake."""
        return httpx.AsyncClient(
            base_url=FAKE_API_URL, transport=httpx.MockTransport(self.handler)
        )

    def rest_client(self) -> GitHubRestClient:
        """Return a REST client routed to this fake."""
        return GitHubRestClient(
            GitHubRestConfig(token="test-token", base_url=FAKE_API_URL),
            http_client=self.http_client(),
        )
