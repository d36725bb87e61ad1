"""Pytest configuration and in-memory collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from peerclaw.collaborators import (
    ActionReport,
    CodeHostNotification,
    CodingAgentResult,
    GenerationResult,
    Issue,
    IssueComment,
    PostRef,
    PullRequest,
    Result,
    SocialNotification,
    ThreadMessage,
)
from peerclaw.config import Settings
from peerclaw.plans import ParsedPlan, PlanTask, format_plan


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.peerclaw."""
    home = tmp_path / "peerclaw-home"
    monkeypatch.setenv("PEERCLAW_HOME", str(home))
    return home


@pytest.fixture
def settings(tmp_path):
    return Settings(
        agent_name="alpha",
        code_host_login="alpha",
        social_handle="alpha.social",
        peers=["beta"],
        watched_repos=["acme/widgets"],
        version_url="https://example.test/version.json",
    )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def plan_body(tasks: list[PlanTask], title: str = "Add rate limiting") -> str:
    return format_plan(ParsedPlan(title=title, goal="Protect the API.", tasks=tasks))


def plan_issue(number: int, tasks: list[PlanTask], author: str = "owner") -> Issue:
    title = "[PLAN] Add rate limiting"
    return Issue(
        number=number,
        title=title,
        body=plan_body(tasks),
        labels=["plan"],
        author=author,
        url=f"https://code.test/acme/widgets/issues/{number}",
    )


# ---------------------------------------------------------------------------
# Code host
# ---------------------------------------------------------------------------


class FakeCodeHost:
    """Issues, comments and PRs kept in dicts. Every body write is visible to the next read."""

    def __init__(self):
        self.issues: dict[tuple[str, str, int], Issue] = {}
        self.comments: dict[tuple[str, str, int], list[IssueComment]] = {}
        self.pulls: dict[tuple[str, str], list[PullRequest]] = {}
        self.notifications: list[CodeHostNotification] = []
        self.reviewers: list[tuple[int, list[str]]] = []
        self.assignee_calls: list[tuple[str, int, str]] = []
        self.created_issues: list[Issue] = []
        self.fail: set[str] = set()
        self.on_update = None  # hook(owner, repo, number) run after a body write

    def add_issue(self, owner: str, repo: str, issue: Issue) -> Issue:
        self.issues[(owner, repo, issue.number)] = issue
        return issue

    def body(self, owner: str, repo: str, number: int) -> str:
        return self.issues[(owner, repo, number)].body

    def comment_bodies(self, owner: str, repo: str, number: int) -> list[str]:
        return [c.body for c in self.comments.get((owner, repo, number), [])]

    def _copy(self, issue: Issue) -> Issue:
        return Issue(
            number=issue.number,
            title=issue.title,
            body=issue.body,
            state=issue.state,
            labels=list(issue.labels),
            assignees=list(issue.assignees),
            author=issue.author,
            url=issue.url,
        )

    async def list_issues(self, owner, repo, state="open", labels=None):
        if "list_issues" in self.fail:
            return Result.fail("boom")
        found = [
            self._copy(i)
            for (o, r, _), i in sorted(self.issues.items())
            if o == owner and r == repo and (state == "all" or i.state == state)
            and (not labels or set(labels) <= set(i.labels))
        ]
        return Result.ok(found)

    async def get_issue(self, owner, repo, number):
        issue = self.issues.get((owner, repo, number))
        if issue is None or "get_issue" in self.fail:
            return Result.fail("not found")
        return Result.ok(self._copy(issue))

    async def create_issue(self, owner, repo, title, body, labels=None):
        if "create_issue" in self.fail:
            return Result.fail("create failed")
        number = max([n for (o, r, n) in self.issues if o == owner and r == repo], default=0) + 1
        issue = Issue(
            number=number,
            title=title,
            body=body,
            labels=list(labels or []),
            url=f"https://code.test/{owner}/{repo}/issues/{number}",
        )
        self.issues[(owner, repo, number)] = issue
        self.created_issues.append(issue)
        return Result.ok(self._copy(issue))

    async def update_issue(self, owner, repo, number, *, body=None, state=None, labels=None):
        if "update_issue" in self.fail:
            return Result.fail("write failed")
        issue = self.issues[(owner, repo, number)]
        if body is not None:
            issue.body = body
        if state is not None:
            issue.state = state
        if labels is not None:
            issue.labels = list(labels)
        if body is not None and self.on_update is not None:
            self.on_update(owner, repo, number)
        return Result.ok(self._copy(issue))

    async def create_comment(self, owner, repo, number, body):
        if "create_comment" in self.fail:
            return Result.fail("comment failed")
        self.comments.setdefault((owner, repo, number), []).append(IssueComment("alpha", body))
        return Result.ok({"id": len(self.comments[(owner, repo, number)])})

    async def get_issue_comments(self, owner, repo, number):
        return Result.ok(list(self.comments.get((owner, repo, number), [])))

    async def add_assignee(self, owner, repo, number, login):
        self.assignee_calls.append(("add", number, login))
        return Result.ok()

    async def remove_assignee(self, owner, repo, number, login):
        self.assignee_calls.append(("remove", number, login))
        return Result.ok()

    async def list_pull_requests(self, owner, repo, state="open"):
        if "list_pull_requests" in self.fail:
            return Result.fail("pr list failed")
        prs = self.pulls.get((owner, repo), [])
        return Result.ok([p for p in prs if state == "all" or p.state == state])

    async def create_pull_request(self, owner, repo, title, body, head, base="main"):
        if "create_pull_request" in self.fail:
            return Result.fail("pr failed")
        prs = self.pulls.setdefault((owner, repo), [])
        pr = PullRequest(
            number=100 + len(prs),
            title=title,
            head_ref=head,
            url=f"https://code.test/{owner}/{repo}/pull/{100 + len(prs)}",
        )
        prs.append(pr)
        return Result.ok(pr)

    async def request_reviewers(self, owner, repo, number, reviewers):
        self.reviewers.append((number, list(reviewers)))
        return Result.ok()

    async def merge_pull_request(self, owner, repo, number):
        return Result.ok()

    async def create_review(self, owner, repo, number, body, event="COMMENT"):
        return Result.ok()

    async def list_notifications(self):
        return Result.ok(list(self.notifications))


@pytest.fixture
def code_host():
    return FakeCodeHost()


# ---------------------------------------------------------------------------
# Local repository
# ---------------------------------------------------------------------------


@dataclass
class FakeRepoOps:
    """Scripted git. Each gate reads one attribute."""

    head: str | None = None  # None: HEAD follows the last created/checked-out branch
    commits: list[str] = field(default_factory=lambda: ["abc1234 Add limiter"])
    files: list[str] = field(default_factory=lambda: ["api/middleware.py"])
    tests_ok: bool = True
    tests_output: str = "3 passed"
    push_ok: bool = True
    on_remote: bool = True
    clone_ok: bool = True
    remote_branches: list[str] = field(default_factory=list)
    calls: list[tuple] = field(default_factory=list)
    _current: str = "main"

    async def clone(self, owner, repo, dest: Path):
        self.calls.append(("clone", owner, repo))
        return Result.ok() if self.clone_ok else Result.fail("clone failed")

    async def create_branch(self, path, branch):
        self.calls.append(("create_branch", branch))
        self._current = branch
        return Result.ok()

    async def checkout(self, path, branch):
        self.calls.append(("checkout", branch))
        self._current = branch
        return Result.ok()

    async def current_branch(self, path):
        return Result.ok(self.head or self._current)

    async def commits_ahead(self, path, base="main"):
        return Result.ok(list(self.commits))

    async def changed_files(self, path, base="main"):
        return Result.ok(list(self.files))

    async def diff_shortstat(self, path, base="main"):
        return Result.ok("1 file changed, 10 insertions(+)")

    async def push(self, path, branch):
        self.calls.append(("push", branch))
        return Result.ok() if self.push_ok else Result.fail("rejected")

    async def verify_remote_branch(self, path, branch):
        return Result.ok(self.on_remote)

    async def list_remote_branches(self, path):
        return Result.ok(list(self.remote_branches))

    async def run_tests(self, path, timeout):
        self.calls.append(("run_tests",))
        return Result.ok(self.tests_output) if self.tests_ok else Result.fail("2 failed")

    @property
    def pushed(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "push"]


@pytest.fixture
def repo_ops():
    return FakeRepoOps()


# ---------------------------------------------------------------------------
# Agents + social
# ---------------------------------------------------------------------------


class FakeCodingAgent:
    def __init__(self, result: CodingAgentResult | None = None):
        self.result = result or CodingAgentResult(success=True, output="done")
        self.prompts: list[tuple[str, Path]] = []

    async def run(self, prompt, workspace_path):
        self.prompts.append((prompt, workspace_path))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def coding_agent():
    return FakeCodingAgent()


class FakeSocial:
    def __init__(self):
        self.notifications: list[SocialNotification] = []
        self.threads: dict[str, list[ThreadMessage]] = {}
        self.posts: list[str] = []
        self.likes: list[PostRef] = []
        self.refresh_result: Result = Result.ok()

    async def post_text(self, text):
        self.posts.append(text)
        return Result.ok({"uri": f"at://alpha/post/{len(self.posts)}"})

    async def reply(self, text, parent):
        self.posts.append(text)
        return Result.ok({"uri": f"at://alpha/reply/{len(self.posts)}"})

    async def like(self, ref):
        self.likes.append(ref)
        return Result.ok()

    async def list_notifications(self, limit=25):
        return Result.ok(list(self.notifications[:limit]))

    async def get_thread(self, uri):
        if uri not in self.threads:
            return Result.fail("thread not found")
        return Result.ok(list(self.threads[uri]))

    async def refresh_session(self):
        return self.refresh_result


@pytest.fixture
def social():
    return FakeSocial()


class FakeGenerator:
    def __init__(self, result: GenerationResult | None = None):
        self.result = result or GenerationResult(text="")
        self.calls: list[tuple[str, list]] = []

    async def chat_with_tools(self, system, messages, tools):
        self.calls.append((system, messages))
        return self.result


class FakeExecutor:
    def __init__(self, report: ActionReport | None = None):
        self.report = report or ActionReport()
        self.calls: list[dict] = []

    async def execute(self, tool_calls, context):
        self.calls.append(context)
        return self.report


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def executor():
    return FakeExecutor()
