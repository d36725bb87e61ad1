"""
Collaborator contracts.
Created: 2026-02-20

Everything PeerClaw talks to is injected: the social platform, the code host,
local git, the coding agent, the content generator and the tool executor.
Platform clients return ``Result`` objects for ordinary API failures and only
raise ``FatalCollaboratorError`` for credential/auth problems.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a collaborator call."""

    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> Result[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> Result[T]:
        return cls(success=False, error=error)


# ============================================================================
# Social platform
# ============================================================================


@dataclass(frozen=True)
class PostRef:
    uri: str
    cid: str = ""


@dataclass
class SocialNotification:
    """A notification from the social platform.

    ``reason`` is one of reply, mention, quote, like, repost, follow.
    For likes/reposts ``subject_uri`` is the post of ours that was acted on.
    """

    uri: str
    reason: str
    author: str
    text: str = ""
    cid: str = ""
    root_uri: str | None = None
    subject_uri: str | None = None
    created_at: float = 0.0
    depth: int = 0

    @property
    def ref(self) -> PostRef:
        return PostRef(uri=self.uri, cid=self.cid)

    @property
    def conversation_id(self) -> str:
        return self.root_uri or self.uri


@dataclass
class ThreadMessage:
    author: str
    text: str


class SocialClient(Protocol):
    async def post_text(self, text: str) -> Result[dict]: ...

    async def reply(self, text: str, parent: PostRef) -> Result[dict]: ...

    async def like(self, ref: PostRef) -> Result[None]: ...

    async def list_notifications(self, limit: int = 25) -> Result[list[SocialNotification]]: ...

    async def get_thread(self, uri: str) -> Result[list[ThreadMessage]]: ...

    async def refresh_session(self) -> Result[None]: ...


# ============================================================================
# Code host
# ============================================================================


@dataclass
class Issue:
    number: int
    title: str
    body: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    author: str = ""
    url: str = ""


@dataclass
class PullRequest:
    number: int
    title: str
    head_ref: str
    state: str = "open"
    url: str = ""
    author: str = ""


@dataclass
class IssueComment:
    author: str
    body: str
    created_at: float = 0.0


@dataclass
class CodeHostNotification:
    """Activity on an issue or pull request the agent participates in."""

    owner: str
    repo: str
    number: int
    reason: str
    kind: str = "issue"  # "issue" or "pull_request"
    updated_at: float = 0.0

    @property
    def conversation_id(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


class CodeHostClient(Protocol):
    async def list_issues(
        self, owner: str, repo: str, state: str = "open", labels: list[str] | None = None
    ) -> Result[list[Issue]]: ...

    async def get_issue(self, owner: str, repo: str, number: int) -> Result[Issue]: ...

    async def create_issue(
        self, owner: str, repo: str, title: str, body: str, labels: list[str] | None = None
    ) -> Result[Issue]: ...

    async def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        body: str | None = None,
        state: str | None = None,
        labels: list[str] | None = None,
    ) -> Result[Issue]: ...

    async def create_comment(
        self, owner: str, repo: str, number: int, body: str
    ) -> Result[dict]: ...

    async def get_issue_comments(
        self, owner: str, repo: str, number: int
    ) -> Result[list[IssueComment]]: ...

    async def add_assignee(
        self, owner: str, repo: str, number: int, login: str
    ) -> Result[None]: ...

    async def remove_assignee(
        self, owner: str, repo: str, number: int, login: str
    ) -> Result[None]: ...

    async def list_pull_requests(
        self, owner: str, repo: str, state: str = "open"
    ) -> Result[list[PullRequest]]: ...

    async def create_pull_request(
        self, owner: str, repo: str, title: str, body: str, head: str, base: str = "main"
    ) -> Result[PullRequest]: ...

    async def request_reviewers(
        self, owner: str, repo: str, number: int, reviewers: list[str]
    ) -> Result[None]: ...

    async def merge_pull_request(self, owner: str, repo: str, number: int) -> Result[None]: ...

    async def create_review(
        self, owner: str, repo: str, number: int, body: str, event: str = "COMMENT"
    ) -> Result[None]: ...

    async def list_notifications(self) -> Result[list[CodeHostNotification]]: ...


class RepositoryOps(Protocol):
    """Local repository operations (implemented by ``peerclaw.tasks.git.GitCLI``)."""

    async def clone(self, owner: str, repo: str, dest: Path) -> Result[None]: ...

    async def create_branch(self, path: Path, branch: str) -> Result[None]: ...

    async def checkout(self, path: Path, branch: str) -> Result[None]: ...

    async def current_branch(self, path: Path) -> Result[str]: ...

    async def commits_ahead(self, path: Path, base: str = "main") -> Result[list[str]]: ...

    async def changed_files(self, path: Path, base: str = "main") -> Result[list[str]]: ...

    async def diff_shortstat(self, path: Path, base: str = "main") -> Result[str]: ...

    async def push(self, path: Path, branch: str) -> Result[None]: ...

    async def verify_remote_branch(self, path: Path, branch: str) -> Result[bool]: ...

    async def list_remote_branches(self, path: Path) -> Result[list[str]]: ...

    async def run_tests(self, path: Path, timeout: float) -> Result[str]: ...


# ============================================================================
# Agents
# ============================================================================


@dataclass
class CodingAgentResult:
    success: bool
    output: str = ""
    error: str | None = None
    blocked: bool = False
    block_reason: str | None = None


class CodingAgent(Protocol):
    async def run(self, prompt: str, workspace_path: Path) -> CodingAgentResult: ...


@dataclass
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResult:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class ContentGenerator(Protocol):
    async def chat_with_tools(
        self, system: str, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> GenerationResult: ...


@dataclass
class PostedReply:
    uri: str
    text: str
    conversation_id: str


@dataclass
class ActionReport:
    """What the executor did with a batch of tool calls.

    ``direct_actions`` names the commitment types that were already carried
    out synchronously (e.g. ``create_issue``) so promises about them are not
    queued a second time.
    """

    replies: list[PostedReply] = field(default_factory=list)
    posts: list[str] = field(default_factory=list)
    direct_actions: set[str] = field(default_factory=set)
    improvement_request: str | None = None


class ActionExecutor(Protocol):
    async def execute(
        self, tool_calls: list[ToolCall], context: dict[str, Any]
    ) -> ActionReport: ...
