# Commitment models - promises made in replies, queued until fulfilled.
# Created: 2026-02-24

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CommitmentType(str, Enum):
    """Closed set of actions the fulfillment loop knows how to carry out."""

    CREATE_ISSUE = "create_issue"
    CREATE_PLAN = "create_plan"
    COMMENT_ISSUE = "comment_issue"
    POST_SOCIAL = "post_social"


class CommitmentStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (CommitmentStatus.COMPLETED, CommitmentStatus.ABANDONED)


@dataclass
class Commitment:
    """A promise extracted from one of our replies.

    Attributes:
        id: ``commitment-{epoch_ms}-{hash16}``
        description: What we said we'd do
        type: Which fulfiller handles it
        status: Lifecycle status
        source_thread_uri: Conversation the promise was made in
        source_reply_text: The reply text that contained it
        params: Fulfiller payload (title, repo, issue_number, count, ...)
        created_at: Epoch seconds
        attempt_count: Fulfillment attempts so far
        last_attempt_at: Epoch seconds of the last attempt
        error: Last failure message
        result: What the fulfiller produced (issue URL, post URI, ...)
        completed_at: Epoch seconds when it reached a terminal status
    """

    id: str
    description: str
    type: CommitmentType
    source_thread_uri: str
    source_reply_text: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    status: CommitmentStatus = CommitmentStatus.PENDING
    created_at: float = 0.0
    attempt_count: int = 0
    last_attempt_at: float | None = None
    error: str | None = None
    result: dict[str, Any] | None = None
    completed_at: float | None = None

    @property
    def dedup_hash(self) -> str:
        return self.id.rsplit("-", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "type": self.type.value,
            "source_thread_uri": self.source_thread_uri,
            "source_reply_text": self.source_reply_text,
            "params": self.params,
            "status": self.status.value,
            "created_at": self.created_at,
            "attempt_count": self.attempt_count,
            "last_attempt_at": self.last_attempt_at,
            "error": self.error,
            "result": self.result,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Commitment:
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            type=CommitmentType(data["type"]),
            source_thread_uri=data.get("source_thread_uri", ""),
            source_reply_text=data.get("source_reply_text", ""),
            params=data.get("params", {}),
            status=CommitmentStatus(data.get("status", "pending")),
            created_at=data.get("created_at", 0.0),
            attempt_count=data.get("attempt_count", 0),
            last_attempt_at=data.get("last_attempt_at"),
            error=data.get("error"),
            result=data.get("result"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class ExtractedCommitment:
    description: str
    type: CommitmentType
    params: dict[str, Any] = field(default_factory=dict)
