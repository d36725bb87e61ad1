# Conversation models - per-thread state for deciding whether to reply again.
# Created: 2026-02-23

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConversationState(str, Enum):
    """Conversation lifecycle. CONCLUDED is terminal."""

    ACTIVE = "active"
    AWAITING_RESPONSE = "awaiting_response"
    CONCLUDED = "concluded"


@dataclass
class Participant:
    """Activity of one other party in a conversation (epoch seconds)."""

    id: str
    reply_count: int = 0
    first_reply_at: float = 0.0
    last_reply_at: float = 0.0
    disengaged: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "reply_count": self.reply_count,
            "first_reply_at": self.first_reply_at,
            "last_reply_at": self.last_reply_at,
            "disengaged": self.disengaged,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Participant:
        return cls(
            id=data["id"],
            reply_count=data.get("reply_count", 0),
            first_reply_at=data.get("first_reply_at", 0.0),
            last_reply_at=data.get("last_reply_at", 0.0),
            disengaged=data.get("disengaged", False),
        )


@dataclass
class Conversation:
    """Tracked conversation, keyed by (platform, thread root or issue id).

    Attributes:
        platform: "social" or "code_host"
        conversation_id: Thread root URI, or "owner/repo#N" on the code host
        state: Current lifecycle state
        participants: Other parties, keyed by handle/login
        our_reply_count: Replies we have posted here
        our_last_reply_at: When we last replied
        our_last_reply_uri: Where we last replied
        depth: Deepest reply depth observed
        conclusion_reason: Why it was concluded
        work_linked: Tied to ongoing collaborative work; exempt from reply-count pressure
        created_at: First observed
        last_activity_at: Most recent inbound or outbound message
    """

    platform: str
    conversation_id: str
    state: ConversationState = ConversationState.ACTIVE
    participants: dict[str, Participant] = field(default_factory=dict)
    our_reply_count: int = 0
    our_last_reply_at: float | None = None
    our_last_reply_uri: str | None = None
    depth: int = 0
    conclusion_reason: str | None = None
    work_linked: bool = False
    created_at: float = 0.0
    last_activity_at: float = 0.0

    @property
    def concluded(self) -> bool:
        return self.state == ConversationState.CONCLUDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "conversation_id": self.conversation_id,
            "state": self.state.value,
            "participants": {k: p.to_dict() for k, p in self.participants.items()},
            "our_reply_count": self.our_reply_count,
            "our_last_reply_at": self.our_last_reply_at,
            "our_last_reply_uri": self.our_last_reply_uri,
            "depth": self.depth,
            "conclusion_reason": self.conclusion_reason,
            "work_linked": self.work_linked,
            "created_at": self.created_at,
            "last_activity_at": self.last_activity_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        return cls(
            platform=data["platform"],
            conversation_id=data["conversation_id"],
            state=ConversationState(data.get("state", "active")),
            participants={
                k: Participant.from_dict(p) for k, p in data.get("participants", {}).items()
            },
            our_reply_count=data.get("our_reply_count", 0),
            our_last_reply_at=data.get("our_last_reply_at"),
            our_last_reply_uri=data.get("our_last_reply_uri"),
            depth=data.get("depth", 0),
            conclusion_reason=data.get("conclusion_reason"),
            work_linked=data.get("work_linked", False),
            created_at=data.get("created_at", 0.0),
            last_activity_at=data.get("last_activity_at", 0.0),
        )
