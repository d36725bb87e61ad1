# Conversations - per-thread state so the agent knows when to stop replying.
# Created: 2026-02-23

from peerclaw.conversations.models import Conversation, ConversationState, Participant
from peerclaw.conversations.signals import (
    CircularAnalysis,
    Confidence,
    detect_circular,
    is_acknowledgment,
    is_closing_message,
    is_emoji_only,
)
from peerclaw.conversations.tracker import ConversationTracker, RespondDecision

__all__ = [
    "CircularAnalysis",
    "Confidence",
    "Conversation",
    "ConversationState",
    "ConversationTracker",
    "Participant",
    "RespondDecision",
    "detect_circular",
    "is_acknowledgment",
    "is_closing_message",
    "is_emoji_only",
]
