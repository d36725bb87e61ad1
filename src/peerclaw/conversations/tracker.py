"""Conversation State Tracker.

Created: 2026-02-23
Changes:
  - 2026-03-02: Circular detection thresholds come from CircularPolicy.
  - 2026-02-26: Work-linked conversations skip reply-count exit pressure.

State machine per conversation::

    active --(we reply)--> awaiting_response --(non-terminal inbound)--> active
       \\                        |
        +--(close / closing msg / emoji-only / like / circular)--> concluded

``concluded`` is sticky: nothing inbound moves it back. One JSON file per
platform, version-stamped.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from peerclaw.config import CircularPolicy, ConversationPolicy
from peerclaw.conversations.models import Conversation, ConversationState, Participant
from peerclaw.conversations.signals import (
    CircularAnalysis,
    detect_circular,
    is_closing_message,
    is_emoji_only,
)
from peerclaw.state import VersionedStateFile

logger = logging.getLogger(__name__)

STATE_VERSION = 2


@dataclass
class RespondDecision:
    should_respond: bool
    reason: str
    warnings: list[str] = field(default_factory=list)
    circular: CircularAnalysis | None = None


class ConversationTracker:
    """Tracks conversations on one platform and decides whether to reply again."""

    def __init__(
        self,
        path: Path,
        platform: str,
        self_id: str,
        policy: ConversationPolicy | None = None,
        circular_policy: CircularPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.platform = platform
        self.self_id = self_id
        self.policy = policy or ConversationPolicy()
        self.circular_policy = circular_policy or CircularPolicy()
        self.clock = clock
        self._file = VersionedStateFile(path, STATE_VERSION, lambda: {"conversations": {}})
        data = self._file.load()
        self._conversations: dict[str, Conversation] = {
            cid: Conversation.from_dict(c) for cid, c in data.get("conversations", {}).items()
        }

    def _save(self) -> None:
        self._file.save(
            {"conversations": {cid: c.to_dict() for cid, c in self._conversations.items()}}
        )

    def __len__(self) -> int:
        return len(self._conversations)

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def find_by_our_reply(self, uri: str) -> Conversation | None:
        return next(
            (c for c in self._conversations.values() if c.our_last_reply_uri == uri), None
        )

    def track(self, conversation_id: str, *, work_linked: bool = False) -> Conversation:
        conv = self._conversations.get(conversation_id)
        now = self.clock()
        if conv is None:
            conv = Conversation(
                platform=self.platform,
                conversation_id=conversation_id,
                created_at=now,
                last_activity_at=now,
            )
            self._conversations[conversation_id] = conv
        if work_linked and not conv.work_linked:
            conv.work_linked = True
        return conv

    # =========================================================================
    # Transitions
    # =========================================================================

    def record_inbound(
        self, conversation_id: str, author: str, text: str, depth: int | None = None
    ) -> Conversation:
        """Record a message from someone else and apply terminal-signal detection."""
        conv = self.track(conversation_id)
        now = self.clock()
        conv.last_activity_at = now
        if depth is not None:
            conv.depth = max(conv.depth, depth)

        participant = conv.participants.get(author)
        if participant is None:
            participant = Participant(id=author, first_reply_at=now)
            conv.participants[author] = participant
        participant.reply_count += 1
        participant.last_reply_at = now
        participant.disengaged = False

        if conv.concluded:
            self._save()
            return conv

        if is_emoji_only(text):
            self._conclude(conv, "Emoji reaction received")
        elif is_closing_message(text):
            self._conclude(conv, "Closing message received")
        else:
            conv.state = ConversationState.ACTIVE
        self._save()
        return conv

    def record_our_reply(
        self, conversation_id: str, uri: str | None = None, depth: int | None = None
    ) -> Conversation:
        conv = self.track(conversation_id)
        now = self.clock()
        conv.our_reply_count += 1
        conv.our_last_reply_at = now
        conv.our_last_reply_uri = uri
        conv.last_activity_at = now
        if depth is not None:
            conv.depth = max(conv.depth, depth)
        if not conv.concluded:
            conv.state = ConversationState.AWAITING_RESPONSE
        self._save()
        return conv

    def record_like(self, conversation_id: str, author: str | None = None) -> Conversation:
        """Someone liked our post instead of replying; the exchange is over."""
        conv = self.track(conversation_id)
        conv.last_activity_at = self.clock()
        if not conv.concluded:
            who = f" from @{author}" if author else ""
            self._conclude(conv, f"Like received{who} without a reply")
        self._save()
        return conv

    def conclude(self, conversation_id: str, reason: str) -> Conversation:
        conv = self.track(conversation_id)
        if not conv.concluded:
            self._conclude(conv, reason)
            self._save()
        return conv

    def _conclude(self, conv: Conversation, reason: str) -> None:
        conv.state = ConversationState.CONCLUDED
        conv.conclusion_reason = reason
        logger.info("Concluded %s conversation %s: %s", self.platform, conv.conversation_id, reason)

    # =========================================================================
    # Decision
    # =========================================================================

    def should_respond(
        self,
        conversation_id: str,
        *,
        messages: list[tuple[str, str]] | None = None,
        work_linked: bool = False,
    ) -> RespondDecision:
        """Decide whether another reply from us is warranted.

        Args:
            conversation_id: Thread root / issue id.
            messages: Recent (author, text) pairs, oldest first, for circular detection.
            work_linked: The conversation is tied to ongoing work.
        """
        conv = self.track(conversation_id, work_linked=work_linked)
        if conv.concluded:
            return RespondDecision(False, conv.conclusion_reason or "Conversation concluded")

        warnings: list[str] = []
        circular = None
        if messages:
            circular = detect_circular(messages, self.self_id, self.circular_policy)
            if circular.hard_block(self.circular_policy):
                reason = (
                    f"Circular conversation ({circular.pattern}, "
                    f"{circular.confidence.value} confidence)"
                )
                self._conclude(conv, reason)
                self._save()
                return RespondDecision(False, reason, circular=circular)
            if circular.is_circular:
                warnings.append(
                    f"Possible acknowledgment loop: last {circular.recent_messages} messages "
                    "add no new information"
                )

        if not conv.work_linked:
            pressure = self._exit_pressure(conv)
            if pressure:
                self._save()
                return RespondDecision(False, pressure, warnings, circular)

        self._save()
        return RespondDecision(True, "Conversation is active", warnings, circular)

    def _exit_pressure(self, conv: Conversation) -> str | None:
        policy = self.policy
        now = self.clock()

        active = disengaged = 0
        for participant in conv.participants.values():
            if participant.id == self.self_id:
                continue
            if now - participant.last_reply_at < policy.disengaged_after_seconds:
                active += 1
            elif participant.reply_count > 1:
                participant.disengaged = True
                disengaged += 1

        if conv.our_reply_count >= policy.max_our_replies:
            return f"Already replied {conv.our_reply_count} times"
        if conv.depth >= policy.max_depth:
            return f"Thread is {conv.depth} replies deep"
        if active == 0 and disengaged > 0:
            return "Other participants seem to have disengaged"
        if (
            conv.state == ConversationState.AWAITING_RESPONSE
            and conv.our_last_reply_at is not None
            and now - conv.our_last_reply_at > policy.no_response_seconds
        ):
            return "No response to our last reply"
        return None

    # =========================================================================
    # Maintenance
    # =========================================================================

    def prune(self, max_age: float | None = None) -> int:
        """Drop conversations idle for longer than ``max_age`` seconds."""
        max_age = self.policy.prune_after_seconds if max_age is None else max_age
        cutoff = self.clock() - max_age
        stale = [cid for cid, c in self._conversations.items() if c.last_activity_at < cutoff]
        for cid in stale:
            del self._conversations[cid]
        if stale:
            logger.info("Pruned %d %s conversations", len(stale), self.platform)
            self._save()
        return len(stale)
