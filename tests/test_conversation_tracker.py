"""Tests for conversation state tracking and the reply decision."""

import json

import pytest

from peerclaw.config import CircularPolicy
from peerclaw.conversations import (
    Confidence,
    ConversationState,
    ConversationTracker,
    detect_circular,
    is_acknowledgment,
    is_closing_message,
    is_emoji_only,
)

CID = "at://beta/post/1"

GRATITUDE_LOOP = [
    ("beta", "Can you review the PR?"),
    ("alpha", "Thanks, glad to help!"),
    ("beta", "Thank you so much!"),
    ("alpha", "Appreciate it!"),
]


class Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def tracker(tmp_path, clock):
    return ConversationTracker(tmp_path / "conversations.json", "social", "alpha", clock=clock)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


class TestSignals:
    @pytest.mark.parametrize(
        "text", ["Thanks!", "@beta thanks so much!", "great, thanks!", "Take care", "ok \U0001f44d"]
    )
    def test_closing_messages(self, text):
        assert is_closing_message(text)

    @pytest.mark.parametrize(
        "text",
        ["Thanks! But what about the config?", "Thanks, can you look at #12", "x" * 100, ""],
    )
    def test_not_closing(self, text):
        assert not is_closing_message(text)

    def test_emoji_only(self):
        assert is_emoji_only("\U0001f44d")
        assert is_emoji_only("@beta \U0001f389\U0001f389 ")
        assert is_emoji_only("\U0001f44d\U0001f3fd")
        assert not is_emoji_only("ok \U0001f44d")
        assert not is_emoji_only("   ")

    def test_acknowledgment_excludes_substance(self):
        assert is_acknowledgment("Glad it helped")
        assert not is_acknowledgment("Thanks, why did the build fail?")


class TestCircular:
    def test_gratitude_loop_is_medium(self):
        analysis = detect_circular(GRATITUDE_LOOP, "alpha")
        assert analysis.is_circular
        assert analysis.confidence == Confidence.MEDIUM
        assert analysis.pattern == "gratitude_loop"
        assert analysis.recent_messages == 3

    def test_run_must_include_us(self):
        messages = [("beta", "Thanks!"), ("gamma", "Thank you!"), ("beta", "Cheers")]
        assert not detect_circular(messages, "alpha").is_circular

    def test_thresholds_are_configurable(self):
        policy = CircularPolicy(low=2, medium=5, high=6)
        analysis = detect_circular(GRATITUDE_LOOP, "alpha", policy)
        assert analysis.confidence == Confidence.LOW
        assert not analysis.hard_block(policy)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestStateMachine:
    def test_reply_then_inbound(self, tracker):
        conv = tracker.record_our_reply(CID, uri="at://alpha/reply/1")
        assert conv.state == ConversationState.AWAITING_RESPONSE
        conv = tracker.record_inbound(CID, "beta", "What do you think about rate limits?")
        assert conv.state == ConversationState.ACTIVE
        assert conv.participants["beta"].reply_count == 1

    def test_closing_message_concludes(self, tracker):
        conv = tracker.record_inbound(CID, "beta", "Thanks!")
        assert conv.concluded
        assert conv.conclusion_reason == "Closing message received"

    def test_emoji_concludes(self, tracker):
        conv = tracker.record_inbound(CID, "beta", "\U0001f44d")
        assert conv.conclusion_reason == "Emoji reaction received"

    def test_concluded_is_sticky(self, tracker):
        tracker.record_inbound(CID, "beta", "Thanks!")
        conv = tracker.record_inbound(CID, "beta", "Actually, one more question about the API?")
        assert conv.state == ConversationState.CONCLUDED
        decision = tracker.should_respond(CID)
        assert not decision.should_respond
        assert decision.reason == "Closing message received"

    def test_like_on_our_reply_concludes(self, tracker):
        tracker.record_our_reply(CID, uri="at://alpha/reply/1")
        conv = tracker.find_by_our_reply("at://alpha/reply/1")
        assert conv is not None
        tracker.record_like(conv.conversation_id, "beta")
        assert tracker.get(CID).concluded
        assert "Like received from @beta" in tracker.get(CID).conclusion_reason

    def test_state_survives_restart(self, tracker, tmp_path, clock):
        tracker.record_inbound(CID, "beta", "Thanks!")
        path = tmp_path / "conversations.json"
        reloaded = ConversationTracker(path, "social", "alpha", clock=clock)
        assert reloaded.get(CID).concluded

    def test_version_mismatch_resets(self, tmp_path):
        path = tmp_path / "conversations.json"
        path.write_text(json.dumps({"version": 1, "conversations": {CID: {}}}))
        assert len(ConversationTracker(path, "social", "alpha")) == 0

    def test_prune(self, tracker, clock):
        tracker.record_inbound(CID, "beta", "hello there")
        clock.now += 8 * 24 * 60 * 60
        tracker.record_inbound("at://beta/post/2", "beta", "new topic")
        assert tracker.prune() == 1
        assert tracker.get(CID) is None


# ---------------------------------------------------------------------------
# Reply decision
# ---------------------------------------------------------------------------


class TestShouldRespond:
    def test_active_conversation(self, tracker):
        tracker.record_inbound(CID, "beta", "How would you shard this?")
        decision = tracker.should_respond(CID)
        assert decision.should_respond
        assert decision.warnings == []

    def test_medium_circular_blocks_and_concludes(self, tracker):
        decision = tracker.should_respond(CID, messages=GRATITUDE_LOOP)
        assert not decision.should_respond
        assert "gratitude_loop" in decision.reason
        assert tracker.get(CID).concluded

    def test_low_circular_only_warns(self, tracker):
        messages = [
            ("beta", "What about the config?"),
            ("alpha", "Glad it helped"),
            ("beta", "Thanks!"),
        ]
        decision = tracker.should_respond(CID, messages=messages)
        assert decision.should_respond
        assert decision.circular.confidence == Confidence.LOW
        assert len(decision.warnings) == 1

    def test_reply_count_pressure(self, tracker):
        for _ in range(4):
            tracker.record_inbound(CID, "beta", "And another angle on sharding")
            tracker.record_our_reply(CID)
        tracker.record_inbound(CID, "beta", "What about hot keys")
        decision = tracker.should_respond(CID)
        assert not decision.should_respond
        assert decision.reason == "Already replied 4 times"

    def test_work_linked_skips_reply_count_pressure(self, tracker):
        for _ in range(6):
            tracker.record_inbound(CID, "beta", "Next review round")
            tracker.record_our_reply(CID)
        tracker.record_inbound(CID, "beta", "One more change requested")
        assert tracker.should_respond(CID, work_linked=True).should_respond
        assert tracker.get(CID).work_linked

    def test_no_response_to_our_reply(self, tracker, clock):
        tracker.record_inbound(CID, "beta", "Interesting idea")
        clock.now += 60
        tracker.record_our_reply(CID)
        clock.now += 61 * 60
        decision = tracker.should_respond(CID)
        assert not decision.should_respond

    def test_disengaged_participants(self, tracker, clock):
        tracker.record_inbound(CID, "beta", "First thought")
        tracker.record_inbound(CID, "beta", "Second thought")
        clock.now += 31 * 60
        decision = tracker.should_respond(CID)
        assert not decision.should_respond
        assert decision.reason == "Other participants seem to have disengaged"
