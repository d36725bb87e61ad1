"""Message-level heuristics: closings, emoji-only replies, circular exchanges.

All functions are pure and work on plain text so both platforms share them.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum

from peerclaw.config import CircularPolicy

# Short messages made only of these phrases (plus names/punctuation) close a thread.
_CLOSING_PHRASES = [
    r"thanks?(?: (?:so|very) much)?(?: again)?",
    r"thank you(?: (?:so|very) much)?(?: again)?",
    r"ty",
    r"thx",
    r"cheers",
    r"much appreciated",
    r"appreciate (?:it|that|you)",
    r"(?:good )?bye",
    r"goodbye",
    r"see (?:ya|you)(?: (?:later|around|soon))?",
    r"talk (?:soon|later)",
    r"take care",
    r"have a (?:good|great|nice) (?:one|day|night|weekend)",
    r"sounds good",
    r"got it",
    r"will do",
    r"perfect",
    r"awesome",
    r"great",
    r"nice",
    r"love (?:it|this|that)",
    r"you too",
    r"same to you",
    r"no problem",
    r"np",
    r"anytime",
    r"(?:you're|youre|you are) welcome",
    r"ok(?:ay)?",
    r"cool",
    r"agreed",
    r"exactly",
    r"indeed",
    r"absolutely",
]
_CLOSING = re.compile(
    r"^(?:(?:" + "|".join(_CLOSING_PHRASES) + r")[\s,.!~]*)+$",
    re.IGNORECASE,
)
_MENTION = re.compile(r"@[\w.-]+")
CLOSING_MAX_CHARS = 80

# Words that mark a message as carrying new information even if it is polite.
_SUBSTANCE = re.compile(
    r"\?|\b(?:but|however|because|what about|how|why|could you|can you|should we|"
    r"idea|question|issue|bug|pr|plan|task)\b",
    re.IGNORECASE,
)
_GRATITUDE = re.compile(r"\b(?:thanks?|thank you|appreciate|grateful)\b", re.IGNORECASE)
_ACK = re.compile(
    r"\b(?:thanks?|thank you|appreciate|agreed|exactly|absolutely|same|likewise|"
    r"you too|glad|great|love (?:it|this|that)|well said|right|indeed|"
    r"cheers|welcome|sounds good|happy to)\b",
    re.IGNORECASE,
)
ACK_MAX_CHARS = 200

_EMOJI_JOINERS = {"\u200d", "\ufe0f", "\ufe0e", "\u20e3"}


def _strip_mentions(text: str) -> str:
    return _MENTION.sub("", text).strip()


def is_closing_message(text: str) -> bool:
    """A short sign-off or acknowledgment with nothing new in it."""
    body = _strip_mentions(text or "")
    if not body or len(body) > CLOSING_MAX_CHARS or "?" in body:
        return False
    body = "".join(ch for ch in body if not _is_emoji_char(ch)).strip()
    if not body:
        return False
    return _CLOSING.match(body) is not None


def _is_emoji_char(ch: str) -> bool:
    if ch in _EMOJI_JOINERS:
        return True
    cp = ord(ch)
    if 0x1F3FB <= cp <= 0x1F3FF:  # skin tone modifiers
        return True
    if 0x1F000 <= cp <= 0x1FAFF or 0x2600 <= cp <= 0x27BF or 0x2B00 <= cp <= 0x2BFF:
        return True
    return unicodedata.category(ch) == "So"


def is_emoji_only(text: str) -> bool:
    """Only emoji (and whitespace/mentions). Treated as a terminal reaction."""
    body = _strip_mentions(text or "")
    stripped = "".join(body.split())
    return bool(stripped) and all(_is_emoji_char(ch) for ch in stripped)


def is_acknowledgment(text: str) -> bool:
    """Polite filler: thanks/agreement without a question or new substance."""
    body = _strip_mentions(text or "")
    if not body or is_emoji_only(body):
        return bool(body)
    if len(body) > ACK_MAX_CHARS or _SUBSTANCE.search(body):
        return False
    return is_closing_message(body) or _ACK.search(body) is not None


# ============================================================================
# Circular conversation detection
# ============================================================================


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class CircularAnalysis:
    is_circular: bool
    confidence: Confidence | None = None
    pattern: str = ""
    recent_messages: int = 0

    def hard_block(self, policy: CircularPolicy) -> bool:
        return self.is_circular and self.confidence is not None and (
            self.confidence.value in policy.hard_block
        )


def detect_circular(
    messages: list[tuple[str, str]], self_id: str, policy: CircularPolicy | None = None
) -> CircularAnalysis:
    """Look for a trailing run of mutual acknowledgments.

    Args:
        messages: (author, text) pairs, oldest first.
        self_id: Our handle/login, so the run must include us and someone else.
        policy: Window and per-confidence thresholds.
    """
    policy = policy or CircularPolicy()
    recent = messages[-policy.window :] if policy.window > 0 else []

    run: list[tuple[str, str]] = []
    for author, text in reversed(recent):
        if not is_acknowledgment(text):
            break
        run.append((author, text))

    authors = {a.lower() for a, _ in run}
    if len(run) < policy.low or self_id.lower() not in authors or len(authors) < 2:
        return CircularAnalysis(is_circular=False, recent_messages=len(run))

    if len(run) >= policy.high:
        confidence = Confidence.HIGH
    elif len(run) >= policy.medium:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    grateful = sum(1 for _, text in run if _GRATITUDE.search(text))
    pattern = "gratitude_loop" if grateful * 2 >= len(run) else "mutual_acknowledgment"
    return CircularAnalysis(
        is_circular=True, confidence=confidence, pattern=pattern, recent_messages=len(run)
    )
