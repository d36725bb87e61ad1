"""Find promises in our own reply text.

Rule-based: each commitment type has a handful of first-person intent
patterns. Past tense, suggestions to others and questions don't match.
"""

from __future__ import annotations

import logging
import re

from peerclaw.commitments.models import CommitmentType, ExtractedCommitment
from peerclaw.commitments.queue import CommitmentQueue

logger = logging.getLogger(__name__)

_WILL = r"\b(?:i'll|i will|i'm going to|im going to|let me|i can go ahead and)\s+"
_NUMBER_WORDS = {"a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5}
MAX_ISSUES = 5

_CREATE_ISSUE = [
    re.compile(
        _WILL
        + r"(?:open|file|create|write up|raise|log)\s+"
        + r"(?P<count>\d+|a|an|one|two|three|four|five)?\s*(?:new\s+)?"
        + r"(?:issues?|tickets?|bug reports?)"
        + r"(?:\s+(?:for|about|on)\s+(?P<topic>[^.!?\n]+))?",
        re.IGNORECASE,
    ),
    re.compile(
        _WILL + r"document (?:this|that|it) in an issue", re.IGNORECASE
    ),
    re.compile(
        _WILL + r"(?:write up|summarize|document) (?:my|our) (?:findings|notes|thoughts)"
        r"|" + _WILL + r"summarize what we discussed",
        re.IGNORECASE,
    ),
]
_CREATE_PLAN = re.compile(
    _WILL + r"(?:put together|draft|write up|create|open|make)\s+(?:a\s+)?plan"
    r"(?:\s+(?:for|to)\s+(?P<topic>[^.!?\n]+))?",
    re.IGNORECASE,
)
_COMMENT_ISSUE = re.compile(
    _WILL + r"(?:comment|follow up|leave a (?:comment|note)) on\s+"
    r"(?:(?P<repo>[\w.-]+/[\w.-]+))?#(?P<number>\d+)"
    r"|" + _WILL + r"(?:comment|follow up|leave a (?:comment|note)) on (?:that|the) issue",
    re.IGNORECASE,
)
_POST_SOCIAL = re.compile(
    _WILL + r"(?:post|share|write a post|write something)\s+(?:about\s+)?(?:this|that|it)"
    r"(?:\s+(?:on|to)\s+\w+)?",
    re.IGNORECASE,
)


def _sentence(text: str, match: re.Match) -> str:
    start = max(text.rfind(".", 0, match.start()), text.rfind("\n", 0, match.start())) + 1
    end_candidates = [i for i in (text.find(c, match.end()) for c in ".!?\n") if i != -1]
    end = min(end_candidates) if end_candidates else len(text)
    return text[start:end].strip()


def _split_workspace(workspace: str | None) -> dict[str, str]:
    if not workspace or "/" not in workspace:
        return {}
    owner, _, repo = workspace.partition("/")
    return {"owner": owner, "repo": repo}


_VAGUE_TOPICS = {"this", "that", "it", "these", "those", "them"}


def _title(topic: str | None) -> str | None:
    topic = (topic or "").strip()
    if not topic or topic.lower() in _VAGUE_TOPICS:
        return None
    return topic[:1].upper() + topic[1:]


def _count(raw: str | None) -> int:
    if not raw:
        return 1
    raw = raw.lower()
    value = int(raw) if raw.isdigit() else _NUMBER_WORDS.get(raw, 1)
    return max(1, min(value, MAX_ISSUES))


def extract_commitments(text: str, workspace: str | None = None) -> list[ExtractedCommitment]:
    """Return the promises made in ``text``, at most one per type.

    Args:
        text: Reply text we posted.
        workspace: Default "owner/repo" for code-host actions.
    """
    if not text:
        return []
    base = _split_workspace(workspace)
    found: list[ExtractedCommitment] = []

    for pattern in _CREATE_ISSUE:
        match = pattern.search(text)
        if match:
            params = dict(base)
            groups = match.groupdict()
            params["count"] = _count(groups.get("count"))
            title = _title(groups.get("topic"))
            if title:
                params["title"] = title
            found.append(
                ExtractedCommitment(_sentence(text, match), CommitmentType.CREATE_ISSUE, params)
            )
            break

    match = _CREATE_PLAN.search(text)
    if match:
        params = dict(base)
        title = _title(match.group("topic"))
        if title:
            params["title"] = title
        sentence = _sentence(text, match)
        found.append(ExtractedCommitment(sentence, CommitmentType.CREATE_PLAN, params))

    match = _COMMENT_ISSUE.search(text)
    if match:
        params = dict(base)
        if match.group("repo"):
            params.update(_split_workspace(match.group("repo")))
        if match.group("number"):
            params["issue_number"] = int(match.group("number"))
        found.append(
            ExtractedCommitment(_sentence(text, match), CommitmentType.COMMENT_ISSUE, params)
        )

    match = _POST_SOCIAL.search(text)
    if match:
        found.append(ExtractedCommitment(_sentence(text, match), CommitmentType.POST_SOCIAL, {}))

    return found


def enqueue_from_reply(
    queue: CommitmentQueue,
    text: str,
    thread_uri: str,
    already_fulfilled: set[str] | None = None,
    workspace: str | None = None,
) -> int:
    """Scan a reply and queue its promises.

    Types in ``already_fulfilled`` were carried out directly this turn and
    are skipped. Returns the number of commitments queued.
    """
    already_fulfilled = already_fulfilled or set()
    queued = 0
    for item in extract_commitments(text, workspace):
        if item.type.value in already_fulfilled:
            logger.debug("Skipping %s commitment, already done directly", item.type.value)
            continue
        if queue.enqueue(item.description, item.type, thread_uri, text, item.params):
            queued += 1
    return queued
