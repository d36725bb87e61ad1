"""Durable commitment queue.

Changes:
  - 2026-02-27: Terminal entries older than the retention window are dropped on load.
  - 2026-02-24: Initial queue with dedup, attempt counting and a JSONL audit trail.

Delivery is at-least-once: a commitment stays eligible until it completes,
fails ``max_attempts`` times, or goes stale. Every transition is appended
to ``commitments.audit.jsonl`` next to the queue file.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from peerclaw.commitments.models import Commitment, CommitmentStatus, CommitmentType
from peerclaw.state import VersionedStateFile

logger = logging.getLogger(__name__)

QUEUE_VERSION = 1
MAX_ATTEMPTS = 3
STALE_AFTER = 24 * 60 * 60
RETENTION = 7 * 24 * 60 * 60


def normalize_description(description: str) -> str:
    return " ".join(description.lower().split())


def commitment_hash(source_thread_uri: str, description: str) -> str:
    raw = f"{source_thread_uri}:{normalize_description(description)}"
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


class CommitmentQueue:
    """JSON-backed queue of promised actions."""

    def __init__(
        self,
        path: Path,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        stale_after: float = STALE_AFTER,
        retention: float = RETENTION,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.audit_path = self.path.with_name(f"{self.path.stem}.audit.jsonl")
        self.max_attempts = max_attempts
        self.stale_after = stale_after
        self.retention = retention
        self.clock = clock
        self._file = VersionedStateFile(self.path, QUEUE_VERSION, lambda: {"commitments": []})
        self._items: list[Commitment] = self._load()

    def _load(self) -> list[Commitment]:
        data = self._file.load()
        now = self.clock()
        items = []
        for raw in data.get("commitments", []):
            try:
                item = Commitment.from_dict(raw)
            except (KeyError, ValueError) as e:
                logger.warning("Dropping malformed commitment %r: %s", raw.get("id"), e)
                continue
            finished = item.completed_at or item.created_at
            if item.status.terminal and now - finished > self.retention:
                continue
            items.append(item)
        return items

    def _save(self) -> None:
        self._file.save({"commitments": [c.to_dict() for c in self._items]})

    def _audit(self, action: str, commitment: Commitment, **details: Any) -> None:
        entry = {
            "ts": self.clock(),
            "action": action,
            "id": commitment.id,
            "type": commitment.type.value,
            "status": commitment.status.value,
            **details,
        }
        try:
            self.audit_path.parent.mkdir(parents=True, exist_ok=True)
            with self.audit_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning("Could not write commitment audit log: %s", e)

    # =========================================================================
    # Queries
    # =========================================================================

    def __len__(self) -> int:
        return len(self._items)

    def all(self) -> list[Commitment]:
        return list(self._items)

    def get(self, commitment_id: str) -> Commitment | None:
        return next((c for c in self._items if c.id == commitment_id), None)

    def pending(self) -> list[Commitment]:
        """Commitments eligible for a fulfillment attempt, oldest first."""
        return [
            c
            for c in self._items
            if c.status == CommitmentStatus.PENDING
            or (c.status == CommitmentStatus.FAILED and c.attempt_count < self.max_attempts)
        ]

    def has_pending(self) -> bool:
        return any(
            c.status == CommitmentStatus.IN_PROGRESS for c in self._items
        ) or bool(self.pending())

    def stats(self) -> dict[str, int]:
        counts = {s.value: 0 for s in CommitmentStatus}
        for c in self._items:
            counts[c.status.value] += 1
        return counts

    # =========================================================================
    # Transitions
    # =========================================================================

    def enqueue(
        self,
        description: str,
        type: CommitmentType,
        source_thread_uri: str,
        source_reply_text: str = "",
        params: dict[str, Any] | None = None,
    ) -> Commitment | None:
        """Add a commitment. Returns None if an equivalent one is still open."""
        digest = commitment_hash(source_thread_uri, description)
        for existing in self._items:
            if existing.dedup_hash == digest and not existing.status.terminal:
                logger.debug("Duplicate commitment skipped: %s", description)
                return None

        now = self.clock()
        commitment = Commitment(
            id=f"commitment-{int(now * 1000)}-{digest}",
            description=description,
            type=type,
            source_thread_uri=source_thread_uri,
            source_reply_text=source_reply_text,
            params=dict(params or {}),
            created_at=now,
        )
        self._items.append(commitment)
        self._save()
        self._audit("enqueued", commitment, description=description)
        logger.info("Commitment queued (%s): %s", type.value, description)
        return commitment

    def mark_in_progress(self, commitment_id: str) -> Commitment | None:
        commitment = self.get(commitment_id)
        if commitment is None:
            return None
        commitment.status = CommitmentStatus.IN_PROGRESS
        commitment.last_attempt_at = self.clock()
        self._save()
        self._audit("in_progress", commitment)
        return commitment

    def record_progress(self, commitment_id: str, **params: Any) -> None:
        """Persist partial work into ``params`` so a retry can pick up where it stopped."""
        commitment = self.get(commitment_id)
        if commitment is None:
            return
        commitment.params.update(params)
        self._save()
        self._audit("progress", commitment, **params)

    def mark_completed(self, commitment_id: str, result: dict[str, Any] | None = None) -> None:
        commitment = self.get(commitment_id)
        if commitment is None:
            return
        commitment.status = CommitmentStatus.COMPLETED
        commitment.attempt_count += 1
        commitment.result = result or {}
        commitment.error = None
        commitment.completed_at = self.clock()
        self._save()
        self._audit("completed", commitment, result=commitment.result)

    def mark_failed(self, commitment_id: str, error: str) -> None:
        """Record a failed attempt; abandons once ``max_attempts`` is reached."""
        commitment = self.get(commitment_id)
        if commitment is None:
            return
        commitment.attempt_count += 1
        commitment.error = error
        if commitment.attempt_count >= self.max_attempts:
            commitment.status = CommitmentStatus.ABANDONED
            commitment.completed_at = self.clock()
            logger.warning(
                "Commitment %s abandoned after %d attempts: %s",
                commitment.id,
                commitment.attempt_count,
                error,
            )
        else:
            commitment.status = CommitmentStatus.FAILED
        self._save()
        self._audit("failed", commitment, error=error, attempts=commitment.attempt_count)

    def abandon_stale(self) -> int:
        """Abandon open commitments older than the staleness threshold."""
        now = self.clock()
        count = 0
        for c in self._items:
            if not c.status.terminal and now - c.created_at > self.stale_after:
                c.status = CommitmentStatus.ABANDONED
                c.error = c.error or "stale"
                c.completed_at = now
                self._audit("abandoned_stale", c)
                count += 1
        if count:
            logger.info("Abandoned %d stale commitments", count)
            self._save()
        return count
