# Commitments - promises made in replies, queued until they are kept.
# Created: 2026-02-24

from peerclaw.commitments.extract import enqueue_from_reply, extract_commitments
from peerclaw.commitments.fulfill import CommitmentFulfiller, FulfillmentStats
from peerclaw.commitments.models import (
    Commitment,
    CommitmentStatus,
    CommitmentType,
    ExtractedCommitment,
)
from peerclaw.commitments.queue import CommitmentQueue

__all__ = [
    "Commitment",
    "CommitmentFulfiller",
    "CommitmentQueue",
    "CommitmentStatus",
    "CommitmentType",
    "ExtractedCommitment",
    "FulfillmentStats",
    "enqueue_from_reply",
    "extract_commitments",
]
