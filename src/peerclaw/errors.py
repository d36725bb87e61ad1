"""Error taxonomy.

Ordinary collaborator failures are not exceptions: they come back as
``Result(success=False, error=...)`` and are handled as soft failures.
"""

from __future__ import annotations

from enum import Enum


class Gate(str, Enum):
    """Verification gates, in the order they run."""

    BRANCH = "branch_hygiene"
    CHANGES = "change_verification"
    TESTS = "test_verification"
    PUSH = "push"
    PUSH_VERIFY = "push_verification"


class PeerclawError(Exception):
    """Base class for PeerClaw errors."""


class FatalCollaboratorError(PeerclawError):
    """Credential/auth class failure. Stops every loop and ends the process."""

    def __init__(self, message: str, source: str = "unknown"):
        super().__init__(message)
        self.source = source


class GateFailure(PeerclawError):
    """A verification gate did not pass."""

    def __init__(self, gate: Gate, detail: str):
        super().__init__(f"{gate.value}: {detail}")
        self.gate = gate
        self.detail = detail


class ClaimConflict(PeerclawError):
    """Another peer's write to the plan won."""

    def __init__(self, task_number: int, assignee: str | None):
        super().__init__(f"Task {task_number} now held by {assignee or 'nobody'}")
        self.task_number = task_number
        self.assignee = assignee
