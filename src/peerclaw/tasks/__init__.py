# Tasks - claim, execute, verify and report collaborative work; recover what stalls.
# Created: 2026-02-22

from peerclaw.tasks.coordinator import (
    ClaimResult,
    ClaimState,
    ExecutionResult,
    TaskCoordinator,
    TaskOutcome,
)
from peerclaw.tasks.gates import VerificationReport, run_gates
from peerclaw.tasks.git import GitCLI
from peerclaw.tasks.recovery import RecoveryManager, StuckTaskEntry, StuckTaskTracker

__all__ = [
    "ClaimResult",
    "ClaimState",
    "ExecutionResult",
    "GitCLI",
    "RecoveryManager",
    "StuckTaskEntry",
    "StuckTaskTracker",
    "TaskCoordinator",
    "TaskOutcome",
    "VerificationReport",
    "run_gates",
]
