"""Verification gate chain.

Gates run in order and the chain stops at the first failure. Nothing is
reported as done unless every gate passed; a PR is only opened afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from peerclaw.collaborators import RepositoryOps
from peerclaw.errors import Gate, GateFailure

logger = logging.getLogger(__name__)

GATE_ORDER = [Gate.BRANCH, Gate.CHANGES, Gate.TESTS, Gate.PUSH, Gate.PUSH_VERIFY]


@dataclass
class VerificationReport:
    """Outcome of a gate run.

    Attributes:
        branch: Branch that was verified
        passed: Gates that passed, in order
        failure: The gate failure that stopped the chain, if any
        commits: ``git log base..HEAD --oneline`` lines
        files: Changed file paths relative to base
        diffstat: ``git diff --shortstat`` summary
        tests: Test output, or a "skipped: ..." note
    """

    branch: str
    passed: list[Gate] = field(default_factory=list)
    failure: GateFailure | None = None
    commits: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    diffstat: str = ""
    tests: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def tests_skipped(self) -> bool:
        return self.tests.startswith("skipped")


async def _check_branch(ops: RepositoryOps, path: Path, report: VerificationReport) -> None:
    result = await ops.current_branch(path)
    if not result.success:
        raise GateFailure(Gate.BRANCH, f"could not read HEAD: {result.error}")
    if result.data != report.branch:
        raise GateFailure(
            Gate.BRANCH, f"expected to be on '{report.branch}' but HEAD is '{result.data}'"
        )


async def _check_changes(
    ops: RepositoryOps, path: Path, report: VerificationReport, base: str
) -> None:
    commits = await ops.commits_ahead(path, base)
    if not commits.success:
        raise GateFailure(Gate.CHANGES, f"git log failed: {commits.error}")
    if not commits.data:
        raise GateFailure(Gate.CHANGES, f"no commits on '{report.branch}' beyond {base}")
    report.commits = commits.data

    files = await ops.changed_files(path, base)
    if not files.success:
        raise GateFailure(Gate.CHANGES, f"git diff failed: {files.error}")
    if not files.data:
        raise GateFailure(Gate.CHANGES, f"commits exist but no files differ from {base}")
    report.files = files.data

    stat = await ops.diff_shortstat(path, base)
    report.diffstat = (stat.data or "") if stat.success else ""


async def _check_tests(
    ops: RepositoryOps, path: Path, report: VerificationReport, timeout: float
) -> None:
    result = await ops.run_tests(path, timeout)
    if not result.success:
        raise GateFailure(Gate.TESTS, result.error or "tests failed")
    report.tests = result.data or ""


async def _push(ops: RepositoryOps, path: Path, report: VerificationReport) -> None:
    result = await ops.push(path, report.branch)
    if not result.success:
        raise GateFailure(Gate.PUSH, result.error or "push failed")


async def _verify_push(ops: RepositoryOps, path: Path, report: VerificationReport) -> None:
    result = await ops.verify_remote_branch(path, report.branch)
    if not result.success:
        raise GateFailure(Gate.PUSH_VERIFY, f"ls-remote failed: {result.error}")
    if not result.data:
        raise GateFailure(
            Gate.PUSH_VERIFY, f"branch '{report.branch}' not found on remote after push"
        )


async def run_gates(
    ops: RepositoryOps,
    path: Path,
    branch: str,
    *,
    test_timeout: float = 120,
    base: str = "main",
    start_at: Gate = Gate.BRANCH,
) -> VerificationReport:
    """Run the gate chain from ``start_at`` onwards.

    Orphan recovery starts at ``Gate.CHANGES``: the branch was checked out
    by us, not left behind by the coding agent.
    """
    report = VerificationReport(branch=branch)
    for gate in GATE_ORDER[GATE_ORDER.index(start_at) :]:
        try:
            if gate == Gate.BRANCH:
                await _check_branch(ops, path, report)
            elif gate == Gate.CHANGES:
                await _check_changes(ops, path, report, base)
            elif gate == Gate.TESTS:
                await _check_tests(ops, path, report, test_timeout)
            elif gate == Gate.PUSH:
                await _push(ops, path, report)
            else:
                await _verify_push(ops, path, report)
        except GateFailure as failure:
            logger.warning("Gate %s failed on %s: %s", gate.value, branch, failure.detail)
            report.failure = failure
            return report
        report.passed.append(gate)
        logger.debug("Gate %s passed on %s", gate.value, branch)
    return report
