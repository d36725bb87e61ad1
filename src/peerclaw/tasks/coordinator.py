"""Task Coordinator: claim -> execute -> verify -> report.

Created: 2026-02-22
Changes:
  - 2026-03-01: PR creation shared with orphan recovery via open_pull_request().
  - 2026-02-25: Plan completion handling (close + announce) on fresh re-read.

Peers coordinate only through plan issue bodies. Claim and Report both go
through ``PlanStore.read_modify_write`` so the "read fresh, write, re-read"
discipline lives in one place. Losing a race is not an error: the loser
defers and never retries the same task in the same cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from peerclaw.collaborators import (
    CodeHostClient,
    CodingAgent,
    CodingAgentResult,
    PullRequest,
    RepositoryOps,
    SocialClient,
)
from peerclaw.config import Settings
from peerclaw.errors import ClaimConflict, FatalCollaboratorError
from peerclaw.plans.models import PlanRef, PlanTask, TaskStatus
from peerclaw.plans.parser import get_claimable_tasks, is_plan_complete, update_task_in_body
from peerclaw.plans.store import PlanSnapshot, PlanStore, WriteOutcome
from peerclaw.tasks.branches import task_branch_name
from peerclaw.tasks.gates import VerificationReport, run_gates

logger = logging.getLogger(__name__)

BLOCKED_LABEL = "blocked"
COMPLETE_LABEL = "complete"


class ClaimState(str, Enum):
    CLAIMED = "claimed"
    CONFLICT = "conflict"
    NOTHING = "nothing"
    ERROR = "error"


class TaskOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    DEFERRED = "deferred"


@dataclass
class ClaimResult:
    state: ClaimState
    snapshot: PlanSnapshot | None = None
    task: PlanTask | None = None
    error: str | None = None


@dataclass
class ExecutionResult:
    outcome: TaskOutcome
    task_number: int
    pull_request: PullRequest | None = None
    report: VerificationReport | None = None
    error: str | None = None
    plan_completed: bool = False


def workspace_path(root: Path, owner: str, repo: str) -> Path:
    return root / f"{owner}-{repo}"


def build_task_prompt(snapshot: PlanSnapshot, task: PlanTask, branch: str) -> str:
    plan = snapshot.plan
    lines = [
        f"You are working on Task {task.number} of the plan \"{plan.title}\" "
        f"({snapshot.ref.slug}).",
        "",
        f"Plan goal: {plan.goal}",
        "",
        f"Task {task.number}: {task.title}",
        task.description,
    ]
    if task.files:
        lines += ["", "Files likely involved:"] + [f"- {f}" for f in task.files]
    lines += [
        "",
        f"Rules: stay on branch '{branch}'. Do not switch or merge branches. "
        "Commit your changes when done; do not push.",
        "If the task cannot be done, say BLOCKED and explain why.",
    ]
    return "\n".join(lines)


def build_pr_body(snapshot: PlanSnapshot, task: PlanTask, report: VerificationReport) -> str:
    plan = snapshot.plan
    parts = [
        f"## Task {task.number}: {task.title}",
        "",
        f"**Plan:** {snapshot.issue.url or snapshot.ref.slug}",
        f"**Goal:** {plan.goal}",
        "",
        task.description,
        "",
        f"**Diff:** {report.diffstat or 'n/a'}",
    ]
    if report.files:
        parts += ["", "**Files changed:**"] + [f"- `{f}`" for f in report.files]
    tests = "Skipped (no runnable suite)" if report.tests_skipped else "Passed"
    parts += ["", f"**Tests:** {tests}", "", f"Part of #{snapshot.ref.issue_number}"]
    return "\n".join(parts)


class TaskCoordinator:
    """Runs the collaborative task pipeline for one agent identity."""

    def __init__(
        self,
        settings: Settings,
        code_host: CodeHostClient,
        repo_ops: RepositoryOps,
        coding_agent: CodingAgent,
        social: SocialClient | None = None,
        plan_store: PlanStore | None = None,
        workrepos: Path | None = None,
    ):
        self.settings = settings
        self.code_host = code_host
        self.repo_ops = repo_ops
        self.coding_agent = coding_agent
        self.social = social
        self.plans = plan_store or PlanStore(code_host)
        self.workrepos = workrepos or settings.workrepos_dir
        self.identity = settings.code_host_login
        self.active_task: str | None = None

    # =========================================================================
    # Claim
    # =========================================================================

    async def claim_next(self, ref: PlanRef, exclude: set[int] | None = None) -> ClaimResult:
        """Claim the lowest-numbered claimable task in a plan, or defer.

        Task numbers in ``exclude`` (retry-exhausted work) are never claimed.
        """
        exclude = exclude or set()
        fresh = await self.plans.fetch(ref)
        if fresh is None:
            return ClaimResult(ClaimState.ERROR, error=f"plan {ref.slug} unavailable")
        claimable = [t for t in get_claimable_tasks(fresh.plan) if t.number not in exclude]
        if not claimable:
            return ClaimResult(ClaimState.NOTHING, snapshot=fresh)

        task = claimable[0]
        me = self.identity

        def mutate(snap: PlanSnapshot) -> str:
            current = snap.plan.get_task(task.number)
            if task.number not in {t.number for t in get_claimable_tasks(snap.plan)}:
                raise ClaimConflict(task.number, current.assignee if current else None)
            return update_task_in_body(
                snap.issue.body, task.number, status=TaskStatus.CLAIMED, assignee=me
            )

        def verify(snap: PlanSnapshot) -> None:
            current = snap.plan.get_task(task.number)
            if current is None or current.assignee != me:
                raise ClaimConflict(task.number, current.assignee if current else None)

        outcome = await self.plans.read_modify_write(ref, mutate, verify)
        if outcome.conflict:
            logger.info("Task %d of %s went to another peer, deferring", task.number, ref.slug)
            return ClaimResult(ClaimState.CONFLICT, snapshot=outcome.snapshot, task=task)
        if not outcome.applied:
            return ClaimResult(ClaimState.ERROR, snapshot=fresh, task=task, error=outcome.error)

        await self._soft(
            self.code_host.add_assignee(ref.owner, ref.repo, ref.issue_number, me),
            "add assignee",
        )
        await self._soft(
            self.code_host.create_comment(
                ref.owner,
                ref.repo,
                ref.issue_number,
                f"Claiming **Task {task.number}: {task.title}**. I'll open a PR when it's done.",
            ),
            "claim comment",
        )
        logger.info("Claimed task %d (%s) in %s", task.number, task.title, ref.slug)
        claimed = outcome.snapshot.plan.get_task(task.number) if outcome.snapshot else task
        return ClaimResult(ClaimState.CLAIMED, snapshot=outcome.snapshot, task=claimed)

    async def claim_from_snapshots(
        self,
        snapshots: list[PlanSnapshot],
        skip: Callable[[PlanSnapshot], Awaitable[set[int]]] | None = None,
    ) -> ClaimResult:
        """Walk open plans and claim at most one task.

        ``skip`` returns the task numbers of a plan that must not be claimed.
        """
        last = ClaimResult(ClaimState.NOTHING)
        for snapshot in snapshots:
            excluded = await skip(snapshot) if skip else set()
            if not [t for t in get_claimable_tasks(snapshot.plan) if t.number not in excluded]:
                continue
            result = await self.claim_next(snapshot.ref, exclude=excluded)
            if result.state == ClaimState.CLAIMED:
                return result
            last = result
        return last

    async def list_watched_plans(self, repos: list[str]) -> list[PlanSnapshot]:
        snapshots: list[PlanSnapshot] = []
        for slug in repos:
            owner, _, repo = slug.partition("/")
            if not owner or not repo:
                logger.warning("Ignoring malformed repository %r", slug)
                continue
            snapshots.extend(await self.plans.list_open_plans(owner, repo))
        return snapshots

    async def claim_from_repos(self, repos: list[str]) -> ClaimResult:
        """Walk open plans across repositories and claim at most one task."""
        return await self.claim_from_snapshots(await self.list_watched_plans(repos))

    # =========================================================================
    # Execute + verify
    # =========================================================================

    async def execute(self, snapshot: PlanSnapshot, task: PlanTask) -> ExecutionResult:
        """Run a claimed task through workspace, coding agent, gates and report."""
        ref = snapshot.ref
        self.active_task = ref.task_key(task.number)
        try:
            return await self._execute(snapshot, task)
        finally:
            self.active_task = None

    async def _execute(self, snapshot: PlanSnapshot, task: PlanTask) -> ExecutionResult:
        ref = snapshot.ref
        started = await self._set_status(ref, task.number, TaskStatus.IN_PROGRESS, keep_owner=True)
        if started.conflict:
            return ExecutionResult(TaskOutcome.DEFERRED, task.number, error="task changed hands")
        if started.applied and started.snapshot is not None:
            snapshot = started.snapshot

        path = workspace_path(self.workrepos, ref.owner, ref.repo)
        clone = await self.repo_ops.clone(ref.owner, ref.repo, path)
        if not clone.success:
            return await self._fail(ref, task, f"Could not prepare workspace: {clone.error}")

        branch = task_branch_name(task.number, task.title)
        created = await self.repo_ops.create_branch(path, branch)
        if not created.success:
            return await self._fail(
                ref, task, f"Could not create branch `{branch}`: {created.error}"
            )

        try:
            agent = await self.coding_agent.run(build_task_prompt(snapshot, task, branch), path)
        except FatalCollaboratorError:
            raise
        except Exception as e:
            logger.exception("Coding agent crashed on %s", ref.task_key(task.number))
            agent = CodingAgentResult(success=False, error=f"coding agent crashed: {e}")

        if agent.blocked:
            reason = agent.block_reason or "coding agent reported a blocker"
            return await self._block(ref, task, reason)
        if not agent.success:
            return await self._fail(ref, task, agent.error or "coding agent failed")

        report = await run_gates(
            self.repo_ops, path, branch, test_timeout=self.settings.test_timeout
        )
        if not report.ok:
            failure = report.failure
            reason = f"Verification failed at **{failure.gate.value}**: {failure.detail}"
            result = await self._fail(ref, task, reason)
            result.report = report
            return result

        return await self.finish(snapshot, task, report)

    # =========================================================================
    # Report
    # =========================================================================

    async def open_pull_request(
        self, snapshot: PlanSnapshot, task: PlanTask, report: VerificationReport
    ) -> PullRequest | None:
        ref = snapshot.ref
        pr = await self.code_host.create_pull_request(
            ref.owner,
            ref.repo,
            title=f"task({task.number}): {task.title}",
            body=build_pr_body(snapshot, task, report),
            head=report.branch,
        )
        if not pr.success or pr.data is None:
            logger.warning("PR creation failed for %s: %s", report.branch, pr.error)
            return None

        reviewers = [snapshot.issue.author, *self.settings.peers]
        reviewers = [r for r in dict.fromkeys(reviewers) if r and r != self.identity]
        if reviewers:
            await self._soft(
                self.code_host.request_reviewers(ref.owner, ref.repo, pr.data.number, reviewers),
                "request reviewers",
            )
        return pr.data

    async def finish(
        self, snapshot: PlanSnapshot, task: PlanTask, report: VerificationReport
    ) -> ExecutionResult:
        """All gates passed: open the PR and mark the task completed."""
        ref = snapshot.ref
        pr = await self.open_pull_request(snapshot, task, report)
        if pr is None:
            result = await self._fail(
                ref, task, f"Branch `{report.branch}` is pushed but the PR could not be opened."
            )
            result.report = report
            return result

        done = await self._set_status(ref, task.number, TaskStatus.COMPLETED, keep_owner=True)
        await self._soft(
            self.code_host.create_comment(
                ref.owner,
                ref.repo,
                ref.issue_number,
                f"Task {task.number} complete: {pr.url or f'#{pr.number}'}\n\n"
                f"{report.diffstat or ''}".strip(),
            ),
            "completion comment",
        )
        logger.info("Task %d of %s completed via PR #%d", task.number, ref.slug, pr.number)

        result = ExecutionResult(TaskOutcome.COMPLETED, task.number, pull_request=pr, report=report)
        if not done.applied:
            result.error = done.error or "status write not confirmed"

        fresh = await self.plans.fetch(ref)
        if fresh is not None and is_plan_complete(fresh.plan):
            await self.handle_plan_complete(fresh)
            result.plan_completed = True
        return result

    async def report_task_failed(self, ref: PlanRef, task: PlanTask, reason: str) -> None:
        """Mark blocked and release the task so recovery or another peer can pick it up."""
        await self._set_status(ref, task.number, TaskStatus.BLOCKED, keep_owner=False)
        await self._soft(
            self.code_host.create_comment(
                ref.owner,
                ref.repo,
                ref.issue_number,
                f"Task {task.number} failed: {reason}\n\nMarked `blocked` and released.",
            ),
            "failure comment",
        )
        await self._soft(
            self.code_host.remove_assignee(ref.owner, ref.repo, ref.issue_number, self.identity),
            "remove assignee",
        )

    async def report_task_blocked(self, ref: PlanRef, task: PlanTask, reason: str) -> None:
        """Mark blocked and keep the assignee; the blocker needs a human."""
        await self._set_status(ref, task.number, TaskStatus.BLOCKED, keep_owner=True)
        fresh = await self.plans.fetch(ref)
        if fresh is not None and BLOCKED_LABEL not in fresh.issue.labels:
            await self._soft(
                self.code_host.update_issue(
                    ref.owner,
                    ref.repo,
                    ref.issue_number,
                    labels=[*fresh.issue.labels, BLOCKED_LABEL],
                ),
                "blocked label",
            )
        await self._soft(
            self.code_host.create_comment(
                ref.owner, ref.repo, ref.issue_number, f"Task {task.number} is blocked: {reason}"
            ),
            "blocked comment",
        )
        await self._soft(
            self.code_host.remove_assignee(ref.owner, ref.repo, ref.issue_number, self.identity),
            "remove assignee",
        )

    async def handle_plan_complete(self, snapshot: PlanSnapshot) -> None:
        ref = snapshot.ref
        plan = snapshot.plan
        summary = "\n".join(f"- [x] Task {t.number}: {t.title}" for t in plan.tasks)
        await self._soft(
            self.code_host.create_comment(
                ref.owner,
                ref.repo,
                ref.issue_number,
                f"All tasks in this plan are complete.\n\n{summary}",
            ),
            "plan complete comment",
        )
        labels = [lbl for lbl in snapshot.issue.labels if lbl != BLOCKED_LABEL]
        if COMPLETE_LABEL not in labels:
            labels.append(COMPLETE_LABEL)
        await self._soft(
            self.code_host.update_issue(
                ref.owner, ref.repo, ref.issue_number, state="closed", labels=labels
            ),
            "close plan",
        )
        if self.social is not None and self.settings.announce_plan_completion:
            link = snapshot.issue.url or ref.slug
            await self._soft(
                self.social.post_text(f"Finished \"{plan.title}\" with my peers. {link}"),
                "announce plan",
            )
        logger.info("Plan %s complete (%d tasks)", ref.slug, len(plan.tasks))

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _set_status(
        self, ref: PlanRef, number: int, status: TaskStatus, *, keep_owner: bool
    ) -> WriteOutcome:
        me = self.identity

        def mutate(snap: PlanSnapshot) -> str:
            current = snap.plan.get_task(number)
            if current is None:
                raise ClaimConflict(number, None)
            if keep_owner and current.assignee not in (None, me):
                raise ClaimConflict(number, current.assignee)
            if keep_owner:
                return update_task_in_body(snap.issue.body, number, status=status, assignee=me)
            return update_task_in_body(snap.issue.body, number, status=status, clear_assignee=True)

        def verify(snap: PlanSnapshot) -> None:
            current = snap.plan.get_task(number)
            if current is None or current.status != status:
                raise ClaimConflict(number, current.assignee if current else None)
            if keep_owner and current.assignee != me:
                raise ClaimConflict(number, current.assignee)

        outcome = await self.plans.read_modify_write(ref, mutate, verify)
        if not outcome.applied:
            logger.warning(
                "Could not set task %d of %s to %s: %s",
                number,
                ref.slug,
                status.value,
                "conflict" if outcome.conflict else outcome.error,
            )
        return outcome

    async def _fail(self, ref: PlanRef, task: PlanTask, reason: str) -> ExecutionResult:
        await self.report_task_failed(ref, task, reason)
        return ExecutionResult(TaskOutcome.FAILED, task.number, error=reason)

    async def _block(self, ref: PlanRef, task: PlanTask, reason: str) -> ExecutionResult:
        await self.report_task_blocked(ref, task, reason)
        return ExecutionResult(TaskOutcome.BLOCKED, task.number, error=reason)

    async def _soft(self, call, what: str):
        """Await a collaborator call whose failure should only be logged."""
        result = await call
        if not result.success:
            logger.warning("%s failed: %s", what, result.error)
        return result
