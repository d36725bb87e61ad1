"""Recovery of stuck and orphaned tasks.

Two failure shapes are repaired here:

* **Stuck**: a task sits in ``claimed``/``in_progress`` with an assignee for
  longer than the stuck timeout and there is no open PR from its branch. The
  owner probably crashed, so the task goes back to ``pending``.
* **Orphaned**: a ``blocked``, unassigned task whose branch made it to the
  remote but never got a PR (the pipeline died between push and report).
  The remaining gates are re-run and the PR is opened on the owner's behalf.

Every task key carries a retry counter. Once it reaches the cap the task is
left alone and a single "needs manual intervention" comment is posted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from peerclaw.collaborators import CodeHostClient, PullRequest, RepositoryOps
from peerclaw.config import Settings
from peerclaw.errors import ClaimConflict, Gate
from peerclaw.plans.models import PlanRef, PlanTask, TaskStatus
from peerclaw.plans.parser import update_task_in_body
from peerclaw.plans.store import PlanSnapshot
from peerclaw.tasks.branches import (
    branch_mentions_task,
    is_task_branch,
    task_branch_candidates,
)
from peerclaw.tasks.coordinator import TaskCoordinator, TaskOutcome, workspace_path
from peerclaw.tasks.gates import run_gates

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (TaskStatus.CLAIMED, TaskStatus.IN_PROGRESS)


@dataclass
class StuckTaskEntry:
    """Process-local record for one task key.

    ``first_seen`` is 0 when the task is not currently being timed.
    """

    task_key: str
    first_seen: float = 0.0
    retry_count: int = 0
    abandon_notified: bool = False


class StuckTaskTracker:
    """In-memory map of task key -> StuckTaskEntry. Never persisted."""

    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries
        self._entries: dict[str, StuckTaskEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> StuckTaskEntry | None:
        return self._entries.get(key)

    def entry(self, key: str) -> StuckTaskEntry:
        if key not in self._entries:
            self._entries[key] = StuckTaskEntry(task_key=key)
        return self._entries[key]

    def record_retry(self, key: str) -> StuckTaskEntry:
        entry = self.entry(key)
        entry.retry_count += 1
        entry.first_seen = 0.0
        return entry

    def prune(self, active_keys: set[str]) -> int:
        """Drop idle entries for tasks no longer in any open plan once over the size cap."""
        if len(self._entries) <= self.max_entries:
            return 0
        stale = [
            key
            for key, entry in self._entries.items()
            if key not in active_keys and entry.first_seen == 0
        ]
        for key in stale:
            del self._entries[key]
        logger.debug("Pruned %d stuck-task entries", len(stale))
        return len(stale)


class RecoveryManager:
    """Detects and repairs stuck or orphaned work across watched plans."""

    def __init__(
        self,
        settings: Settings,
        code_host: CodeHostClient,
        repo_ops: RepositoryOps,
        coordinator: TaskCoordinator,
        tracker: StuckTaskTracker | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.code_host = code_host
        self.repo_ops = repo_ops
        self.coordinator = coordinator
        self.tracker = tracker or StuckTaskTracker(settings.stuck_tracker_max_entries)
        self.clock = clock

    # =========================================================================
    # Retry cap
    # =========================================================================

    def is_exhausted(self, key: str) -> bool:
        entry = self.tracker.get(key)
        return entry is not None and entry.retry_count >= self.settings.max_task_retries

    async def check_exhausted(self, ref: PlanRef, task: PlanTask) -> bool:
        """True if the task hit the retry cap. Posts the abandonment notice once."""
        key = ref.task_key(task.number)
        if not self.is_exhausted(key):
            return False
        entry = self.tracker.entry(key)
        if not entry.abandon_notified:
            entry.abandon_notified = True
            logger.warning("Task %s exhausted %d retries", key, entry.retry_count)
            result = await self.code_host.create_comment(
                ref.owner,
                ref.repo,
                ref.issue_number,
                f"**Task {task.number}** ({task.title}) has failed "
                f"{self.settings.max_task_retries} times and will not be retried "
                "automatically. Manual intervention may be needed.",
            )
            if not result.success:
                logger.warning("Failed to post retry-limit comment for %s: %s", key, result.error)
        return True

    async def exhausted_tasks(self, snapshot: PlanSnapshot) -> set[int]:
        """Task numbers in this plan that must not be claimed again."""
        exhausted = set()
        for task in snapshot.plan.tasks:
            if task.status == TaskStatus.PENDING and await self.check_exhausted(snapshot.ref, task):
                exhausted.add(task.number)
        return exhausted

    # =========================================================================
    # Stuck tasks
    # =========================================================================

    async def recover_stuck_tasks(self, snapshots: list[PlanSnapshot]) -> list[str]:
        """Reset tasks stuck past the timeout. Returns the task keys that were reset."""
        now = self.clock()
        timeout = self.settings.stuck_task_timeout
        reset: list[str] = []
        open_prs: dict[tuple[str, str], list[PullRequest] | None] = {}

        for snapshot in snapshots:
            ref = snapshot.ref
            for task in snapshot.plan.tasks:
                key = ref.task_key(task.number)

                if task.status not in ACTIVE_STATUSES or not task.assignee:
                    entry = self.tracker.get(key)
                    if entry and task.status in (TaskStatus.PENDING, TaskStatus.COMPLETED):
                        entry.first_seen = 0.0
                    continue

                if await self.check_exhausted(ref, task):
                    continue

                entry = self.tracker.entry(key)
                if entry.first_seen == 0:
                    entry.first_seen = now
                    logger.debug("Tracking possibly stuck task %s (%s)", key, task.status.value)
                    continue
                if now - entry.first_seen < timeout:
                    continue

                repo_key = (ref.owner, ref.repo)
                if repo_key not in open_prs:
                    listed = await self.code_host.list_pull_requests(ref.owner, ref.repo, "open")
                    open_prs[repo_key] = listed.data if listed.success else None
                prs = open_prs[repo_key]
                if prs is None:
                    logger.warning("Could not list PRs for %s/%s, not resetting %s", *repo_key, key)
                    continue
                if any(is_task_branch(pr.head_ref, task.number, task.title) for pr in prs):
                    logger.debug("Task %s has an open PR, refreshing its timer", key)
                    entry.first_seen = now
                    continue

                if await self._reset_to_pending(snapshot, task, now - entry.first_seen):
                    self.tracker.record_retry(key)
                    reset.append(key)

        self.tracker.prune(
            {s.ref.task_key(t.number) for s in snapshots for t in s.plan.tasks}
        )
        return reset

    async def _reset_to_pending(
        self, snapshot: PlanSnapshot, task: PlanTask, stuck_for: float
    ) -> bool:
        ref = snapshot.ref
        stale_owner = task.assignee
        logger.warning(
            "Recovering stuck task %s (%s, @%s, %d min)",
            ref.task_key(task.number),
            task.status.value,
            stale_owner,
            stuck_for // 60,
        )

        def mutate(snap: PlanSnapshot) -> str:
            current = snap.plan.get_task(task.number)
            if current is None or current.status not in ACTIVE_STATUSES:
                raise ClaimConflict(task.number, current.assignee if current else None)
            if current.assignee != stale_owner:
                raise ClaimConflict(task.number, current.assignee)
            return update_task_in_body(
                snap.issue.body, task.number, status=TaskStatus.PENDING, clear_assignee=True
            )

        def verify(snap: PlanSnapshot) -> None:
            current = snap.plan.get_task(task.number)
            if current is None or current.status != TaskStatus.PENDING or current.assignee:
                raise ClaimConflict(task.number, current.assignee if current else None)

        outcome = await self.coordinator.plans.read_modify_write(ref, mutate, verify)
        if not outcome.applied:
            logger.info(
                "Stuck task %s changed before reset (%s)",
                ref.task_key(task.number),
                "conflict" if outcome.conflict else outcome.error,
            )
            return False

        if stale_owner:
            removed = await self.code_host.remove_assignee(
                ref.owner, ref.repo, ref.issue_number, stale_owner
            )
            if not removed.success:
                logger.warning("Failed to remove assignee @%s: %s", stale_owner, removed.error)
        minutes = self.settings.stuck_task_timeout // 60
        comment = await self.code_host.create_comment(
            ref.owner,
            ref.repo,
            ref.issue_number,
            f"**Task {task.number} timed out**: it was `{task.status.value}` assigned to "
            f"@{stale_owner} for over {minutes} minutes with no PR. Reset to `pending` for retry.",
        )
        if not comment.success:
            logger.warning("Failed to post stuck-task comment: %s", comment.error)
        return True

    # =========================================================================
    # Orphaned branches
    # =========================================================================

    async def recover_orphaned_branches(self, snapshots: list[PlanSnapshot]) -> str | None:
        """Turn at most one orphaned branch into a PR. Returns the recovered task key."""
        remote_branches: dict[tuple[str, str], tuple[Path, list[str]] | None] = {}

        for snapshot in snapshots:
            ref = snapshot.ref
            for task in snapshot.plan.tasks:
                if task.status != TaskStatus.BLOCKED or task.assignee:
                    continue
                key = ref.task_key(task.number)
                if await self.check_exhausted(ref, task):
                    continue

                repo_key = (ref.owner, ref.repo)
                if repo_key not in remote_branches:
                    remote_branches[repo_key] = await self._fetch_remote_branches(ref)
                fetched = remote_branches[repo_key]
                if fetched is None:
                    continue
                path, branches = fetched

                branch = self._find_task_branch(task, branches)
                if branch is None:
                    continue

                prs = await self.code_host.list_pull_requests(ref.owner, ref.repo, "all")
                if not prs.success:
                    logger.warning("Could not list PRs for %s/%s: %s", *repo_key, prs.error)
                    continue
                if any(pr.head_ref == branch for pr in prs.data or []):
                    logger.debug("Branch %s already has a PR, skipping", branch)
                    continue

                logger.info("Found orphaned branch %s for %s", branch, key)
                if await self._recover_branch(snapshot, task, path, branch):
                    return key
                self.tracker.record_retry(key)
                # a failed attempt leaves the workspace on another branch
                remote_branches.pop(repo_key, None)
        return None

    async def _fetch_remote_branches(self, ref: PlanRef) -> tuple[Path, list[str]] | None:
        path = workspace_path(self.coordinator.workrepos, ref.owner, ref.repo)
        clone = await self.repo_ops.clone(ref.owner, ref.repo, path)
        if not clone.success:
            logger.warning(
                "Could not clone %s/%s for recovery: %s", ref.owner, ref.repo, clone.error
            )
            return None
        listed = await self.repo_ops.list_remote_branches(path)
        if not listed.success:
            logger.warning(
                "Could not list branches of %s/%s: %s", ref.owner, ref.repo, listed.error
            )
            return None
        return path, listed.data or []

    @staticmethod
    def _find_task_branch(task: PlanTask, branches: list[str]) -> str | None:
        available = set(branches)
        for candidate in task_branch_candidates(task.number, task.title):
            if candidate in available:
                return candidate
        # Titles may have been edited since the branch was made
        return next((b for b in sorted(branches) if branch_mentions_task(b, task.number)), None)

    async def _recover_branch(
        self, snapshot: PlanSnapshot, task: PlanTask, path: Path, branch: str
    ) -> bool:
        checkout = await self.repo_ops.checkout(path, branch)
        if not checkout.success:
            logger.warning("Could not check out %s: %s", branch, checkout.error)
            return False

        report = await run_gates(
            self.repo_ops,
            path,
            branch,
            test_timeout=self.settings.test_timeout,
            start_at=Gate.CHANGES,
        )
        if not report.ok:
            logger.warning("Orphaned branch %s failed %s", branch, report.failure)
            return False

        result = await self.coordinator.finish(snapshot, task, report)
        if result.outcome != TaskOutcome.COMPLETED:
            return False
        logger.info(
            "Recovered orphaned branch %s into PR #%d",
            branch,
            result.pull_request.number if result.pull_request else 0,
        )
        return True
