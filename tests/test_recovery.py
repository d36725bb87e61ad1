"""Tests for stuck-task and orphaned-branch recovery."""

import pytest
from conftest import FakeCodingAgent, FakeRepoOps, plan_issue

from peerclaw.collaborators import PullRequest
from peerclaw.plans import PlanRef, PlanTask, TaskStatus, parse_plan
from peerclaw.tasks import ClaimState, RecoveryManager, StuckTaskTracker, TaskCoordinator

OWNER, REPO = "acme", "widgets"
REF = PlanRef(OWNER, REPO, 7)
KEY = REF.task_key(1)
BRANCH = "task-1-add-limiter-middleware"


class Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _task(code_host, number=1):
    issue = code_host.issues[(OWNER, REPO, 7)]
    return parse_plan(issue.title, issue.body).get_task(number)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def recovery(settings, code_host, repo_ops, tmp_path, clock):
    coordinator = TaskCoordinator(
        settings, code_host, repo_ops, FakeCodingAgent(), workrepos=tmp_path
    )
    return RecoveryManager(settings, code_host, repo_ops, coordinator, clock=clock)


def _add_plan(code_host, status: TaskStatus, assignee: str | None = None):
    task = PlanTask(1, "Add limiter middleware", "Do it", status, assignee=assignee)
    code_host.add_issue(OWNER, REPO, plan_issue(7, [task]))


async def _snapshots(recovery):
    return await recovery.coordinator.list_watched_plans([f"{OWNER}/{REPO}"])


# ---------------------------------------------------------------------------
# Stuck tasks
# ---------------------------------------------------------------------------


class TestStuckTasks:
    async def test_reset_after_timeout(self, recovery, code_host, clock):
        _add_plan(code_host, TaskStatus.CLAIMED, "beta")

        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []
        assert recovery.tracker.get(KEY).first_seen == clock.now

        clock.advance(29 * 60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []
        assert _task(code_host).status == TaskStatus.CLAIMED

        clock.advance(60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == [KEY]

        task = _task(code_host)
        assert task.status == TaskStatus.PENDING
        assert task.assignee is None
        assert ("remove", 7, "beta") in code_host.assignee_calls
        assert any("timed out" in c for c in code_host.comment_bodies(OWNER, REPO, 7))
        entry = recovery.tracker.get(KEY)
        assert entry.retry_count == 1
        assert entry.first_seen == 0

    async def test_open_pr_refreshes_timer(self, recovery, code_host, clock):
        _add_plan(code_host, TaskStatus.IN_PROGRESS, "beta")
        code_host.pulls[(OWNER, REPO)] = [PullRequest(100, "task(1)", head_ref=BRANCH)]

        await recovery.recover_stuck_tasks(await _snapshots(recovery))
        clock.advance(45 * 60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []

        assert _task(code_host).status == TaskStatus.IN_PROGRESS
        assert recovery.tracker.get(KEY).first_seen == clock.now

    async def test_open_pr_on_bare_task_branch_refreshes_timer(self, recovery, code_host, clock):
        task = PlanTask(
            1, "日本語のドキュメント", "Translate", TaskStatus.IN_PROGRESS, assignee="beta"
        )
        code_host.add_issue(OWNER, REPO, plan_issue(7, [task]))
        code_host.pulls[(OWNER, REPO)] = [PullRequest(100, "task(1)", head_ref="task-1")]

        await recovery.recover_stuck_tasks(await _snapshots(recovery))
        clock.advance(45 * 60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []
        assert _task(code_host).assignee == "beta"

    async def test_pr_for_another_task_does_not_refresh(self, recovery, code_host, clock):
        _add_plan(code_host, TaskStatus.IN_PROGRESS, "beta")
        code_host.pulls[(OWNER, REPO)] = [PullRequest(100, "task(12)", head_ref="task-12-docs")]

        await recovery.recover_stuck_tasks(await _snapshots(recovery))
        clock.advance(31 * 60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == [KEY]

    async def test_pr_listing_failure_does_not_reset(self, recovery, code_host, clock):
        _add_plan(code_host, TaskStatus.CLAIMED, "beta")
        code_host.fail.add("list_pull_requests")

        await recovery.recover_stuck_tasks(await _snapshots(recovery))
        clock.advance(31 * 60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []
        assert _task(code_host).assignee == "beta"

    async def test_completed_task_clears_timer(self, recovery, code_host, clock):
        _add_plan(code_host, TaskStatus.CLAIMED, "beta")
        await recovery.recover_stuck_tasks(await _snapshots(recovery))

        code_host.issues.clear()
        _add_plan(code_host, TaskStatus.COMPLETED, "beta")
        await recovery.recover_stuck_tasks(await _snapshots(recovery))
        assert recovery.tracker.get(KEY).first_seen == 0


# ---------------------------------------------------------------------------
# Retry cap
# ---------------------------------------------------------------------------


class TestRetryCap:
    async def test_exhausted_task_is_skipped_and_notified_once(self, recovery, code_host):
        _add_plan(code_host, TaskStatus.PENDING)
        for _ in range(3):
            recovery.tracker.record_retry(KEY)

        snapshots = await _snapshots(recovery)
        assert await recovery.exhausted_tasks(snapshots[0]) == {1}
        result = await recovery.coordinator.claim_from_snapshots(
            snapshots, skip=recovery.exhausted_tasks
        )

        assert result.state == ClaimState.NOTHING
        assert _task(code_host).assignee is None
        notices = [
            c for c in code_host.comment_bodies(OWNER, REPO, 7) if "Manual intervention" in c
        ]
        assert len(notices) == 1

    async def test_fourth_recovery_is_skipped(self, recovery, code_host, clock):
        for _ in range(3):
            code_host.issues.clear()
            _add_plan(code_host, TaskStatus.IN_PROGRESS, "beta")
            await recovery.recover_stuck_tasks(await _snapshots(recovery))
            clock.advance(31 * 60)
            assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == [KEY]

        code_host.issues.clear()
        _add_plan(code_host, TaskStatus.IN_PROGRESS, "beta")
        for _ in range(3):
            clock.advance(31 * 60)
            assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []

        assert _task(code_host).assignee == "beta"
        comments = code_host.comment_bodies(OWNER, REPO, 7)
        assert len([c for c in comments if "Manual intervention" in c]) == 1

    async def test_below_cap_still_claimable(self, recovery, code_host):
        _add_plan(code_host, TaskStatus.PENDING)
        recovery.tracker.record_retry(KEY)

        result = await recovery.coordinator.claim_from_snapshots(
            await _snapshots(recovery), skip=recovery.exhausted_tasks
        )
        assert result.state == ClaimState.CLAIMED

    async def test_exhausted_stuck_task_is_left_alone(self, recovery, code_host, clock):
        _add_plan(code_host, TaskStatus.CLAIMED, "beta")
        for _ in range(3):
            recovery.tracker.record_retry(KEY)

        await recovery.recover_stuck_tasks(await _snapshots(recovery))
        clock.advance(2 * 60 * 60)
        assert await recovery.recover_stuck_tasks(await _snapshots(recovery)) == []
        assert _task(code_host).assignee == "beta"


class TestTrackerPrune:
    def test_prune_only_over_cap(self):
        tracker = StuckTaskTracker(max_entries=2)
        tracker.entry("a")
        tracker.entry("b")
        assert tracker.prune(set()) == 0

        tracker.entry("c").first_seen = 5.0
        tracker.entry("d")
        assert tracker.prune({"d"}) == 2
        assert "c" in tracker
        assert "d" in tracker
        assert len(tracker) == 2


# ---------------------------------------------------------------------------
# Orphaned branches
# ---------------------------------------------------------------------------


class TestOrphanedBranches:
    async def test_orphan_becomes_pr(self, recovery, code_host, repo_ops):
        _add_plan(code_host, TaskStatus.BLOCKED)
        repo_ops.remote_branches = ["main", BRANCH]

        assert await recovery.recover_orphaned_branches(await _snapshots(recovery)) == KEY

        prs = code_host.pulls[(OWNER, REPO)]
        assert [pr.head_ref for pr in prs] == [BRANCH]
        assert ("checkout", BRANCH) in repo_ops.calls
        assert _task(code_host).status == TaskStatus.COMPLETED

    async def test_legacy_branch_name_is_found(self, recovery, code_host, repo_ops):
        _add_plan(code_host, TaskStatus.BLOCKED)
        repo_ops.remote_branches = ["main", "feature/task-1-add-limiter-middleware"]

        assert await recovery.recover_orphaned_branches(await _snapshots(recovery)) == KEY
        assert code_host.pulls[(OWNER, REPO)][0].head_ref == "feature/task-1-add-limiter-middleware"

    async def test_branch_with_existing_pr_is_skipped(self, recovery, code_host, repo_ops):
        _add_plan(code_host, TaskStatus.BLOCKED)
        repo_ops.remote_branches = [BRANCH]
        code_host.pulls[(OWNER, REPO)] = [
            PullRequest(100, "task(1)", head_ref=BRANCH, state="closed")
        ]

        assert await recovery.recover_orphaned_branches(await _snapshots(recovery)) is None
        assert len(code_host.pulls[(OWNER, REPO)]) == 1

    async def test_assigned_blocked_task_is_not_orphaned(self, recovery, code_host, repo_ops):
        _add_plan(code_host, TaskStatus.BLOCKED, "beta")
        repo_ops.remote_branches = [BRANCH]

        assert await recovery.recover_orphaned_branches(await _snapshots(recovery)) is None
        assert repo_ops.calls == []

    async def test_failed_recovery_counts_a_retry(self, recovery, code_host):
        recovery.repo_ops = FakeRepoOps(commits=[], remote_branches=[BRANCH])
        _add_plan(code_host, TaskStatus.BLOCKED)

        assert await recovery.recover_orphaned_branches(await _snapshots(recovery)) is None
        assert recovery.tracker.get(KEY).retry_count == 1
        assert code_host.pulls.get((OWNER, REPO), []) == []
