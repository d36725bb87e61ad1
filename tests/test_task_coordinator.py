"""Tests for the claim -> execute -> verify -> report pipeline."""

import pytest
from conftest import FakeCodingAgent, FakeRepoOps, FakeSocial, plan_issue

from peerclaw.collaborators import CodingAgentResult
from peerclaw.config import Settings
from peerclaw.errors import FatalCollaboratorError, Gate
from peerclaw.plans import PlanRef, PlanTask, TaskStatus, parse_plan, update_task_in_body
from peerclaw.tasks import ClaimState, TaskCoordinator, TaskOutcome

OWNER, REPO = "acme", "widgets"
REF = PlanRef(OWNER, REPO, 7)


def _settings(login: str) -> Settings:
    return Settings(agent_name=login, code_host_login=login, peers=["alpha", "beta"])


def _coordinator(code_host, login="alpha", repo_ops=None, agent=None, social=None, tmp_path=None):
    return TaskCoordinator(
        _settings(login),
        code_host,
        repo_ops or FakeRepoOps(),
        agent or FakeCodingAgent(),
        social=social,
        workrepos=tmp_path,
    )


def _task(code_host, number=1):
    issue = code_host.issues[(OWNER, REPO, REF.issue_number)]
    return parse_plan(issue.title, issue.body).get_task(number)


@pytest.fixture
def one_task_plan(code_host):
    task = PlanTask(1, "Add limiter middleware", "Do it")
    code_host.add_issue(OWNER, REPO, plan_issue(7, [task]))
    return code_host


@pytest.fixture
def two_task_plan(code_host):
    code_host.add_issue(
        OWNER,
        REPO,
        plan_issue(
            7,
            [
                PlanTask(1, "Add limiter middleware", "Do it"),
                PlanTask(2, "Wire config", "Then this", dependencies=[1]),
            ],
        ),
    )
    return code_host


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


class TestClaim:
    async def test_claims_lowest_claimable(self, two_task_plan):
        coordinator = _coordinator(two_task_plan)
        result = await coordinator.claim_next(REF)

        assert result.state == ClaimState.CLAIMED
        assert result.task.number == 1
        task = _task(two_task_plan)
        assert task.status == TaskStatus.CLAIMED
        assert task.assignee == "alpha"
        assert ("add", 7, "alpha") in two_task_plan.assignee_calls
        assert any("Claiming **Task 1" in c for c in two_task_plan.comment_bodies(OWNER, REPO, 7))

    async def test_second_peer_finds_nothing(self, one_task_plan):
        alpha = _coordinator(one_task_plan, "alpha")
        beta = _coordinator(one_task_plan, "beta")

        assert (await alpha.claim_next(REF)).state == ClaimState.CLAIMED
        assert (await beta.claim_next(REF)).state == ClaimState.NOTHING
        assert _task(one_task_plan).assignee == "alpha"

    async def test_race_loser_defers_without_retry(self, one_task_plan):
        """Beta's write lands right after alpha's: alpha sees it on re-read and backs off."""
        writes = []

        def beta_wins(owner, repo, number):
            writes.append(number)
            if len(writes) == 1:
                issue = one_task_plan.issues[(owner, repo, number)]
                issue.body = update_task_in_body(
                    issue.body, 1, status=TaskStatus.CLAIMED, assignee="beta"
                )

        one_task_plan.on_update = beta_wins
        alpha = _coordinator(one_task_plan, "alpha")
        result = await alpha.claim_next(REF)

        assert result.state == ClaimState.CONFLICT
        assert len(writes) == 1
        task = _task(one_task_plan)
        assert task.status == TaskStatus.CLAIMED
        assert task.assignee == "beta"
        assert ("add", 7, "alpha") not in one_task_plan.assignee_calls

    async def test_excluded_tasks_are_skipped(self, two_task_plan):
        coordinator = _coordinator(two_task_plan)
        result = await coordinator.claim_next(REF, exclude={1})
        assert result.state == ClaimState.NOTHING
        assert _task(two_task_plan).assignee is None

    async def test_claim_from_repos_walks_open_plans(self, two_task_plan):
        coordinator = _coordinator(two_task_plan)
        result = await coordinator.claim_from_repos([f"{OWNER}/{REPO}", "malformed"])
        assert result.state == ClaimState.CLAIMED
        assert result.snapshot.ref == REF


# ---------------------------------------------------------------------------
# Execute + report
# ---------------------------------------------------------------------------


async def _claim_and_execute(coordinator):
    claim = await coordinator.claim_next(REF)
    assert claim.state == ClaimState.CLAIMED
    return await coordinator.execute(claim.snapshot, claim.task)


class TestExecute:
    async def test_success_opens_pr_and_completes_plan(self, one_task_plan, tmp_path):
        social = FakeSocial()
        repo_ops = FakeRepoOps()
        coordinator = _coordinator(
            one_task_plan, repo_ops=repo_ops, social=social, tmp_path=tmp_path
        )

        result = await _claim_and_execute(coordinator)

        assert result.outcome == TaskOutcome.COMPLETED
        assert result.pull_request.head_ref == "task-1-add-limiter-middleware"
        assert result.pull_request.title == "task(1): Add limiter middleware"
        assert repo_ops.pushed == ["task-1-add-limiter-middleware"]
        assert one_task_plan.reviewers == [(result.pull_request.number, ["owner", "beta"])]
        assert _task(one_task_plan).status == TaskStatus.COMPLETED

        assert result.plan_completed is True
        issue = one_task_plan.issues[(OWNER, REPO, 7)]
        assert issue.state == "closed"
        assert "complete" in issue.labels
        assert len(social.posts) == 1
        assert coordinator.active_task is None

    async def test_success_leaves_plan_open_with_remaining_tasks(self, two_task_plan):
        coordinator = _coordinator(two_task_plan)
        result = await _claim_and_execute(coordinator)

        assert result.outcome == TaskOutcome.COMPLETED
        assert result.plan_completed is False
        assert two_task_plan.issues[(OWNER, REPO, 7)].state == "open"

    @pytest.mark.parametrize(
        "gate,ops",
        [
            (Gate.BRANCH, {"head": "main"}),
            (Gate.CHANGES, {"commits": []}),
            (Gate.CHANGES, {"files": []}),
            (Gate.TESTS, {"tests_ok": False}),
            (Gate.PUSH, {"push_ok": False}),
            (Gate.PUSH_VERIFY, {"on_remote": False}),
        ],
    )
    async def test_gate_failure_never_completes(self, one_task_plan, gate, ops):
        coordinator = _coordinator(one_task_plan, repo_ops=FakeRepoOps(**ops))
        result = await _claim_and_execute(coordinator)

        assert result.outcome == TaskOutcome.FAILED
        assert result.report.failure.gate == gate
        assert one_task_plan.pulls.get((OWNER, REPO), []) == []
        task = _task(one_task_plan)
        assert task.status == TaskStatus.BLOCKED
        assert task.assignee is None
        comments = one_task_plan.comment_bodies(OWNER, REPO, 7)
        assert any(gate.value in c and "Marked `blocked`" in c for c in comments)
        assert ("remove", 7, "alpha") in one_task_plan.assignee_calls

    async def test_agent_block_keeps_owner_and_labels(self, one_task_plan):
        agent = FakeCodingAgent(
            CodingAgentResult(success=False, blocked=True, block_reason="needs an API key")
        )
        coordinator = _coordinator(one_task_plan, agent=agent)
        result = await _claim_and_execute(coordinator)

        assert result.outcome == TaskOutcome.BLOCKED
        task = _task(one_task_plan)
        assert task.status == TaskStatus.BLOCKED
        assert task.assignee == "alpha"
        assert "blocked" in one_task_plan.issues[(OWNER, REPO, 7)].labels
        assert one_task_plan.pulls.get((OWNER, REPO), []) == []

    async def test_agent_failure_reports_failed(self, one_task_plan):
        agent = FakeCodingAgent(CodingAgentResult(success=False, error="compile error"))
        repo_ops = FakeRepoOps()
        coordinator = _coordinator(one_task_plan, agent=agent, repo_ops=repo_ops)
        result = await _claim_and_execute(coordinator)

        assert result.outcome == TaskOutcome.FAILED
        assert "compile error" in result.error
        assert repo_ops.pushed == []

    async def test_agent_crash_is_contained(self, one_task_plan):
        coordinator = _coordinator(one_task_plan, agent=FakeCodingAgent(RuntimeError("segfault")))
        result = await _claim_and_execute(coordinator)
        assert result.outcome == TaskOutcome.FAILED
        assert "segfault" in result.error

    async def test_fatal_agent_error_propagates(self, one_task_plan):
        agent = FakeCodingAgent(FatalCollaboratorError("token revoked", "coding_agent"))
        coordinator = _coordinator(one_task_plan, agent=agent)
        with pytest.raises(FatalCollaboratorError):
            await _claim_and_execute(coordinator)
        assert coordinator.active_task is None

    async def test_pr_failure_is_not_completion(self, one_task_plan):
        one_task_plan.fail.add("create_pull_request")
        coordinator = _coordinator(one_task_plan)
        result = await _claim_and_execute(coordinator)

        assert result.outcome == TaskOutcome.FAILED
        assert _task(one_task_plan).status == TaskStatus.BLOCKED

    async def test_clone_failure(self, one_task_plan):
        coordinator = _coordinator(one_task_plan, repo_ops=FakeRepoOps(clone_ok=False))
        result = await _claim_and_execute(coordinator)
        assert result.outcome == TaskOutcome.FAILED
        assert "workspace" in result.error
