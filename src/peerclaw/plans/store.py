"""Plan access over the code host, with optimistic read-modify-write.

There is no lock service. Every write follows the same discipline:
fetch the issue fresh, compute the new body from that copy, write the whole
body, then fetch again and check the write is what peers now see. If another
peer's write landed instead, the caller gets ``conflict=True`` and defers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from peerclaw.collaborators import CodeHostClient, Issue
from peerclaw.errors import ClaimConflict
from peerclaw.plans.models import ParsedPlan, PlanRef
from peerclaw.plans.parser import parse_plan

logger = logging.getLogger(__name__)


@dataclass
class PlanSnapshot:
    ref: PlanRef
    issue: Issue
    plan: ParsedPlan


@dataclass
class WriteOutcome:
    applied: bool
    conflict: bool = False
    snapshot: PlanSnapshot | None = None
    error: str | None = None


# mutate(fresh) -> new body. Raise ClaimConflict when the fresh copy no longer allows the change.
Mutator = Callable[[PlanSnapshot], str]
# verify(re-read) -> None. Raise ClaimConflict when the re-read shows someone else's write.
Verifier = Callable[[PlanSnapshot], None]


class PlanStore:
    """Reads and writes plan issues through the code-host client."""

    def __init__(self, code_host: CodeHostClient):
        self.code_host = code_host

    async def fetch(self, ref: PlanRef) -> PlanSnapshot | None:
        """Fetch and parse a plan. Returns None on API failure or if it is no longer a plan."""
        result = await self.code_host.get_issue(ref.owner, ref.repo, ref.issue_number)
        if not result.success or result.data is None:
            logger.warning("Could not fetch plan %s: %s", ref.slug, result.error)
            return None
        issue = result.data
        plan = parse_plan(issue.title, issue.body)
        if plan is None:
            return None
        return PlanSnapshot(ref=ref, issue=issue, plan=plan)

    async def list_open_plans(self, owner: str, repo: str) -> list[PlanSnapshot]:
        result = await self.code_host.list_issues(owner, repo, state="open")
        if not result.success:
            logger.warning("Could not list issues for %s/%s: %s", owner, repo, result.error)
            return []
        snapshots = []
        for issue in result.data or []:
            plan = parse_plan(issue.title, issue.body)
            if plan is not None:
                snapshots.append(PlanSnapshot(PlanRef(owner, repo, issue.number), issue, plan))
        return snapshots

    async def read_modify_write(
        self, ref: PlanRef, mutate: Mutator, verify: Verifier
    ) -> WriteOutcome:
        """Apply ``mutate`` to a fresh copy of the plan and confirm it stuck."""
        fresh = await self.fetch(ref)
        if fresh is None:
            return WriteOutcome(applied=False, error=f"plan {ref.slug} unavailable")

        try:
            new_body = mutate(fresh)
        except ClaimConflict as e:
            logger.info("Plan %s changed under us before writing: %s", ref.slug, e)
            return WriteOutcome(applied=False, conflict=True, snapshot=fresh)

        if new_body != fresh.issue.body:
            write = await self.code_host.update_issue(
                ref.owner, ref.repo, ref.issue_number, body=new_body
            )
            if not write.success:
                return WriteOutcome(applied=False, snapshot=fresh, error=write.error)

        confirmed = await self.fetch(ref)
        if confirmed is None:
            return WriteOutcome(applied=False, error=f"plan {ref.slug} unavailable after write")

        try:
            verify(confirmed)
        except ClaimConflict as e:
            logger.info("Lost write race on %s: %s", ref.slug, e)
            return WriteOutcome(applied=False, conflict=True, snapshot=confirmed)

        return WriteOutcome(applied=True, snapshot=confirmed)
