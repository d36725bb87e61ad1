# Plans - collaborative work recorded as markdown in code-host issues.
# Created: 2026-02-21

from peerclaw.plans.models import ParsedPlan, PlanRef, PlanStatus, PlanTask, TaskStatus
from peerclaw.plans.parser import (
    format_plan,
    get_claimable_tasks,
    is_plan,
    is_plan_complete,
    parse_plan,
    update_task_in_body,
)
from peerclaw.plans.store import PlanSnapshot, PlanStore, WriteOutcome

__all__ = [
    "ParsedPlan",
    "PlanRef",
    "PlanSnapshot",
    "PlanStatus",
    "PlanStore",
    "PlanTask",
    "TaskStatus",
    "WriteOutcome",
    "format_plan",
    "get_claimable_tasks",
    "is_plan",
    "is_plan_complete",
    "parse_plan",
    "update_task_in_body",
]
