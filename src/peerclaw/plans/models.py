# Plan models - tasks recorded as markdown inside a plan issue.
# Created: 2026-02-21
#
# Defines:
# - TaskStatus / PlanStatus: lifecycle enums
# - PlanTask: one claimable unit of work
# - ParsedPlan: the structured view of a plan issue body
# - PlanRef: where a plan lives (owner, repo, issue number)

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ============================================================================
# Enums
# ============================================================================


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "pending"
    CLAIMED = "claimed"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


class PlanStatus(str, Enum):
    """Derived plan status."""

    ACTIVE = "active"
    BLOCKED = "blocked"
    COMPLETE = "complete"


# ============================================================================
# Data Models
# ============================================================================


@dataclass(frozen=True)
class PlanRef:
    """Coordinates of a plan issue."""

    owner: str
    repo: str
    issue_number: int

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}#{self.issue_number}"

    def task_key(self, task_number: int) -> str:
        return f"{self.slug}/task-{task_number}"


@dataclass
class PlanTask:
    """A unit of work within a plan.

    Attributes:
        number: Unique within the plan
        title: Short task name
        description: What to do
        status: Current lifecycle status
        assignee: Code-host login of the claiming agent (no leading @)
        dependencies: Task numbers that must be completed first
        files: Hint list of paths the task is expected to touch
        estimate: Free-form size estimate
    """

    number: int
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    assignee: str | None = None
    dependencies: list[int] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    estimate: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "assignee": self.assignee,
            "dependencies": self.dependencies,
            "files": self.files,
            "estimate": self.estimate,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanTask:
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=TaskStatus(data.get("status", "pending")),
            assignee=data.get("assignee"),
            dependencies=data.get("dependencies", []),
            files=data.get("files", []),
            estimate=data.get("estimate"),
        )


@dataclass
class ParsedPlan:
    """Structured view of a plan issue."""

    title: str
    goal: str = ""
    context: str = ""
    tasks: list[PlanTask] = field(default_factory=list)
    verification: list[tuple[str, bool]] = field(default_factory=list)
    raw_body: str = ""

    @property
    def status(self) -> PlanStatus:
        return derive_plan_status(self.tasks)

    def get_task(self, number: int) -> PlanTask | None:
        return next((t for t in self.tasks if t.number == number), None)


def derive_plan_status(tasks: list[PlanTask]) -> PlanStatus:
    if tasks and all(t.status == TaskStatus.COMPLETED for t in tasks):
        return PlanStatus.COMPLETE
    if any(t.status == TaskStatus.BLOCKED for t in tasks):
        return PlanStatus.BLOCKED
    return PlanStatus.ACTIVE
