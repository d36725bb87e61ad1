"""Plan markdown parsing and rewriting.

A plan issue body looks like::

    # [PLAN] Add rate limiting

    ## Goal
    Protect the API from bursts.

    ## Context
    ...

    ## Tasks

    ### Task 1: Add limiter middleware
    **Status:** pending
    **Assignee:** (empty if unclaimed)
    **Estimate:** 2h
    **Dependencies:** none
    **Files:**
    - `api/middleware.py`

    **Description:**
    Token bucket per client.

    ---

    ### Task 2: Wire config
    **Status:** pending
    **Assignee:** (empty if unclaimed)
    **Dependencies:** Task 1
    ...

    ## Verification
    - [ ] Burst test passes

Peers edit the whole body, so ``update_task_in_body`` only touches the Status
and Assignee lines of one task and leaves every other byte alone.
"""

import logging
import re

from peerclaw.plans.models import ParsedPlan, PlanTask, TaskStatus

logger = logging.getLogger(__name__)

PLAN_MARKER = "[PLAN]"
UNCLAIMED = "(empty if unclaimed)"

_TASK_HEADING = re.compile(r"^### Task (\d+):\s*(.+)$")
_TASK_HEADING_PREFIX = re.compile(r"^### Task (\d+):")
_STATUS = re.compile(r"^\*\*Status:\*\*\s*(.+)$")
_ASSIGNEE = re.compile(r"^\*\*Assignee:\*\*\s*@?(.*)$")
_ESTIMATE = re.compile(r"^\*\*Estimate:\*\*\s*(.+)$")
_DEPENDENCIES = re.compile(r"^\*\*Dependencies:\*\*\s*(.+)$")
_FILE = re.compile(r"^- `([^`]+)`")
_CHECKBOX = re.compile(r"^- \[([ xX])\]\s*(.+)$")
_DEP_NUMBER = re.compile(r"(\d+)")

_STATUSES = {s.value for s in TaskStatus}


def is_plan(title: str, body: str) -> bool:
    return title.startswith(PLAN_MARKER) or f"# {PLAN_MARKER}" in (body or "")


def _parse_dependencies(raw: str) -> list[int]:
    if raw.strip().lower() == "none":
        return []
    deps = []
    for part in raw.split(","):
        match = _DEP_NUMBER.search(part)
        if match:
            deps.append(int(match.group(1)))
    return deps


def parse_plan(title: str, body: str) -> ParsedPlan | None:
    """Parse a plan issue. Returns None when the issue is not a plan."""
    if not body:
        return None
    if not is_plan(title, body):
        return None

    plan = ParsedPlan(title=title.replace(PLAN_MARKER, "").strip(), raw_body=body)
    section = None
    task: PlanTask | None = None
    task_lines: list[str] = []

    def _finish_task() -> None:
        nonlocal task, task_lines
        if task is not None:
            task.description = "\n".join(task_lines).strip()
            plan.tasks.append(task)
        task = None
        task_lines = []

    for line in body.split("\n"):
        stripped = line.strip()

        if stripped.startswith("## Goal"):
            section = "goal"
            continue
        if stripped.startswith("## Context"):
            section = "context"
            continue
        if stripped.startswith("## Tasks"):
            section = "tasks"
            continue
        if stripped.startswith("## Verification"):
            _finish_task()
            section = "verification"
            continue

        if section == "goal":
            if stripped:
                plan.goal = f"{plan.goal} {stripped}".strip()
        elif section == "context":
            if stripped:
                plan.context = f"{plan.context}\n{stripped}".strip()
        elif section == "tasks":
            heading = _TASK_HEADING.match(stripped)
            if heading:
                _finish_task()
                task = PlanTask(number=int(heading.group(1)), title=heading.group(2).strip())
                continue
            if task is None:
                continue

            if m := _STATUS.match(stripped):
                value = m.group(1).strip().lower()
                if value in _STATUSES:
                    task.status = TaskStatus(value)
                continue
            if m := _ASSIGNEE.match(stripped):
                value = m.group(1).strip()
                task.assignee = value if value and value != UNCLAIMED else None
                continue
            if m := _ESTIMATE.match(stripped):
                task.estimate = m.group(1).strip()
                continue
            if m := _DEPENDENCIES.match(stripped):
                task.dependencies = _parse_dependencies(m.group(1))
                continue
            if stripped in ("**Files:**", "**Description:**", "---"):
                continue
            if m := _FILE.match(stripped):
                task.files.append(m.group(1))
                continue
            task_lines.append(line)
        elif section == "verification":
            if m := _CHECKBOX.match(stripped):
                plan.verification.append((m.group(2).strip(), m.group(1).lower() == "x"))

    _finish_task()
    logger.debug(
        "Parsed plan %r: %d tasks, status %s", plan.title, len(plan.tasks), plan.status.value
    )
    return plan


def format_task(task: PlanTask) -> str:
    lines = [
        f"### Task {task.number}: {task.title}",
        f"**Status:** {task.status.value}",
        f"**Assignee:** {'@' + task.assignee if task.assignee else UNCLAIMED}",
    ]
    if task.estimate:
        lines.append(f"**Estimate:** {task.estimate}")
    deps = ", ".join(f"Task {d}" for d in task.dependencies) if task.dependencies else "none"
    lines.append(f"**Dependencies:** {deps}")
    if task.files:
        lines.append("**Files:**")
        lines.extend(f"- `{f}`" for f in task.files)
    lines.append("")
    lines.append("**Description:**")
    lines.append(task.description)
    return "\n".join(lines)


def format_plan(plan: ParsedPlan) -> str:
    """Render a plan back to the markdown layout ``parse_plan`` reads."""
    parts = [f"# {PLAN_MARKER} {plan.title}", "", "## Goal", plan.goal, ""]
    if plan.context:
        parts += ["## Context", plan.context, ""]
    parts += ["## Tasks", ""]
    parts.append("\n\n---\n\n".join(format_task(t) for t in plan.tasks))
    parts.append("")
    if plan.verification:
        parts += ["## Verification"]
        parts += [f"- [{'x' if done else ' '}] {text}" for text, done in plan.verification]
        parts.append("")
    return "\n".join(parts)


def update_task_in_body(
    body: str,
    task_number: int,
    *,
    status: TaskStatus | None = None,
    assignee: str | None = None,
    clear_assignee: bool = False,
) -> str:
    """Rewrite the Status/Assignee lines of one task, leaving the rest untouched.

    ``assignee=None`` leaves the line alone unless ``clear_assignee`` is set.
    """
    lines = body.split("\n")
    result = []
    in_target = False

    for i, line in enumerate(lines):
        stripped = line.strip()
        heading = _TASK_HEADING_PREFIX.match(stripped)
        if heading:
            in_target = int(heading.group(1)) == task_number
        elif in_target and stripped.startswith("## "):
            in_target = False
        elif (
            in_target
            and stripped == "---"
            and i + 1 < len(lines)
            and lines[i + 1].strip().startswith("### Task")
        ):
            in_target = False

        if in_target and status is not None and stripped.startswith("**Status:**"):
            result.append(f"**Status:** {status.value}")
            continue
        if in_target and (assignee is not None or clear_assignee):
            if stripped.startswith("**Assignee:**"):
                result.append(f"**Assignee:** {'@' + assignee if assignee else UNCLAIMED}")
                continue
        result.append(line)

    return "\n".join(result)


def get_claimable_tasks(plan: ParsedPlan) -> list[PlanTask]:
    """Tasks that are pending, unassigned, and whose dependencies are all completed.

    Returned in ascending task-number order.
    """
    completed = {t.number for t in plan.tasks if t.status == TaskStatus.COMPLETED}
    claimable = [
        t
        for t in plan.tasks
        if t.status == TaskStatus.PENDING
        and not t.assignee
        and all(dep in completed for dep in t.dependencies)
    ]
    return sorted(claimable, key=lambda t: t.number)


def is_plan_complete(plan: ParsedPlan) -> bool:
    return bool(plan.tasks) and all(t.status == TaskStatus.COMPLETED for t in plan.tasks)
