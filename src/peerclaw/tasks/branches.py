"""Deterministic task branch names.

The branch name is derived only from the task number and title so any peer
(or a later recovery pass) can find the work again without plan metadata.
"""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
SLUG_MAX = 40


def slugify(title: str, max_len: int = SLUG_MAX) -> str:
    slug = _NON_ALNUM.sub("-", title.lower()).strip("-")
    return slug[:max_len].rstrip("-")


def task_branch_name(task_number: int, title: str) -> str:
    """e.g. ``task-3-add-limiter-middleware``."""
    slug = slugify(title)
    return f"task-{task_number}-{slug}" if slug else f"task-{task_number}"


def task_branch_candidates(task_number: int, title: str) -> list[str]:
    """Current name first, then names used by older releases."""
    slug = slugify(title)
    candidates = [
        task_branch_name(task_number, title),
        f"task-{task_number}",
        f"task/{task_number}-{slug}",
        f"feature/task-{task_number}-{slug}",
    ]
    return list(dict.fromkeys(candidates))


def is_task_branch(branch: str, task_number: int, title: str) -> bool:
    """True for any name this task's branch may have, including a bare ``task-N``."""
    if branch in task_branch_candidates(task_number, title):
        return True
    return branch.startswith(f"task-{task_number}-")


def branch_mentions_task(branch: str, task_number: int) -> bool:
    """Loose match used when no candidate name exists on the remote."""
    return re.search(rf"task[-/_]?{task_number}(?!\d)", branch) is not None
