"""Carry out queued commitments.

Created: 2026-02-24
Changes:
  - 2026-03-06: post_social writes the post with the content generator.
  - 2026-03-06: create_issue resumes after a partial failure; create_plan dedups by title only.
  - 2026-02-28: create_plan reuses an existing open plan instead of opening a duplicate.

One fulfiller per ``CommitmentType``. Fulfillers return a ``Result`` and never
raise for ordinary collaborator failures; anything unexpected is caught by
``process`` and recorded as a failed attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from peerclaw.collaborators import CodeHostClient, ContentGenerator, Result, SocialClient
from peerclaw.commitments.models import Commitment, CommitmentType
from peerclaw.commitments.queue import CommitmentQueue, normalize_description
from peerclaw.config import Settings
from peerclaw.errors import FatalCollaboratorError
from peerclaw.plans.models import ParsedPlan, PlanTask
from peerclaw.plans.parser import PLAN_MARKER, format_plan

logger = logging.getLogger(__name__)

MAX_ISSUES_PER_COMMITMENT = 5

SOCIAL_POST_PROMPT = (
    "You are {agent}. Earlier you promised: \"{promise}\". Write the post that keeps that "
    "promise. Do not restate the promise. Return only the post text."
)


@dataclass
class FulfillmentStats:
    attempted: int = 0
    completed: int = 0
    failed: int = 0


class CommitmentFulfiller:
    """Dispatches pending commitments to type-specific fulfillers."""

    def __init__(
        self,
        queue: CommitmentQueue,
        code_host: CodeHostClient,
        social: SocialClient,
        generator: ContentGenerator,
        settings: Settings,
    ):
        self.queue = queue
        self.code_host = code_host
        self.social = social
        self.generator = generator
        self.settings = settings
        self._handlers: dict[
            CommitmentType, Callable[[Commitment], Awaitable[Result[dict[str, Any]]]]
        ] = {
            CommitmentType.CREATE_ISSUE: self._create_issue,
            CommitmentType.CREATE_PLAN: self._create_plan,
            CommitmentType.COMMENT_ISSUE: self._comment_issue,
            CommitmentType.POST_SOCIAL: self._post_social,
        }

    async def process_all(self) -> FulfillmentStats:
        """Attempt every pending commitment once."""
        stats = FulfillmentStats()
        for commitment in self.queue.pending():
            stats.attempted += 1
            if await self.process(commitment):
                stats.completed += 1
            else:
                stats.failed += 1
        if stats.attempted:
            logger.info(
                "Commitments: %d attempted, %d completed, %d failed",
                stats.attempted,
                stats.completed,
                stats.failed,
            )
        return stats

    async def process(self, commitment: Commitment) -> bool:
        self.queue.mark_in_progress(commitment.id)
        handler = self._handlers.get(commitment.type)
        if handler is None:
            self.queue.mark_failed(commitment.id, f"Unknown commitment type: {commitment.type}")
            return False

        logger.info("Fulfilling commitment %s (%s)", commitment.id, commitment.type.value)
        try:
            result = await handler(commitment)
        except FatalCollaboratorError:
            raise
        except Exception as e:
            logger.exception("Commitment %s raised", commitment.id)
            result = Result.fail(str(e))

        if result.success:
            self.queue.mark_completed(commitment.id, result.data)
            return True
        self.queue.mark_failed(commitment.id, result.error or "unknown error")
        return False

    # =========================================================================
    # Fulfillers
    # =========================================================================

    def _resolve_repo(self, params: dict[str, Any]) -> tuple[str, str] | None:
        owner, repo = params.get("owner"), params.get("repo")
        if owner and repo:
            return owner, repo
        for slug in self.settings.watched_repos:
            owner, _, repo = slug.partition("/")
            if owner and repo:
                return owner, repo
        return None

    @staticmethod
    def _source_quote(commitment: Commitment) -> str:
        quoted = "\n".join(f"> {line}" for line in commitment.source_reply_text.splitlines())
        return quoted or "> (no reply text)"

    async def _create_issue(self, commitment: Commitment) -> Result[dict[str, Any]]:
        resolved = self._resolve_repo(commitment.params)
        if resolved is None:
            return Result.fail("no_workspace_context")
        owner, repo = resolved

        count = max(1, min(int(commitment.params.get("count") or 1), MAX_ISSUES_PER_COMMITMENT))
        base_title = commitment.params.get("title") or commitment.description
        body = "\n".join(
            [
                commitment.description,
                "",
                "---",
                "",
                self._source_quote(commitment),
                "",
                "*Created from a social thread commitment.*",
            ]
        )
        # Issues made by an earlier, partly failed attempt
        created: list[dict[str, Any]] = list(commitment.params.get("created_issues") or [])
        done = {item["title"] for item in created}
        for i in range(count):
            title = f"{base_title} ({i + 1}/{count})" if count > 1 else base_title
            if title in done:
                continue
            result = await self.code_host.create_issue(owner, repo, title, body)
            if not result.success:
                return Result.fail(result.error or "create_issue failed")
            created.append({"title": title, "number": result.data.number, "url": result.data.url})
            self.queue.record_progress(commitment.id, created_issues=created)
        issues = [{"number": item["number"], "url": item["url"]} for item in created]
        return Result.ok({"issues": issues, "count": count})

    async def _create_plan(self, commitment: Commitment) -> Result[dict[str, Any]]:
        resolved = self._resolve_repo(commitment.params)
        if resolved is None:
            return Result.fail("no_workspace_context")
        owner, repo = resolved

        title = commitment.params.get("title") or commitment.description

        # Several peers can promise the same plan from one thread; only one should create it.
        existing = await self.code_host.list_issues(
            owner, repo, "open", labels=[self.settings.plan_label]
        )
        wanted = normalize_description(title)
        open_plans = (existing.data or []) if existing.success else []
        for issue in open_plans:
            if normalize_description(issue.title.removeprefix(PLAN_MARKER)) != wanted:
                continue
            logger.info(
                "Plan already open in %s/%s (#%d), not duplicating", owner, repo, issue.number
            )
            return Result.ok({"issue_number": issue.number, "url": issue.url, "deduplicated": True})

        plan = ParsedPlan(
            title=title,
            goal=commitment.description,
            context=(
                "Plan created from a social thread commitment.\n\n"
                f"Original reply:\n{self._source_quote(commitment)}"
            ),
            tasks=[
                PlanTask(
                    number=1,
                    title="Define scope and requirements",
                    description="Based on the commitment made, define what needs to be done.",
                )
            ],
        )
        result = await self.code_host.create_issue(
            owner,
            repo,
            f"{PLAN_MARKER} {plan.title}",
            format_plan(plan),
            labels=[self.settings.plan_label],
        )
        if not result.success:
            return Result.fail(result.error or "create_plan failed")
        return Result.ok({"issue_number": result.data.number, "url": result.data.url})

    async def _comment_issue(self, commitment: Commitment) -> Result[dict[str, Any]]:
        params = commitment.params
        owner, repo = params.get("owner"), params.get("repo")
        number = params.get("issue_number")
        if not owner or not repo or not number:
            return Result.fail("Missing owner, repo, or issue_number in params")
        body = params.get("body") or commitment.description
        result = await self.code_host.create_comment(owner, repo, int(number), body)
        if not result.success:
            return Result.fail(result.error or "create_comment failed")
        return Result.ok({"owner": owner, "repo": repo, "issue_number": int(number)})

    async def _post_social(self, commitment: Commitment) -> Result[dict[str, Any]]:
        text = commitment.params.get("text") or await self._write_post(commitment)
        if not text:
            return Result.fail("content generator returned no post text")
        result = await self.social.post_text(text)
        if not result.success:
            return Result.fail(result.error or "post failed")
        return Result.ok(dict(result.data or {}))

    async def _write_post(self, commitment: Commitment) -> str:
        """Generate the promised post from the thread it was promised in."""
        thread = await self.social.get_thread(commitment.source_thread_uri)
        if thread.success and thread.data:
            transcript = "\n".join(f"@{m.author}: {m.text}" for m in thread.data)
        else:
            transcript = commitment.source_reply_text or commitment.description
        generation = await self.generator.chat_with_tools(
            SOCIAL_POST_PROMPT.format(
                agent=self.settings.agent_name, promise=commitment.description
            ),
            [{"role": "user", "content": transcript}],
            [],
        )
        return generation.text.strip()
