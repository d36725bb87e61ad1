"""PeerClaw Scheduler - independent timed loops around a single active mode.

Created: 2026-02-20
Changes:
  - 2026-03-06: Unanswered code-host threads stay pending across busy cycles.
  - 2026-03-06: Heartbeat prunes idle conversations.
  - 2026-03-03: Commitment fulfillment drains every pending entry per cycle.
  - 2026-02-27: Plan awareness runs stuck/orphan recovery before claiming.
  - 2026-02-26: Remote version mismatch stops the agent.
  - 2026-02-22: Response jitter + re-check before replying when peers exist.

Every loop is an APScheduler interval job with a deterministic per-agent
jitter. A loop that changes state enters a ``Mode`` first and skips its cycle
when another mode is active. An exception in one cycle is logged and the job
simply fires again next interval; only ``FatalCollaboratorError`` or a version
mismatch stops the whole scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from peerclaw import __version__
from peerclaw.collaborators import (
    ActionExecutor,
    ActionReport,
    CodeHostClient,
    CodeHostNotification,
    CodingAgent,
    ContentGenerator,
    Issue,
    RepositoryOps,
    SocialClient,
    SocialNotification,
)
from peerclaw.commitments import CommitmentFulfiller, CommitmentQueue, enqueue_from_reply
from peerclaw.commitments.fulfill import FulfillmentStats
from peerclaw.config import Settings, get_settings
from peerclaw.conversations import ConversationTracker, is_closing_message, is_emoji_only
from peerclaw.errors import FatalCollaboratorError
from peerclaw.jitter import response_jitter_ms, timer_jitter
from peerclaw.logging_setup import setup_logging
from peerclaw.modes import Mode, ModeController
from peerclaw.plans import is_plan
from peerclaw.state import SessionStore
from peerclaw.tasks import ClaimState, ExecutionResult, GitCLI, RecoveryManager, TaskCoordinator
from peerclaw.version_check import fetch_remote_version

logger = logging.getLogger(__name__)

RESPONDABLE_REASONS = {"reply", "mention", "quote"}
_AUTH_ERROR = re.compile(
    r"\b(?:401|unauthori[sz]ed|invalid (?:credentials|token|password)|"
    r"auth(?:entication)? (?:failed|required)|expired token)\b",
    re.IGNORECASE,
)

SOCIAL_SYSTEM_PROMPT = (
    "You are {agent}, replying in a social thread. Reply only if you add something. "
    "Keep it short. Use the reply tool to post."
)
CODE_HOST_SYSTEM_PROMPT = (
    "You are {agent}, collaborating on {slug}. Comment only when it moves the work forward. "
    "Use the comment tool to post."
)
EXPRESSION_PROMPT = "You are {agent}. Write one short original post. Return only the post text."
REFLECTION_PROMPT = (
    "You are {agent}. Reflect on recent activity. If a concrete change to your own code "
    "would help, request it with the self_improve tool."
)

Tick = Callable[[], Awaitable[Any]]


@dataclass
class LoopSpec:
    name: str
    interval_setting: str
    tick: str
    initial_delay_setting: str | None = None


LOOPS = [
    LoopSpec("session-refresh", "session_refresh_interval", "session_refresh_tick"),
    LoopSpec(
        "version-check",
        "version_check_interval",
        "version_check_tick",
        "version_check_initial_delay",
    ),
    LoopSpec("awareness", "awareness_interval", "awareness_tick"),
    LoopSpec("code-host-awareness", "code_host_awareness_interval", "code_host_awareness_tick"),
    LoopSpec("expression", "expression_check_interval", "expression_tick"),
    LoopSpec("reflection", "reflection_check_interval", "reflection_tick"),
    LoopSpec("engagement-check", "engagement_check_interval", "engagement_tick"),
    LoopSpec("plan-awareness", "plan_awareness_interval", "plan_awareness_tick"),
    LoopSpec("commitment-fulfillment", "commitment_interval", "commitment_tick"),
    LoopSpec("heartbeat", "heartbeat_interval", "heartbeat_tick"),
]


@dataclass
class CodeHostCandidate:
    notification: CodeHostNotification
    issue: Issue
    thread: list[tuple[str, str]]
    work_linked: bool

    @property
    def key(self) -> tuple[str, float]:
        return (self.notification.conversation_id, self.notification.updated_at)


class RecentKeys:
    """Insertion-ordered set that forgets its oldest keys past ``cap``."""

    def __init__(self, cap: int = 1000):
        self.cap = cap
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: Hashable) -> None:
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self.cap:
            self._keys.popitem(last=False)


class AgentScheduler:
    """Owns the timed loops of one agent process.

    Collaborators are injected; nothing here is a module-level singleton.
    Each ``*_tick`` coroutine runs one cycle and can be awaited directly.
    """

    def __init__(
        self,
        settings: Settings,
        social: SocialClient,
        code_host: CodeHostClient,
        coding_agent: CodingAgent,
        generator: ContentGenerator,
        executor: ActionExecutor,
        repo_ops: RepositoryOps | None = None,
        *,
        tools: list[dict[str, Any]] | None = None,
        state_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        exit_process: Callable[[int], Any] = sys.exit,
    ):
        self.settings = settings
        self.social = social
        self.code_host = code_host
        self.coding_agent = coding_agent
        self.generator = generator
        self.executor = executor
        self.tools = tools or []
        self.clock = clock
        self.sleep = sleep
        self.exit_process = exit_process

        state_dir = state_dir or settings.state_dir
        self.modes = ModeController()
        self.session = SessionStore(state_dir / "session.json")
        self.social_conversations = ConversationTracker(
            state_dir / "conversations-social.json",
            "social",
            settings.social_handle,
            settings.conversation,
            settings.circular,
            clock=clock,
        )
        self.code_conversations = ConversationTracker(
            state_dir / "conversations-code-host.json",
            "code_host",
            settings.code_host_login,
            settings.conversation,
            settings.circular,
            clock=clock,
        )
        self.commitments = CommitmentQueue(
            state_dir / "commitments.json",
            max_attempts=settings.commitment_max_attempts,
            stale_after=settings.commitment_stale_after,
            retention=settings.commitment_retention,
            clock=clock,
        )
        self.fulfiller = CommitmentFulfiller(
            self.commitments, code_host, social, generator, settings
        )

        repo_ops = repo_ops or GitCLI(timeout=settings.git_timeout)
        self.coordinator = TaskCoordinator(
            settings, code_host, repo_ops, coding_agent, social, workrepos=state_dir / "workrepos"
        )
        self.recovery = RecoveryManager(
            settings, code_host, repo_ops, self.coordinator, clock=clock
        )

        self.scheduler = AsyncIOScheduler(timezone=UTC)
        self.exit_code: int | None = None
        self._started = False
        self._stopped = asyncio.Event()

        # Process-local, never persisted
        self._seen_social = RecentKeys(settings.seen_notifications_cap)
        self._pending_social: dict[str, SocialNotification] = {}
        self._seen_code_host = RecentKeys(settings.seen_notifications_cap)
        self._pending_code_host: dict[tuple[str, float], CodeHostCandidate] = {}
        self._direct_actions: dict[str, set[str]] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def interval_for(self, loop: LoopSpec) -> float:
        """Jittered interval in seconds."""
        base_ms = getattr(self.settings, loop.interval_setting) * 1000
        return timer_jitter(self.settings.agent_name, loop.name, base_ms) / 1000

    def start(self) -> None:
        """Register every loop and start the scheduler (call from a running event loop)."""
        if self._started:
            return
        now = datetime.now(tz=UTC)
        for loop in LOOPS:
            if loop.name == "heartbeat":
                delay = 0.0
            elif loop.initial_delay_setting:
                delay = getattr(self.settings, loop.initial_delay_setting)
            else:
                delay = self.interval_for(loop)
            self.scheduler.add_job(
                self._guarded,
                trigger=IntervalTrigger(seconds=self.interval_for(loop)),
                args=[loop.name, getattr(self, loop.tick)],
                id=loop.name,
                name=loop.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
                next_run_time=now + timedelta(seconds=delay),
            )
        self.scheduler.start()
        self._started = True
        logger.info(
            "Scheduler started for %s with %d loops (v%s)",
            self.settings.agent_name,
            len(LOOPS),
            __version__,
        )

    def stop(self) -> None:
        """Stop every loop. Safe to call more than once."""
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")
        self._stopped.set()

    def request_shutdown(self, code: int, reason: str) -> None:
        if self.exit_code is None:
            self.exit_code = code
        logger.warning("Shutting down (exit %d): %s", code, reason)
        self.stop()

    @property
    def shutting_down(self) -> bool:
        return self.exit_code is not None

    async def run_forever(self) -> int:
        """Run until stopped. Exits the process if a shutdown was requested."""
        self.start()
        try:
            await self._stopped.wait()
        finally:
            self.stop()
        if self.exit_code is not None:
            self.exit_process(self.exit_code)
        return self.exit_code or 0

    async def _guarded(self, name: str, tick: Tick) -> None:
        """Run one cycle. Ordinary errors are logged and the loop fires again next interval."""
        if self.shutting_down:
            return
        try:
            await tick()
        except FatalCollaboratorError as e:
            logger.critical("Fatal %s error in %s loop: %s", e.source, name, e)
            self.request_shutdown(1, f"fatal collaborator error ({e.source})")
        except Exception:
            logger.exception("%s cycle failed, will retry next interval", name)

    # =========================================================================
    # Session + version
    # =========================================================================

    async def session_refresh_tick(self) -> bool:
        result = await self.social.refresh_session()
        if result.success:
            logger.debug("Social session refreshed")
            return True
        if result.error and _AUTH_ERROR.search(result.error):
            raise FatalCollaboratorError(f"session refresh failed: {result.error}", "social")
        logger.warning("Session refresh failed: %s", result.error)
        return False

    async def version_check_tick(self) -> bool:
        """Returns True if a mismatch was found and shutdown requested."""
        info = await fetch_remote_version(
            self.settings.version_url,
            __version__,
            timeout=self.settings.version_request_timeout,
        )
        if info is None:
            return False
        if not info.mismatch:
            logger.debug("Version check passed (%s)", info.current)
            return False
        logger.error(
            "Version mismatch: local %s, remote %s. Stopping so the new version can be deployed.",
            info.current,
            info.remote,
        )
        self.request_shutdown(0, "remote version mismatch")
        return True

    # =========================================================================
    # Social awareness + responding
    # =========================================================================

    async def awareness_tick(self) -> int:
        """Cheap notification poll; replies to what still needs it. Returns replies posted."""
        async with self.modes.active(Mode.AWARENESS) as entered:
            if not entered:
                return 0
            candidates = await self._scan_social_notifications()
        if not candidates:
            return 0

        await self._response_jitter(bool(self.settings.social_peers))
        async with self.modes.active(Mode.RESPONDING) as entered:
            if not entered:
                return 0
            sent = 0
            for notification in candidates:
                if await self._respond_social(notification):
                    sent += 1
            return sent

    async def _scan_social_notifications(self) -> list[SocialNotification]:
        result = await self.social.list_notifications(self.settings.notification_limit)
        if not result.success:
            logger.debug("Social awareness check failed: %s", result.error)
            return list(self._pending_social.values())

        me = self.settings.social_handle.lower()
        for n in result.data or []:
            if n.uri in self._seen_social:
                continue
            self._seen_social.add(n.uri)
            if n.author.lower() == me:
                continue

            if n.reason == "like":
                conv = self.social_conversations.find_by_our_reply(n.subject_uri or "")
                if conv is not None:
                    self.social_conversations.record_like(conv.conversation_id, n.author)
                continue
            if n.reason not in RESPONDABLE_REASONS:
                continue

            conv = self.social_conversations.record_inbound(
                n.conversation_id, n.author, n.text, n.depth
            )
            if conv.concluded:
                if is_closing_message(n.text) or is_emoji_only(n.text):
                    liked = await self.social.like(n.ref)
                    if not liked.success:
                        logger.debug("Could not like closing message %s: %s", n.uri, liked.error)
                continue
            self._pending_social[n.uri] = n

        if self._pending_social:
            logger.info("%d social notifications need a look", len(self._pending_social))
        return list(self._pending_social.values())

    async def _respond_social(self, n: SocialNotification) -> bool:
        self._pending_social.pop(n.uri, None)
        cid = n.conversation_id

        # Re-check against the freshest thread; a peer may have answered during the jitter.
        thread = await self.social.get_thread(cid)
        messages = (
            [(m.author, m.text) for m in thread.data or []]
            if thread.success
            else [(n.author, n.text)]
        )
        decision = self.social_conversations.should_respond(cid, messages=messages)
        if not decision.should_respond:
            logger.info("Not replying in %s: %s", cid, decision.reason)
            return False

        system = SOCIAL_SYSTEM_PROMPT.format(agent=self.settings.agent_name)
        if decision.warnings:
            system += "\n\n" + "\n".join(f"Note: {w}" for w in decision.warnings)
        transcript = "\n".join(f"@{author}: {text}" for author, text in messages)
        generation = await self.generator.chat_with_tools(
            system, [{"role": "user", "content": transcript}], self.tools
        )
        report = await self.executor.execute(
            generation.tool_calls,
            {"platform": "social", "conversation_id": cid, "parent": n.ref},
        )
        return self._record_replies(
            self.social_conversations, cid, report, n.depth + 1, self._default_workspace()
        )

    def _record_replies(
        self,
        tracker: ConversationTracker,
        cid: str,
        report: ActionReport,
        depth: int | None,
        workspace: str | None,
    ) -> bool:
        done = self._direct_actions.setdefault(cid, set())
        done.update(report.direct_actions)
        for reply in report.replies:
            conversation_id = reply.conversation_id or cid
            tracker.record_our_reply(conversation_id, reply.uri, depth)
            queued = enqueue_from_reply(
                self.commitments, reply.text, conversation_id, done, workspace=workspace
            )
            if queued:
                logger.info("Queued %d commitments from reply in %s", queued, conversation_id)
        return bool(report.replies)

    async def _response_jitter(self, peers_exist: bool) -> None:
        if not peers_exist:
            return
        delay_ms = response_jitter_ms(self.settings.agent_name)
        logger.debug("Waiting %dms before responding (peer jitter)", delay_ms)
        await self.sleep(delay_ms / 1000)

    def _default_workspace(self) -> str | None:
        return self.settings.watched_repos[0] if self.settings.watched_repos else None

    # =========================================================================
    # Code-host awareness + responding
    # =========================================================================

    async def code_host_awareness_tick(self) -> int:
        async with self.modes.active(Mode.AWARENESS) as entered:
            if not entered:
                return 0
            candidates = await self._scan_code_host_notifications()
        if not candidates:
            return 0

        await self._response_jitter(bool(self.settings.peers))
        async with self.modes.active(Mode.PLATFORM_B_RESPONDING) as entered:
            if not entered:
                return 0
            sent = 0
            for candidate in candidates:
                if await self._respond_code_host(candidate):
                    sent += 1
            return sent

    async def _scan_code_host_notifications(self) -> list[CodeHostCandidate]:
        result = await self.code_host.list_notifications()
        if not result.success:
            logger.debug("Code-host awareness check failed: %s", result.error)
            return list(self._pending_code_host.values())

        me = self.settings.code_host_login.lower()
        for n in result.data or []:
            key = (n.conversation_id, n.updated_at)
            if key in self._seen_code_host:
                continue
            self._seen_code_host.add(key)

            issue = await self.code_host.get_issue(n.owner, n.repo, n.number)
            if not issue.success or issue.data is None:
                logger.debug("Could not fetch %s: %s", n.conversation_id, issue.error)
                continue
            comments = await self.code_host.get_issue_comments(n.owner, n.repo, n.number)
            thread = [(issue.data.author, issue.data.body)]
            if comments.success:
                thread += [(c.author, c.body) for c in comments.data or []]

            last_author, last_text = thread[-1]
            if last_author.lower() == me:
                continue  # never reply to ourselves

            work_linked = n.kind == "pull_request" or is_plan(issue.data.title, issue.data.body)
            self.code_conversations.track(n.conversation_id, work_linked=work_linked)
            conv = self.code_conversations.record_inbound(
                n.conversation_id, last_author, last_text, depth=len(thread)
            )
            if conv.concluded:
                continue
            self._pending_code_host[key] = CodeHostCandidate(n, issue.data, thread, work_linked)

        if self._pending_code_host:
            logger.info("%d code-host threads need a look", len(self._pending_code_host))
        return list(self._pending_code_host.values())

    async def _respond_code_host(self, candidate: CodeHostCandidate) -> bool:
        self._pending_code_host.pop(candidate.key, None)
        n = candidate.notification
        cid = n.conversation_id

        comments = await self.code_host.get_issue_comments(n.owner, n.repo, n.number)
        thread = candidate.thread
        if comments.success:
            thread = [(candidate.issue.author, candidate.issue.body)] + [
                (c.author, c.body) for c in comments.data or []
            ]
        if thread[-1][0].lower() == self.settings.code_host_login.lower():
            logger.info("A reply from us already landed in %s", cid)
            return False

        decision = self.code_conversations.should_respond(
            cid, messages=thread, work_linked=candidate.work_linked
        )
        if not decision.should_respond:
            logger.info("Not commenting on %s: %s", cid, decision.reason)
            return False

        slug = f"{n.owner}/{n.repo}"
        system = CODE_HOST_SYSTEM_PROMPT.format(agent=self.settings.agent_name, slug=slug)
        if decision.warnings:
            system += "\n\n" + "\n".join(f"Note: {w}" for w in decision.warnings)
        transcript = f"# {candidate.issue.title}\n\n" + "\n\n".join(
            f"@{author}: {text}" for author, text in thread
        )
        generation = await self.generator.chat_with_tools(
            system, [{"role": "user", "content": transcript}], self.tools
        )
        report = await self.executor.execute(
            generation.tool_calls,
            {
                "platform": "code_host",
                "conversation_id": cid,
                "owner": n.owner,
                "repo": n.repo,
                "number": n.number,
            },
        )
        return self._record_replies(self.code_conversations, cid, report, len(thread) + 1, slug)

    # =========================================================================
    # Expression + reflection
    # =========================================================================

    def in_quiet_hours(self, now: float | None = None) -> bool:
        hour = datetime.fromtimestamp(self.clock() if now is None else now).hour
        start, end = self.settings.quiet_hours_start, self.settings.quiet_hours_end
        if start == end:
            return False
        if start < end:
            return start <= hour < end
        return hour >= start or hour < end

    @property
    def expression_gap(self) -> float:
        """Seconds between posts: a stable point inside [min_gap, max_gap] for this agent."""
        low, high = self.settings.expression_min_gap, self.settings.expression_max_gap
        gap = timer_jitter(self.settings.agent_name, "expression-gap", (low + high) * 500) / 1000
        return min(max(gap, low), high)

    async def expression_tick(self) -> bool:
        now = self.clock()
        if self.in_quiet_hours(now):
            return False
        state = self.session.state
        if now - state.last_post_at < self.expression_gap:
            return False

        async with self.modes.active(Mode.EXPRESSING) as entered:
            if not entered:
                return False
            generation = await self.generator.chat_with_tools(
                EXPRESSION_PROMPT.format(agent=self.settings.agent_name),
                [{"role": "user", "content": "Write your next post."}],
                self.tools,
            )
            report = await self.executor.execute(generation.tool_calls, {"mode": "expression"})
            posted = bool(report.posts)
            text = generation.text.strip()
            if not posted and text:
                result = await self.social.post_text(text)
                posted = result.success
                if not result.success:
                    logger.warning("Expression post failed: %s", result.error)
            if posted:
                state.last_post_at = now
                self.session.save()
                logger.info("Posted an expression")
            return posted

    async def reflection_tick(self) -> bool:
        now = self.clock()
        state = self.session.state
        if now - state.last_reflection_at < self.settings.reflection_interval:
            return False

        async with self.modes.active(Mode.REFLECTING) as entered:
            if not entered:
                return False
            generation = await self.generator.chat_with_tools(
                REFLECTION_PROMPT.format(agent=self.settings.agent_name),
                [{"role": "user", "content": self._reflection_summary()}],
                self.tools,
            )
            report = await self.executor.execute(generation.tool_calls, {"mode": "reflection"})
            state.last_reflection_at = now
            self.session.save()

            if report.improvement_request:
                await self._improve(report.improvement_request)
            return True

    async def _improve(self, request: str) -> None:
        if not self.settings.self_repo_path:
            logger.info("Improvement requested but no self_repo_path is configured")
            return
        self.modes.switch(Mode.REFLECTING, Mode.IMPROVING)
        result = await self.coding_agent.run(request, Path(self.settings.self_repo_path))
        if result.success:
            logger.info("Self-improvement run finished")
        else:
            logger.warning(
                "Self-improvement run did not succeed: %s", result.error or result.block_reason
            )

    def _reflection_summary(self) -> str:
        state = self.session.state
        stats = self.commitments.stats()
        return "\n".join(
            [
                f"Running since: {datetime.fromtimestamp(state.started_at, tz=UTC).isoformat()}",
                f"Social conversations tracked: {len(self.social_conversations)}",
                f"Code-host conversations tracked: {len(self.code_conversations)}",
                f"Engagement: {state.engagement_likes} likes, {state.engagement_reposts} reposts",
                "Commitments: " + ", ".join(f"{k}={v}" for k, v in stats.items()),
            ]
        )

    # =========================================================================
    # Engagement + heartbeat
    # =========================================================================

    async def engagement_tick(self) -> tuple[int, int]:
        """Count likes/reposts on our posts since the last check."""
        if not self.modes.idle:
            return 0, 0
        result = await self.social.list_notifications(self.settings.notification_limit)
        if not result.success:
            logger.debug("Engagement check failed: %s", result.error)
            return 0, 0

        state = self.session.state
        since = state.last_engagement_check_at
        likes = reposts = 0
        for n in result.data or []:
            if n.created_at <= since:
                continue
            if n.reason == "like":
                likes += 1
            elif n.reason == "repost":
                reposts += 1
        state.engagement_likes += likes
        state.engagement_reposts += reposts
        state.last_engagement_check_at = self.clock()
        self.session.save()
        if likes or reposts:
            logger.info("Engagement since last check: %d likes, %d reposts", likes, reposts)
        return likes, reposts

    async def heartbeat_tick(self) -> None:
        if not self.modes.idle:
            return
        stats = self.commitments.stats()
        logger.info(
            "Heartbeat: %s idle, %d pending commitments, %d tracked stuck tasks",
            self.settings.agent_name,
            stats["pending"] + stats["failed"],
            len(self.recovery.tracker),
        )
        self.session.state.last_heartbeat_at = self.clock()
        self.session.save()
        self.prune_conversations()

    def prune_conversations(self) -> int:
        """Age out idle conversations and the per-thread state kept for them."""
        pruned = self.social_conversations.prune() + self.code_conversations.prune()
        trackers = (self.social_conversations, self.code_conversations)
        for cid in list(self._direct_actions):
            if all(tracker.get(cid) is None for tracker in trackers):
                del self._direct_actions[cid]
        return pruned

    # =========================================================================
    # Plans + commitments
    # =========================================================================

    async def plan_awareness_tick(self) -> ExecutionResult | None:
        """Recover stuck/orphaned work, then claim and execute at most one task."""
        if not self.settings.watched_repos:
            return None
        async with self.modes.active(Mode.TASK_EXECUTING) as entered:
            if not entered:
                return None
            snapshots = await self.coordinator.list_watched_plans(self.settings.watched_repos)
            if not snapshots:
                return None

            reset = await self.recovery.recover_stuck_tasks(snapshots)
            if reset:
                logger.info("Reset %d stuck tasks", len(reset))
            recovered = await self.recovery.recover_orphaned_branches(snapshots)
            if recovered:
                logger.info("Recovered orphaned work for %s", recovered)
                return None

            claim = await self.coordinator.claim_from_snapshots(
                snapshots, skip=self.recovery.exhausted_tasks
            )
            if claim.state == ClaimState.CONFLICT:
                logger.info("Lost the claim race, deferring to the next cycle")
                return None
            if claim.state != ClaimState.CLAIMED or claim.snapshot is None or claim.task is None:
                return None

            result = await self.coordinator.execute(claim.snapshot, claim.task)
            logger.info(
                "Task %s finished: %s",
                claim.snapshot.ref.task_key(claim.task.number),
                result.outcome.value,
            )
            return result

    async def commitment_tick(self) -> FulfillmentStats:
        self.commitments.abandon_stale()
        if not self.commitments.pending():
            return FulfillmentStats()
        async with self.modes.active(Mode.TASK_EXECUTING) as entered:
            if not entered:
                return FulfillmentStats()
            return await self.fulfiller.process_all()


def create_scheduler(
    social: SocialClient,
    code_host: CodeHostClient,
    coding_agent: CodingAgent,
    generator: ContentGenerator,
    executor: ActionExecutor,
    **kwargs: Any,
) -> AgentScheduler:
    """Build a scheduler from the process-wide settings and set up logging.

    Process entry points call this with their real clients, then await
    ``run_forever()``.
    """
    settings = get_settings()
    setup_logging(settings.log_level)
    return AgentScheduler(settings, social, code_host, coding_agent, generator, executor, **kwargs)
