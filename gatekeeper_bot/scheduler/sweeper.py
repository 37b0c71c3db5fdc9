from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog

from ..logging.events import report
from ..moderation.actions import ModerationActions
from ..policies.service import ChatPolicyService
from ..registry.candidates import CandidateRegistry
from ..storage.base import MessageRepository
from ..utils.clock import Clock, utcnow

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class SweepReport:
    kicked: int = 0
    expired: int = 0
    restrictions_dropped: int = 0
    messages_pruned: int = 0
    skipped: bool = False


class ExpirySweeper:
    """
    Periodic reclamation pass over every chat's pending state.

    Each timer firing runs as its own task so a slow sweep never delays the
    timer; a firing that finds a sweep still in progress is skipped.
    """

    def __init__(
        self,
        registry: CandidateRegistry,
        policies: ChatPolicyService,
        actions: ModerationActions,
        *,
        messages: Optional[MessageRepository] = None,
        interval: float = 15.0,
        restriction_ttl: timedelta = timedelta(hours=24),
        message_retention: timedelta = timedelta(hours=48),
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._policies = policies
        self._actions = actions
        self._messages = messages
        self._interval = interval
        self._restriction_ttl = restriction_ttl
        self._message_retention = message_retention
        self._clock = clock
        self._sweeping = False
        self._running = False
        self._main_task: Optional[asyncio.Task[None]] = None
        self._tasks: set[asyncio.Task[SweepReport]] = set()

    @property
    def sweeping(self) -> bool:
        return self._sweeping

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._main_task = asyncio.create_task(self._run())
        logger.info("sweeper_started", interval=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._main_task:
            self._main_task.cancel()
            await asyncio.gather(self._main_task, return_exceptions=True)
            self._main_task = None
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("sweeper_stopped")

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            task = asyncio.create_task(self.sweep())
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[SweepReport]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error("sweep_task_failed", error=str(task.exception()))

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        if self._sweeping:
            logger.debug("sweep_skipped", reason="in_progress")
            return SweepReport(skipped=True)
        self._sweeping = True
        result = SweepReport()
        try:
            now = now or self._clock()
            for chat_id in self._registry.chats_with_candidates():
                try:
                    await self._sweep_candidates(chat_id, now, result)
                except Exception as exc:  # pylint: disable=broad-except
                    report("sweep_candidates_failed", exc, chat_id=chat_id)
            for chat_id in self._registry.chats_with_restricted():
                try:
                    await self._sweep_restricted(chat_id, now, result)
                except Exception as exc:  # pylint: disable=broad-except
                    report("sweep_restricted_failed", exc, chat_id=chat_id)
            if self._messages is not None:
                try:
                    result.messages_pruned = await self._messages.prune_messages(now - self._message_retention)
                except Exception as exc:  # pylint: disable=broad-except
                    report("sweep_messages_failed", exc)
        finally:
            self._sweeping = False
        if result.expired or result.restrictions_dropped:
            logger.info(
                "sweep_complete",
                expired=result.expired,
                kicked=result.kicked,
                restrictions_dropped=result.restrictions_dropped,
            )
        return result

    async def _sweep_candidates(self, chat_id: int, now: datetime, result: SweepReport) -> None:
        policy = await self._policies.get_policy(chat_id)
        cutoff = now - timedelta(seconds=policy.time_given)
        expired = await self._registry.claim_expired(chat_id, cutoff)
        if not expired:
            return
        result.expired += len(expired)
        result.kicked += await self._actions.kick_candidates(policy, expired)

    async def _sweep_restricted(self, chat_id: int, now: datetime, result: SweepReport) -> None:
        cutoff = now - self._restriction_ttl
        stale = [record.user_id for record in self._registry.restricted_for(chat_id) if record.restricted_at < cutoff]
        if not stale:
            return
        removed = await self._registry.remove_restricted(chat_id, stale)
        result.restrictions_dropped += len(removed)
