from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

import structlog

from ..adapters.base import ChatPlatform, ReputationChecker
from ..adapters.cas import CASReputationChecker
from ..challenges.generator import ChallengeGenerator
from ..config import BotSettings
from ..logging.events import report, setup_logging
from ..models import ButtonPress, ChatUser, IncomingMessage, JoinEvent
from ..moderation.actions import ModerationActions
from ..policies.service import ChatPolicyService
from ..registry.admission_guard import AdmissionGuard
from ..registry.candidates import CandidateRegistry
from ..scheduler.sweeper import ExpirySweeper
from ..storage.base import StorageGateway
from ..storage.sqlite import SQLiteStorage
from ..utils.concurrency import BackgroundTasks
from .admission import AdmissionController, BotAddedCallback
from .greeting import Greeter
from .verification import ButtonOutcome, VerificationGates

logger = structlog.get_logger(__name__)


class GatekeeperCoordinator:
    """Builds and owns every gatekeeper component and exposes the event entry points."""

    def __init__(
        self,
        settings: BotSettings,
        platform: ChatPlatform,
        *,
        storage: Optional[StorageGateway] = None,
        reputation: Optional[ReputationChecker] = None,
        on_bot_added: Optional[BotAddedCallback] = None,
    ) -> None:
        log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)
        setup_logging(level=log_level, use_json=settings.logging.use_json)
        self._settings = settings
        self._storage = storage or SQLiteStorage(settings.storage.sqlite_path)
        if reputation is None and settings.reputation.enabled:
            reputation = CASReputationChecker(
                base_url=settings.reputation.base_url,
                timeout=settings.reputation.timeout_seconds,
            )
        self._reputation = reputation
        self._tasks = BackgroundTasks()
        self._guard = AdmissionGuard()
        self.registry = CandidateRegistry(self._storage)
        self.policies = ChatPolicyService(self._storage, self.registry)
        self._actions = ModerationActions(
            platform,
            self.registry,
            self._storage,
            soft_ban_seconds=settings.moderation.soft_ban_seconds,
            restriction_ttl=timedelta(hours=settings.moderation.restriction_hours),
        )
        self._greeter = Greeter(platform)
        self._admission = AdmissionController(
            platform,
            self.policies,
            self.registry,
            self._actions,
            ChallengeGenerator(
                image_width=settings.challenges.image_width,
                image_height=settings.challenges.image_height,
                image_length=settings.challenges.image_length,
            ),
            self._guard,
            self._tasks,
            reputation=self._reputation,
            on_bot_added=on_bot_added,
        )
        self._gates = VerificationGates(
            platform,
            self.policies,
            self.registry,
            self._actions,
            self._guard,
            self._greeter,
            admission_wait_seconds=settings.moderation.admission_wait_seconds,
        )
        self._sweeper = ExpirySweeper(
            self.registry,
            self.policies,
            self._actions,
            messages=self._storage,
            interval=settings.sweeper.interval_seconds,
            restriction_ttl=timedelta(hours=settings.sweeper.restriction_ttl_hours),
            message_retention=timedelta(hours=settings.sweeper.message_retention_hours),
        )

    async def start(self) -> None:
        await self._storage.connect()
        await self.registry.bootstrap()
        await self._sweeper.start()
        logger.info("gatekeeper_coordinator_started")

    async def shutdown(self) -> None:
        await self._sweeper.stop()
        await self._greeter.close()
        await self._tasks.close()
        if self._reputation is not None:
            await self._reputation.close()
        await self._storage.disconnect()
        logger.info("gatekeeper_coordinator_stopped")

    async def on_members_joined(self, event: JoinEvent) -> None:
        await self._admission.handle_join(event)

    async def on_member_left(self, chat_id: int, message_id: int) -> None:
        try:
            await self._admission.handle_leave(chat_id, message_id)
        except Exception as exc:  # pylint: disable=broad-except
            report("leave_handling_failed", exc, chat_id=chat_id)

    async def on_message(self, message: IncomingMessage, sent_at: datetime) -> bool:
        try:
            await self._storage.record_message(message.chat_id, message.sender.id, message.message_id, sent_at)
        except Exception as exc:  # pylint: disable=broad-except
            report("record_message_failed", exc, chat_id=message.chat_id)
        try:
            return await self._gates.check_message(message)
        except Exception as exc:  # pylint: disable=broad-except
            report("message_gate_failed", exc, chat_id=message.chat_id, user_id=message.sender.id)
            return False

    async def on_button(self, press: ButtonPress) -> ButtonOutcome:
        try:
            return await self._gates.press_button(press)
        except Exception as exc:  # pylint: disable=broad-except
            report("button_gate_failed", exc, presser_id=press.presser.id, data=press.data)
            return ButtonOutcome.IGNORED

    async def approve(self, chat_id: int, user: ChatUser) -> bool:
        return await self._gates.approve(chat_id, user)
