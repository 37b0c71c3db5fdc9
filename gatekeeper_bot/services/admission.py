from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Awaitable, Callable, Optional

import structlog

from .. import strings
from ..adapters.base import ChatPlatform, ReputationChecker
from ..challenges.generator import Challenge, ChallengeGenerator
from ..logging.events import report
from ..models import Candidate, CaptchaType, ChatPolicy, ChatUser, JoinEvent, RestrictedUser
from ..moderation.actions import ModerationActions
from ..policies.service import ChatPolicyService
from ..registry.admission_guard import AdmissionGuard
from ..registry.candidates import CandidateRegistry
from ..utils.clock import Clock, utcnow
from ..utils.concurrency import BackgroundTasks

logger = structlog.get_logger(__name__)

BotAddedCallback = Callable[[int], Awaitable[None]]


@dataclass(slots=True)
class _Admitted:
    candidate: Candidate
    restricted: bool


def button_payload(chat_id: int, user_id: int) -> str:
    return f"{chat_id}~{user_id}"


class AdmissionController:
    """Decides, for every member added to a chat, whether to challenge, restrict or kick them."""

    def __init__(
        self,
        platform: ChatPlatform,
        policies: ChatPolicyService,
        registry: CandidateRegistry,
        actions: ModerationActions,
        generator: ChallengeGenerator,
        guard: AdmissionGuard,
        tasks: BackgroundTasks,
        *,
        reputation: Optional[ReputationChecker] = None,
        on_bot_added: Optional[BotAddedCallback] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._platform = platform
        self._policies = policies
        self._registry = registry
        self._actions = actions
        self._generator = generator
        self._guard = guard
        self._tasks = tasks
        self._reputation = reputation
        self._on_bot_added = on_bot_added
        self._clock = clock

    async def handle_join(self, event: JoinEvent) -> list[Candidate]:
        """Process a join notice; returns the candidates that were registered."""
        async with self._guard.hold(event.chat_id, [member.id for member in event.members]):
            try:
                return await self._admit(event)
            except Exception as exc:  # pylint: disable=broad-except
                report("admission_failed", exc, chat_id=event.chat_id, actor_id=event.actor_id)
                return []

    async def handle_leave(self, chat_id: int, message_id: int) -> None:
        policy = await self._policies.get_policy(chat_id)
        if policy.delete_entry_messages or policy.under_attack:
            await self._actions.delete_message(chat_id, message_id, reason="leave_notice")

    async def _admit(self, event: JoinEvent) -> list[Candidate]:
        chat_id = event.chat_id
        admin_ids = await self._platform.get_administrator_ids(chat_id)
        if event.actor_id in admin_ids:
            logger.info("admission_skipped_admin_actor", chat_id=chat_id, actor_id=event.actor_id)
            return []

        bot_id = await self._platform.get_bot_id()
        if self._on_bot_added is not None and any(member.id == bot_id for member in event.members):
            try:
                await self._on_bot_added(chat_id)
            except Exception as exc:  # pylint: disable=broad-except
                report("bot_introduction_failed", exc, chat_id=chat_id)

        policy = await self._policies.get_policy(chat_id)
        to_check = [m for m in event.members if m.id not in admin_ids and not m.is_bot]
        admitted: list[_Admitted] = []
        entry_deleted = False
        for member in to_check:
            try:
                result = await self._admit_member(policy, event, member)
            except Exception as exc:  # pylint: disable=broad-except
                report("member_admission_failed", exc, chat_id=chat_id, user_id=member.id)
                continue
            if result is None:
                if policy.under_attack and not entry_deleted:
                    entry_deleted = await self._actions.delete_message(chat_id, event.message_id, reason="under_attack")
                continue
            admitted.append(result)

        candidates = [item.candidate for item in admitted]
        displaced = await self._registry.add_candidates(chat_id, candidates)
        for previous in displaced:
            await self._actions.delete_message(chat_id, previous.challenge_message_id, reason="challenge_replaced")
        if policy.restrict:
            now = self._clock()
            await self._registry.add_restricted(
                chat_id,
                [
                    RestrictedUser(chat_id=chat_id, user_id=item.candidate.user_id, restricted_at=now)
                    for item in admitted
                    if item.restricted
                ],
            )

        if policy.delete_entry_messages and not entry_deleted:
            await self._actions.delete_message(chat_id, event.message_id, reason="entry_notice")
        return candidates

    async def _admit_member(self, policy: ChatPolicy, event: JoinEvent, member: ChatUser) -> Optional[_Admitted]:
        chat_id = policy.chat_id
        self._tasks.spawn(
            self._actions.purge_user_messages(chat_id, member.id),
            name=f"purge:{chat_id}:{member.id}",
        )

        if policy.under_attack:
            logger.info("admission_under_attack_kick", chat_id=chat_id, user_id=member.id)
            await self._actions.kick(policy, member.id)
            return None

        if self._reputation is not None and await self._reputation.is_banned(member.id):
            logger.info("admission_reputation_kick", chat_id=chat_id, user_id=member.id)
            await self._actions.kick(policy, member.id, entry_message_id=event.message_id)
            return None

        challenge = await self._generator.generate(policy.captcha_type)
        message_id: Optional[int] = None
        try:
            message_id = await self._send_challenge(policy, member, challenge)
        except Exception as exc:  # pylint: disable=broad-except
            report("challenge_send_failed", exc, chat_id=chat_id, user_id=member.id)

        candidate = Candidate(
            chat_id=chat_id,
            user_id=member.id,
            created_at=self._clock(),
            challenge_kind=policy.captcha_type,
            expected_answer=challenge.answer,
            challenge_message_id=message_id,
            entry_message_id=event.message_id,
        )
        restricted = False
        if policy.restrict:
            restricted = await self._actions.restrict(chat_id, member.id)
        logger.info(
            "candidate_created",
            chat_id=chat_id,
            user_id=member.id,
            kind=policy.captcha_type.value,
            challenge_sent=message_id is not None,
            restricted=restricted,
        )
        return _Admitted(candidate=candidate, restricted=restricted)

    async def _send_challenge(self, policy: ChatPolicy, member: ChatUser, challenge: Challenge) -> int:
        text = await self._challenge_text(policy, member, challenge)
        if challenge.image is not None:
            return await self._platform.send_photo(policy.chat_id, challenge.image, text)
        button = None
        if policy.captcha_type == CaptchaType.BUTTON:
            button = (strings.CAPTCHA_BUTTON, button_payload(policy.chat_id, member.id))
        return await self._platform.send_message(policy.chat_id, text, button=button)

    async def _challenge_text(self, policy: ChatPolicy, member: ChatUser, challenge: Challenge) -> str:
        values = {
            "mention": member.mention_html(),
            "username": member.mention_html(),
            "fullname": escape(member.full_name),
            "equation": escape(challenge.question or ""),
            "seconds": str(policy.time_given),
        }
        # Admin-provided text goes out as HTML; only the substituted values carry markup.
        template = escape(policy.captcha_message or "", quote=False)
        # A custom DIGITS template that never shows the equation would be unsolvable.
        usable = template and (policy.captcha_type != CaptchaType.DIGITS or "$equation" in template)
        if not usable:
            return strings.render(strings.CHALLENGE_TEXT[policy.captcha_type], values)
        if not strings.has_placeholders(template):
            return f"{member.mention_html()}\n\n{template}"
        if "$title" in template:
            values["title"] = escape(await self._platform.get_chat_title(policy.chat_id))
        return strings.render(template, values)
