from __future__ import annotations

import re
from enum import Enum
from typing import Optional

import structlog

from .. import strings
from ..adapters.base import ChatPlatform
from ..logging.events import report
from ..models import ButtonPress, Candidate, CaptchaType, ChatPolicy, ChatUser, IncomingMessage
from ..moderation.actions import ModerationActions
from ..policies.service import ChatPolicyService
from ..registry.admission_guard import AdmissionGuard
from ..registry.candidates import CandidateRegistry
from .greeting import Greeter

logger = structlog.get_logger(__name__)

BUTTON_PAYLOAD = re.compile(r"^(-?\d+)~(\d+)$")
ASCII_DIGIT = re.compile(r"[0-9]")

# Replies carrying more digits than this are rejected even if they contain the
# answer, so padding a message with many numbers cannot brute-force the equation.
MAX_DIGITS_IN_ANSWER = 2


class ButtonOutcome(str, Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"
    IGNORED = "ignored"


def judge_answer(candidate: Candidate, text: str) -> bool:
    if candidate.challenge_kind == CaptchaType.DIGITS:
        expected = candidate.expected_answer or ""
        return bool(expected) and expected in text and len(ASCII_DIGIT.findall(text)) <= MAX_DIGITS_IN_ANSWER
    if candidate.challenge_kind == CaptchaType.IMAGE:
        expected = candidate.expected_answer or ""
        return bool(expected) and expected in text
    # NONE accepts any message; BUTTON candidates only reach here after the chat switched captcha type.
    return True


def parse_button_payload(data: str) -> Optional[tuple[int, int]]:
    match = BUTTON_PAYLOAD.match(data or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class VerificationGates:
    """Message gate, button gate and the administrator override; all share one success path."""

    def __init__(
        self,
        platform: ChatPlatform,
        policies: ChatPolicyService,
        registry: CandidateRegistry,
        actions: ModerationActions,
        guard: AdmissionGuard,
        greeter: Greeter,
        *,
        admission_wait_seconds: float = 5.0,
    ) -> None:
        self._platform = platform
        self._policies = policies
        self._registry = registry
        self._actions = actions
        self._guard = guard
        self._greeter = greeter
        self._admission_wait = admission_wait_seconds

    async def check_message(self, message: IncomingMessage) -> bool:
        """Judge a group message against the sender's pending challenge. Returns True if it verified them."""
        if not message.text:
            return False
        chat_id, user_id = message.chat_id, message.sender.id
        if self._guard.is_held(chat_id, user_id):
            if not await self._guard.wait_released(chat_id, user_id, self._admission_wait):
                logger.info("message_gate_admission_pending", chat_id=chat_id, user_id=user_id)
                return False

        candidate = self._registry.get_candidate(chat_id, user_id)
        if candidate is None:
            return False
        policy = await self._policies.get_policy(chat_id)

        if policy.captcha_type == CaptchaType.BUTTON:
            if policy.strict:
                await self._actions.delete_message(chat_id, message.message_id, reason="stray_button_candidate")
            return False

        if not judge_answer(candidate, message.text):
            logger.info("message_gate_wrong_answer", chat_id=chat_id, user_id=user_id, strict=policy.strict)
            if policy.strict:
                await self._actions.delete_message(chat_id, message.message_id, reason="wrong_answer")
            return False

        answer_id = message.message_id if candidate.challenge_kind in (CaptchaType.DIGITS, CaptchaType.IMAGE) else None
        return await self._pass(policy, message.sender, answer_message_id=answer_id)

    async def press_button(self, press: ButtonPress) -> ButtonOutcome:
        parsed = parse_button_payload(press.data)
        if parsed is None:
            return ButtonOutcome.IGNORED
        chat_id, user_id = parsed
        if press.presser.id != user_id:
            logger.info("button_gate_foreign_press", chat_id=chat_id, user_id=user_id, presser_id=press.presser.id)
            try:
                await self._platform.answer_callback(press.callback_id, strings.ONLY_CANDIDATE_CAN_REPLY)
            except Exception as exc:  # pylint: disable=broad-except
                report("answer_callback_failed", exc, chat_id=chat_id, user_id=press.presser.id)
            return ButtonOutcome.REJECTED

        if self._registry.get_candidate(chat_id, user_id) is None:
            return ButtonOutcome.IGNORED
        policy = await self._policies.get_policy(chat_id)
        if not await self._pass(policy, press.presser):
            return ButtonOutcome.IGNORED
        return ButtonOutcome.VERIFIED

    async def approve(self, chat_id: int, user: ChatUser) -> bool:
        """Administrator override: let a pending candidate in without answering."""
        policy = await self._policies.get_policy(chat_id)
        return await self._pass(policy, user)

    async def _pass(self, policy: ChatPolicy, user: ChatUser, *, answer_message_id: Optional[int] = None) -> bool:
        candidate = await self._registry.remove_candidate(policy.chat_id, user.id)
        if candidate is None:
            # Another gate, a kick or the sweeper removed it first; the reply stays.
            return False
        logger.info("candidate_verified", chat_id=policy.chat_id, user_id=user.id, kind=candidate.challenge_kind.value)
        await self._actions.delete_message(policy.chat_id, answer_message_id, reason="correct_answer")
        await self._actions.delete_message(policy.chat_id, candidate.challenge_message_id, reason="challenge_passed")
        await self._greeter.greet(policy, user)
        return True
