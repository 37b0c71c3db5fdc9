from __future__ import annotations

import asyncio

import pytest

from gatekeeper_bot import strings
from gatekeeper_bot.models import ButtonPress, CaptchaType, IncomingMessage
from gatekeeper_bot.registry.admission_guard import AdmissionGuard
from gatekeeper_bot.services.greeting import Greeter
from gatekeeper_bot.services.verification import ButtonOutcome, VerificationGates, judge_answer, parse_button_payload
from tests.factories import Harness, make_candidate, make_user


def build_gates(harness: Harness, guard: AdmissionGuard | None = None, wait: float = 0.05) -> VerificationGates:
    return VerificationGates(
        harness.platform,
        harness.policies,
        harness.registry,
        harness.actions,
        guard or AdmissionGuard(),
        Greeter(harness.platform),
        admission_wait_seconds=wait,
    )


def message(text: str | None, *, user_id: int = 10, message_id: int = 77) -> IncomingMessage:
    return IncomingMessage(chat_id=100, message_id=message_id, sender=make_user(user_id), text=text)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("73", True),
        ("it is 7", True),
        ("739", False),
        ("8", False),
        ("７", False),
    ],
)
def test_digits_answer_rejects_padding(text: str, expected: bool) -> None:
    candidate = make_candidate(kind=CaptchaType.DIGITS, answer="7")
    assert judge_answer(candidate, text) is expected


def test_image_answer_is_substring_match() -> None:
    candidate = make_candidate(kind=CaptchaType.IMAGE, answer="cat")
    assert judge_answer(candidate, "the cat sat") is True
    assert judge_answer(candidate, "the dog sat") is False


def test_none_captcha_accepts_any_text() -> None:
    candidate = make_candidate(kind=CaptchaType.NONE, answer=None)
    assert judge_answer(candidate, "hello") is True


def test_button_payload_parsing() -> None:
    assert parse_button_payload("-100123~99") == (-100123, 99)
    assert parse_button_payload("55~abc") is None
    assert parse_button_payload("") is None


@pytest.mark.asyncio
async def test_correct_answer_verifies_and_cleans_up() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.DIGITS, greets_users=True, greeting_message="Welcome, $username!")
    await harness.registry.add_candidates(100, [make_candidate(user_id=10, answer="7", challenge_message_id=501)])
    gates = build_gates(harness)

    assert await gates.check_message(message("7", message_id=77)) is True

    assert harness.registry.get_candidate(100, 10) is None
    assert (100, 77) in harness.platform.deleted
    assert (100, 501) in harness.platform.deleted
    assert len(harness.platform.sent) == 1
    assert "Welcome, " in harness.platform.sent[0]["text"]
    assert "tg://user?id=10" in harness.platform.sent[0]["text"]


@pytest.mark.asyncio
async def test_correct_answer_kept_when_candidate_removed_concurrently() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.DIGITS)
    await harness.registry.add_candidates(100, [make_candidate(user_id=10, answer="7", challenge_message_id=501)])
    gates = build_gates(harness)
    original = harness.policies.get_policy

    async def policy_after_sweep(chat_id: int):
        # The sweeper claims the candidate between lookup and removal.
        await harness.registry.remove_candidate(chat_id, 10)
        return await original(chat_id)

    harness.policies.get_policy = policy_after_sweep

    assert await gates.check_message(message("7", message_id=77)) is False

    assert harness.platform.deleted == []
    assert harness.platform.sent == []


@pytest.mark.asyncio
async def test_wrong_answer_in_strict_mode_is_deleted() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.DIGITS, strict=True)
    await harness.registry.add_candidates(100, [make_candidate(user_id=10, answer="7")])
    gates = build_gates(harness)

    assert await gates.check_message(message("739", message_id=78)) is False

    assert harness.platform.deleted == [(100, 78)]
    assert harness.registry.get_candidate(100, 10) is not None


@pytest.mark.asyncio
async def test_wrong_answer_outside_strict_mode_is_left_alone() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.DIGITS, strict=False)
    await harness.registry.add_candidates(100, [make_candidate(user_id=10, answer="7")])
    gates = build_gates(harness)

    assert await gates.check_message(message("no idea")) is False

    assert harness.platform.deleted == []


@pytest.mark.asyncio
async def test_button_candidate_text_is_deleted_in_strict_mode() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.BUTTON, strict=True)
    await harness.registry.add_candidates(100, [make_candidate(user_id=10, kind=CaptchaType.BUTTON, answer=None)])
    gates = build_gates(harness)

    assert await gates.check_message(message("let me in", message_id=79)) is False

    assert harness.platform.deleted == [(100, 79)]
    assert harness.registry.get_candidate(100, 10) is not None


@pytest.mark.asyncio
async def test_messages_without_candidate_or_text_are_ignored() -> None:
    harness = Harness()
    harness.set_policy(strict=True)
    gates = build_gates(harness)

    assert await gates.check_message(message("hello")) is False
    assert await gates.check_message(message(None)) is False
    assert harness.platform.deleted == []


@pytest.mark.asyncio
async def test_button_press_by_other_user_is_rejected() -> None:
    harness = Harness()
    harness.set_policy(55, captcha_type=CaptchaType.BUTTON)
    await harness.registry.add_candidates(55, [make_candidate(chat_id=55, user_id=99, kind=CaptchaType.BUTTON)])
    gates = build_gates(harness)

    outcome = await gates.press_button(ButtonPress(callback_id="cb", presser=make_user(100), data="55~99"))

    assert outcome == ButtonOutcome.REJECTED
    assert harness.platform.callback_answers == [("cb", strings.ONLY_CANDIDATE_CAN_REPLY)]
    assert harness.registry.get_candidate(55, 99) is not None


@pytest.mark.asyncio
async def test_button_press_by_candidate_verifies() -> None:
    harness = Harness()
    harness.set_policy(55, captcha_type=CaptchaType.BUTTON)
    await harness.registry.add_candidates(
        55, [make_candidate(chat_id=55, user_id=99, kind=CaptchaType.BUTTON, challenge_message_id=600)]
    )
    gates = build_gates(harness)

    outcome = await gates.press_button(ButtonPress(callback_id="cb", presser=make_user(99), data="55~99"))

    assert outcome == ButtonOutcome.VERIFIED
    assert harness.registry.get_candidate(55, 99) is None
    assert harness.platform.deleted == [(55, 600)]


@pytest.mark.asyncio
async def test_stale_button_press_is_ignored() -> None:
    harness = Harness()
    gates = build_gates(harness)

    outcome = await gates.press_button(ButtonPress(callback_id="cb", presser=make_user(99), data="55~99"))

    assert outcome == ButtonOutcome.IGNORED


@pytest.mark.asyncio
async def test_concurrent_passes_verify_once() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.NONE, greets_users=True, greeting_message="hi")
    await harness.registry.add_candidates(100, [make_candidate(user_id=10, kind=CaptchaType.NONE, answer=None)])
    gates = build_gates(harness)

    results = await asyncio.gather(
        gates.check_message(message("first", message_id=1)),
        gates.check_message(message("second", message_id=2)),
        gates.approve(100, make_user(10)),
    )

    assert sum(results) == 1
    assert len(harness.platform.sent) == 1


@pytest.mark.asyncio
async def test_message_waits_for_admission_in_flight() -> None:
    harness = Harness()
    harness.set_policy(captcha_type=CaptchaType.NONE)
    guard = AdmissionGuard()
    gates = build_gates(harness, guard, wait=1.0)

    async def admission() -> None:
        async with guard.hold(100, [10]):
            await asyncio.sleep(0.01)
            await harness.registry.add_candidates(100, [make_candidate(user_id=10, kind=CaptchaType.NONE, answer=None)])

    admitting = asyncio.create_task(admission())
    await asyncio.sleep(0)
    verified = await gates.check_message(message("hello"))
    await admitting

    assert verified is True
    assert harness.registry.get_candidate(100, 10) is None


@pytest.mark.asyncio
async def test_message_gives_up_when_admission_stalls() -> None:
    harness = Harness()
    guard = AdmissionGuard()
    gates = build_gates(harness, guard, wait=0.01)

    async with guard.hold(100, [10]):
        assert await gates.check_message(message("hello")) is False
