from __future__ import annotations

import random

import pytest

from gatekeeper_bot import strings
from gatekeeper_bot.challenges.generator import IMAGE_ALPHABET, ChallengeGenerator
from gatekeeper_bot.models import CaptchaType


def test_digits_answer_matches_equation() -> None:
    generator = ChallengeGenerator(rng=random.Random(1))
    for _ in range(200):
        challenge = generator.digits()
        left, operator, right = challenge.question.split()
        value = int(left) + int(right) if operator == "+" else int(left) - int(right)
        assert challenge.answer == str(value)
        assert 0 <= value <= 20


@pytest.mark.asyncio
async def test_image_challenge_renders_png() -> None:
    generator = ChallengeGenerator(image_length=5, rng=random.Random(3))

    challenge = await generator.generate(CaptchaType.IMAGE)

    assert challenge.kind == CaptchaType.IMAGE
    assert len(challenge.answer) == 5
    assert set(challenge.answer) <= set(IMAGE_ALPHABET)
    assert challenge.image.startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_button_and_none_have_no_content() -> None:
    generator = ChallengeGenerator()

    for kind in (CaptchaType.BUTTON, CaptchaType.NONE):
        challenge = await generator.generate(kind)
        assert challenge.answer is None
        assert challenge.image is None


def test_render_leaves_unknown_placeholders() -> None:
    assert strings.render("$username in $title, $unknown", {"username": "bob"}) == "bob in $title, $unknown"
    assert strings.has_placeholders("plain text") is False
    assert strings.has_placeholders("hello $fullname") is True
