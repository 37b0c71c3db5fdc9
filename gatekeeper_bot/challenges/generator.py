from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

import structlog
from captcha.image import ImageCaptcha

from ..models import CaptchaType
from ..utils.concurrency import run_blocking

logger = structlog.get_logger(__name__)

# Lowercase only, without glyphs that are easy to confuse in a distorted image.
IMAGE_ALPHABET = "abcdefhkmnprstuvwxyz"


@dataclass(slots=True)
class Challenge:
    kind: CaptchaType
    question: Optional[str] = None
    answer: Optional[str] = None
    image: Optional[bytes] = None


class ChallengeGenerator:
    def __init__(
        self,
        *,
        image_width: int = 240,
        image_height: int = 90,
        image_length: int = 4,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._image_length = image_length
        self._image = ImageCaptcha(width=image_width, height=image_height)

    async def generate(self, kind: CaptchaType) -> Challenge:
        if kind == CaptchaType.DIGITS:
            return self.digits()
        if kind == CaptchaType.IMAGE:
            return await self.image()
        return Challenge(kind=kind)

    def digits(self) -> Challenge:
        """Single-operation equation whose answer is a non-negative number of at most two digits."""
        a = self._rng.randint(1, 10)
        b = self._rng.randint(1, 10)
        if self._rng.random() < 0.5:
            return Challenge(kind=CaptchaType.DIGITS, question=f"{a} + {b}", answer=str(a + b))
        high, low = max(a, b), min(a, b)
        return Challenge(kind=CaptchaType.DIGITS, question=f"{high} - {low}", answer=str(high - low))

    async def image(self) -> Challenge:
        text = "".join(self._rng.choice(IMAGE_ALPHABET) for _ in range(self._image_length))
        data = await run_blocking(self._render, text)
        logger.debug("image_challenge_rendered", size=len(data))
        return Challenge(kind=CaptchaType.IMAGE, answer=text, image=data)

    def _render(self, text: str) -> bytes:
        return self._image.generate(text, format="png").getvalue()
