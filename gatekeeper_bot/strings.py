"""English message templates. Placeholders use `$name` so admin-provided templates share one syntax."""

from __future__ import annotations

import re
from typing import Mapping

from .models import CaptchaType

CHALLENGE_TEXT = {
    CaptchaType.NONE: "$mention, please send any message to this chat within $seconds seconds to prove you are not a bot.",
    CaptchaType.BUTTON: "$mention, please press the button below within $seconds seconds to prove you are not a bot.",
    CaptchaType.DIGITS: "($equation) $mention, please send the answer to this equation within $seconds seconds.",
    CaptchaType.IMAGE: "$mention, please send the text from the picture within $seconds seconds.",
}

CAPTCHA_BUTTON = "I am not a bot"
ONLY_CANDIDATE_CAN_REPLY = "Only the user being verified can press this button."

HELP = (
    "Hi! I protect this group from spam bots.\n\n"
    "Every newcomer gets a short challenge and is removed if they do not solve it in time.\n"
    "Make me an administrator with the right to delete messages and ban users.\n\n"
    "/policy shows the chat settings; admins can change them with "
    "<code>/policy key=value ...</code> (for example <code>/policy captcha_type=digits time_given=90</code>).\n"
    "/approve, sent in reply to a newcomer's message, lets them in without the challenge."
)

POLICY_ONLY_ADMINS = "Only chat administrators can use this command."
POLICY_UPDATED = "Settings updated."
APPROVE_USAGE = "Reply to a message of the user you want to approve."
APPROVE_NOTHING_PENDING = "This user has no pending verification."

_PLACEHOLDER = re.compile(r"\$(\w+)")
TEMPLATE_PLACEHOLDERS = ("username", "fullname", "title", "equation", "seconds")


def render(template: str, values: Mapping[str, str]) -> str:
    """Replace `$name` placeholders present in `values`, leaving unknown ones untouched."""
    return _PLACEHOLDER.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def has_placeholders(template: str) -> bool:
    return any(f"${name}" in template for name in TEMPLATE_PLACEHOLDERS)
