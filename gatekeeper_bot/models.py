from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from html import escape
from typing import Optional


class CaptchaType(str, Enum):
    NONE = "none"
    BUTTON = "button"
    DIGITS = "digits"
    IMAGE = "image"


class GatekeeperError(Exception):
    pass


@dataclass(slots=True, frozen=True)
class ChatUser:
    id: int
    is_bot: bool = False
    username: Optional[str] = None
    first_name: str = ""
    last_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.first_name or self.username or str(self.id)

    @property
    def display_name(self) -> str:
        return f"@{self.username}" if self.username else self.full_name

    def mention_html(self) -> str:
        return f'<a href="tg://user?id={self.id}">{escape(self.display_name)}</a>'


@dataclass(slots=True, frozen=True)
class Candidate:
    """A joined user whose verification is still pending. Never mutated, only added or removed."""

    chat_id: int
    user_id: int
    created_at: datetime
    challenge_kind: CaptchaType
    expected_answer: Optional[str] = None
    challenge_message_id: Optional[int] = None
    entry_message_id: Optional[int] = None


@dataclass(slots=True, frozen=True)
class RestrictedUser:
    chat_id: int
    user_id: int
    restricted_at: datetime


@dataclass(slots=True)
class ChatPolicy:
    chat_id: int
    captcha_type: CaptchaType = CaptchaType.NONE
    strict: bool = False
    restrict: bool = False
    ban_users: bool = False
    time_given: int = 60
    under_attack: bool = False
    delete_entry_messages: bool = False
    delete_entry_on_kick: bool = False
    greets_users: bool = False
    greeting_message: Optional[str] = None
    delete_greeting_time: Optional[int] = None
    captcha_message: Optional[str] = None


@dataclass(slots=True, frozen=True)
class MemberPermissions:
    is_member: bool = True
    can_send_messages: bool = True
    can_send_media_messages: bool = True
    can_send_other_messages: bool = True
    can_add_web_page_previews: bool = True

    def is_default(self) -> bool:
        return (
            self.is_member
            and self.can_send_messages
            and self.can_send_media_messages
            and self.can_send_other_messages
            and self.can_add_web_page_previews
        )


@dataclass(slots=True)
class JoinEvent:
    chat_id: int
    actor_id: int
    message_id: int
    members: list[ChatUser] = field(default_factory=list)


@dataclass(slots=True)
class IncomingMessage:
    chat_id: int
    message_id: int
    sender: ChatUser
    text: Optional[str] = None


@dataclass(slots=True)
class ButtonPress:
    callback_id: str
    presser: ChatUser
    data: str


__all__ = [
    "ButtonPress",
    "CaptchaType",
    "Candidate",
    "ChatPolicy",
    "ChatUser",
    "GatekeeperError",
    "IncomingMessage",
    "JoinEvent",
    "MemberPermissions",
    "RestrictedUser",
]
