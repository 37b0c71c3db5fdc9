from __future__ import annotations

import asyncio
from html import escape
from typing import Optional

import structlog

from .. import strings
from ..adapters.base import ChatPlatform
from ..logging.events import report
from ..models import ChatPolicy, ChatUser
from ..utils.concurrency import BackgroundTasks

logger = structlog.get_logger(__name__)


class Greeter:
    """Sends the chat greeting after a successful verification and owns its auto-delete timers."""

    def __init__(self, platform: ChatPlatform) -> None:
        self._platform = platform
        self._timers = BackgroundTasks()

    async def greet(self, policy: ChatPolicy, user: ChatUser) -> Optional[int]:
        if not (policy.greets_users and policy.greeting_message):
            return None
        try:
            text = await self._render(policy, user)
            message_id = await self._platform.send_message(policy.chat_id, text)
        except Exception as exc:  # pylint: disable=broad-except
            report("greeting_failed", exc, chat_id=policy.chat_id, user_id=user.id)
            return None
        logger.info("user_greeted", chat_id=policy.chat_id, user_id=user.id, message_id=message_id)
        if policy.delete_greeting_time:
            self.schedule_deletion(policy.chat_id, message_id, policy.delete_greeting_time)
        return message_id

    def schedule_deletion(self, chat_id: int, message_id: int, delay: float) -> asyncio.Task:
        return self._timers.spawn(
            self._delete_later(chat_id, message_id, delay),
            name=f"greeting-delete:{chat_id}:{message_id}",
        )

    @property
    def pending_deletions(self) -> int:
        return len(self._timers)

    async def close(self) -> None:
        await self._timers.close()

    async def _render(self, policy: ChatPolicy, user: ChatUser) -> str:
        template = escape(policy.greeting_message or "", quote=False)
        if not strings.has_placeholders(template):
            return f"{template}\n\n{user.mention_html()}"
        values = {"username": user.mention_html(), "fullname": escape(user.full_name)}
        if "$title" in template:
            values["title"] = escape(await self._platform.get_chat_title(policy.chat_id))
        return strings.render(template, values)

    async def _delete_later(self, chat_id: int, message_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._platform.delete_message(chat_id, message_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("greeting_delete_failed", chat_id=chat_id, message_id=message_id, error=str(exc))
