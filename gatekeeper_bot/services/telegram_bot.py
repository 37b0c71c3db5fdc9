from __future__ import annotations

import shlex
from contextlib import asynccontextmanager
from datetime import timezone
from enum import Enum
from html import escape
from typing import Any, Awaitable, Callable

import structlog
from aiogram import Bot, Dispatcher, F
from aiogram.enums import ChatType, ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message, User

from .. import strings
from ..adapters.telegram import TelegramPlatform
from ..config import BotSettings
from ..models import ButtonPress, ChatUser, IncomingMessage, JoinEvent
from ..policies.service import EDITABLE_FIELDS, PolicyValueError
from .gatekeeper_service import GatekeeperCoordinator
from .verification import BUTTON_PAYLOAD, ButtonOutcome

logger = structlog.get_logger(__name__)

GROUP_TYPES = {ChatType.GROUP, ChatType.SUPERGROUP}

Handler = Callable[[Message, dict[str, Any]], Awaitable[Any]]


def to_chat_user(user: User) -> ChatUser:
    return ChatUser(
        id=user.id,
        is_bot=user.is_bot,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
    )


class TelegramGatekeeperApp:
    """
    Aiogram integration wrapper that routes Telegram updates into the gatekeeper.

    - Join and leave service messages drive admission and notice cleanup.
    - Every group message passes the verification middleware before any handler runs.
    - `<chat_id>~<user_id>` callbacks are button-captcha presses.
    - `/policy` and `/approve` give chat admins control over the gate.
    """

    def __init__(self, settings: BotSettings) -> None:
        self._settings = settings
        self.bot = Bot(token=settings.telegram_token)
        self.dispatcher = Dispatcher()
        self.platform = TelegramPlatform(self.bot)
        self.coordinator = GatekeeperCoordinator(settings, self.platform, on_bot_added=self._send_introduction)
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.dispatcher.message.outer_middleware(self._verification_middleware)
        self.dispatcher.message(F.new_chat_members)(self._handle_new_members)
        self.dispatcher.message(F.left_chat_member)(self._handle_left_member)
        self.dispatcher.message(Command(commands=["start", "help"]))(self._handle_help)
        self.dispatcher.message(Command(commands=["policy"]))(self._handle_policy)
        self.dispatcher.message(Command(commands=["approve"]))(self._handle_approve)
        self.dispatcher.callback_query(F.data.regexp(BUTTON_PAYLOAD.pattern))(self._handle_button)

    async def _verification_middleware(self, handler: Handler, event: Message, data: dict[str, Any]) -> Any:
        if (
            event.chat.type in GROUP_TYPES
            and event.from_user is not None
            and not event.new_chat_members
            and event.left_chat_member is None
        ):
            incoming = IncomingMessage(
                chat_id=event.chat.id,
                message_id=event.message_id,
                sender=to_chat_user(event.from_user),
                text=event.text,
            )
            await self.coordinator.on_message(incoming, event.date.replace(tzinfo=timezone.utc))
        return await handler(event, data)

    async def _handle_new_members(self, message: Message) -> None:
        if message.chat.type not in GROUP_TYPES:
            return
        event = JoinEvent(
            chat_id=message.chat.id,
            actor_id=message.from_user.id if message.from_user else 0,
            message_id=message.message_id,
            members=[to_chat_user(user) for user in message.new_chat_members or []],
        )
        logger.info(
            "telegram_members_joined",
            chat_id=event.chat_id,
            actor_id=event.actor_id,
            user_ids=[member.id for member in event.members],
        )
        await self.coordinator.on_members_joined(event)

    async def _handle_left_member(self, message: Message) -> None:
        if message.chat.type not in GROUP_TYPES:
            return
        await self.coordinator.on_member_left(message.chat.id, message.message_id)

    async def _handle_button(self, callback: CallbackQuery) -> None:
        press = ButtonPress(
            callback_id=callback.id,
            presser=to_chat_user(callback.from_user),
            data=callback.data or "",
        )
        outcome = await self.coordinator.on_button(press)
        if outcome == ButtonOutcome.REJECTED:
            return
        try:
            await callback.answer()
        except TelegramBadRequest as exc:
            logger.debug("callback_answer_failed", error=str(exc))

    async def _handle_help(self, message: Message) -> None:
        await message.reply(strings.HELP, parse_mode=ParseMode.HTML)

    async def _send_introduction(self, chat_id: int) -> None:
        await self.bot.send_message(chat_id, strings.HELP, parse_mode=ParseMode.HTML)

    async def _handle_policy(self, message: Message) -> None:
        if message.chat.type not in GROUP_TYPES:
            await message.reply("Use /policy inside the group you want to configure.")
            return
        try:
            tokens = shlex.split(message.text or "")[1:]
        except ValueError:
            await message.reply("Usage: /policy [key=value ...]")
            return
        chat_id = message.chat.id
        if not await self._ensure_admin(chat_id, message.from_user.id if message.from_user else 0):
            await message.reply(strings.POLICY_ONLY_ADMINS)
            return
        if not tokens:
            policy = await self.coordinator.policies.get_policy(chat_id)
            await message.reply(self._format_policy(policy), parse_mode=ParseMode.HTML)
            return
        changes: dict[str, str] = {}
        for token in tokens:
            key, separator, value = token.partition("=")
            if not separator:
                await message.reply(f"Expected key=value, got {token!r}.")
                return
            changes[key.strip().lower()] = value
        try:
            policy = await self.coordinator.policies.update_policy(chat_id, changes)
        except PolicyValueError as exc:
            await message.reply(str(exc))
            return
        await message.reply(
            f"{strings.POLICY_UPDATED}\n\n{self._format_policy(policy)}",
            parse_mode=ParseMode.HTML,
        )

    async def _handle_approve(self, message: Message) -> None:
        if message.chat.type not in GROUP_TYPES:
            return
        if not await self._ensure_admin(message.chat.id, message.from_user.id if message.from_user else 0):
            await message.reply(strings.POLICY_ONLY_ADMINS)
            return
        target = message.reply_to_message.from_user if message.reply_to_message else None
        if target is None:
            await message.reply(strings.APPROVE_USAGE)
            return
        if not await self.coordinator.approve(message.chat.id, to_chat_user(target)):
            await message.reply(strings.APPROVE_NOTHING_PENDING)

    def _format_policy(self, policy) -> str:
        lines = []
        for name in EDITABLE_FIELDS:
            value = getattr(policy, name)
            if isinstance(value, Enum):
                value = value.value
            lines.append(f"<code>{name}</code>: {escape(str(value))}")
        return "\n".join(lines)

    async def _ensure_admin(self, chat_id: int, user_id: int) -> bool:
        try:
            admin_ids = await self.platform.get_administrator_ids(chat_id)
        except (TelegramBadRequest, TelegramForbiddenError) as exc:
            logger.warning("admin_check_failed", chat_id=chat_id, user_id=user_id, error=str(exc))
            return False
        return user_id in admin_ids

    async def run(self) -> None:
        await self.coordinator.start()
        try:
            await self.dispatcher.start_polling(
                self.bot,
                allowed_updates=self.dispatcher.resolve_used_update_types(),
            )
        finally:
            await self.coordinator.shutdown()
            await self.bot.session.close()


@asynccontextmanager
async def telegram_app(settings: BotSettings):
    app = TelegramGatekeeperApp(settings)
    await app.coordinator.start()
    try:
        yield app
    finally:
        await app.coordinator.shutdown()
        await app.bot.session.close()
