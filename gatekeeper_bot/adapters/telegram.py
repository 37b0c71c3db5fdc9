from __future__ import annotations

from datetime import datetime
from typing import Optional

from aiogram import Bot
from aiogram.enums import ChatMemberStatus, ParseMode
from aiogram.types import (
    BufferedInputFile,
    ChatMemberRestricted,
    ChatPermissions,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    LinkPreviewOptions,
)

from ..models import MemberPermissions
from .base import ChatPlatform

NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


class TelegramPlatform(ChatPlatform):
    """ChatPlatform backed by an aiogram Bot. Errors from the Bot API propagate to the caller."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def get_bot_id(self) -> int:
        return self._bot.id

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        button: Optional[tuple[str, str]] = None,
    ) -> int:
        markup = None
        if button is not None:
            label, data = button
            markup = InlineKeyboardMarkup(
                inline_keyboard=[[InlineKeyboardButton(text=label, callback_data=data)]]
            )
        message = await self._bot.send_message(
            chat_id,
            text,
            parse_mode=ParseMode.HTML,
            reply_markup=markup,
            link_preview_options=NO_PREVIEW,
        )
        return message.message_id

    async def send_photo(self, chat_id: int, photo: bytes, caption: str) -> int:
        message = await self._bot.send_photo(
            chat_id,
            BufferedInputFile(photo, filename="captcha.png"),
            caption=caption,
            parse_mode=ParseMode.HTML,
        )
        return message.message_id

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._bot.delete_message(chat_id, message_id)

    async def kick_member(self, chat_id: int, user_id: int, until: Optional[datetime]) -> None:
        await self._bot.ban_chat_member(chat_id, user_id, until_date=until)

    async def restrict_member(
        self,
        chat_id: int,
        user_id: int,
        permissions: MemberPermissions,
        until: datetime,
    ) -> None:
        media = permissions.can_send_media_messages
        await self._bot.restrict_chat_member(
            chat_id,
            user_id,
            permissions=ChatPermissions(
                can_send_messages=permissions.can_send_messages,
                can_send_audios=media,
                can_send_documents=media,
                can_send_photos=media,
                can_send_videos=media,
                can_send_video_notes=media,
                can_send_voice_notes=media,
                can_send_polls=permissions.can_send_other_messages,
                can_send_other_messages=permissions.can_send_other_messages,
                can_add_web_page_previews=permissions.can_add_web_page_previews,
                can_change_info=False,
                can_invite_users=False,
                can_pin_messages=False,
            ),
            until_date=until,
        )

    async def get_member_permissions(self, chat_id: int, user_id: int) -> MemberPermissions:
        member = await self._bot.get_chat_member(chat_id, user_id)
        if isinstance(member, ChatMemberRestricted):
            return MemberPermissions(
                is_member=member.is_member,
                can_send_messages=member.can_send_messages,
                can_send_media_messages=all(
                    (
                        member.can_send_audios,
                        member.can_send_documents,
                        member.can_send_photos,
                        member.can_send_videos,
                        member.can_send_video_notes,
                        member.can_send_voice_notes,
                    )
                ),
                can_send_other_messages=member.can_send_other_messages,
                can_add_web_page_previews=member.can_add_web_page_previews,
            )
        if member.status in {ChatMemberStatus.LEFT, ChatMemberStatus.KICKED}:
            return MemberPermissions(is_member=False)
        return MemberPermissions()

    async def get_administrator_ids(self, chat_id: int) -> set[int]:
        admins = await self._bot.get_chat_administrators(chat_id)
        return {admin.user.id for admin in admins}

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        await self._bot.answer_callback_query(callback_id, text=text)

    async def get_chat_title(self, chat_id: int) -> str:
        chat = await self._bot.get_chat(chat_id)
        return chat.title or chat.full_name or str(chat_id)
