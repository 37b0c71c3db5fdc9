from __future__ import annotations

import abc
from datetime import datetime
from typing import Optional

from ..models import MemberPermissions


class ChatPlatform(abc.ABC):
    """Operations the gatekeeper needs from the messaging platform. Message ids are returned as ints."""

    @abc.abstractmethod
    async def get_bot_id(self) -> int:
        ...

    @abc.abstractmethod
    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        button: Optional[tuple[str, str]] = None,
    ) -> int:
        """Send an HTML message; `button` is an optional (label, callback_data) inline button."""

    @abc.abstractmethod
    async def send_photo(self, chat_id: int, photo: bytes, caption: str) -> int:
        ...

    @abc.abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> None:
        ...

    @abc.abstractmethod
    async def kick_member(self, chat_id: int, user_id: int, until: Optional[datetime]) -> None:
        """Ban the member; `until=None` bans forever."""

    @abc.abstractmethod
    async def restrict_member(
        self,
        chat_id: int,
        user_id: int,
        permissions: MemberPermissions,
        until: datetime,
    ) -> None:
        ...

    @abc.abstractmethod
    async def get_member_permissions(self, chat_id: int, user_id: int) -> MemberPermissions:
        ...

    @abc.abstractmethod
    async def get_administrator_ids(self, chat_id: int) -> set[int]:
        ...

    @abc.abstractmethod
    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        ...

    @abc.abstractmethod
    async def get_chat_title(self, chat_id: int) -> str:
        ...


class ReputationChecker(abc.ABC):
    @abc.abstractmethod
    async def is_banned(self, user_id: int) -> bool:
        ...

    async def close(self) -> None:
        return None
