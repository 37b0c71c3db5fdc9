from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Optional

import structlog

from ..adapters.base import ChatPlatform
from ..logging.events import report
from ..models import Candidate, ChatPolicy, MemberPermissions
from ..registry.candidates import CandidateRegistry
from ..storage.base import MessageRepository
from ..utils.clock import Clock, utcnow

logger = structlog.get_logger(__name__)

TEXT_ONLY = MemberPermissions(
    can_send_messages=True,
    can_send_media_messages=False,
    can_send_other_messages=False,
    can_add_web_page_previews=False,
)


class ModerationActions:
    """
    The only component that changes membership state on the platform.

    Platform failures are reported and swallowed here; registry and storage
    failures propagate to the caller's unit of work.
    """

    def __init__(
        self,
        platform: ChatPlatform,
        registry: CandidateRegistry,
        messages: Optional[MessageRepository] = None,
        *,
        soft_ban_seconds: int = 45,
        restriction_ttl: timedelta = timedelta(hours=24),
        clock: Clock = utcnow,
    ) -> None:
        self._platform = platform
        self._registry = registry
        self._messages = messages
        self._soft_ban = timedelta(seconds=soft_ban_seconds)
        self._restriction_ttl = restriction_ttl
        self._clock = clock

    async def delete_message(self, chat_id: int, message_id: Optional[int], *, reason: str) -> bool:
        if message_id is None:
            return False
        try:
            await self._platform.delete_message(chat_id, message_id)
        except Exception as exc:  # pylint: disable=broad-except
            report("delete_message_failed", exc, chat_id=chat_id, message_id=message_id, reason=reason)
            return False
        return True

    async def kick(
        self,
        policy: ChatPolicy,
        user_id: int,
        *,
        candidate: Optional[Candidate] = None,
        entry_message_id: Optional[int] = None,
    ) -> bool:
        """
        Ban `user_id`: forever when the chat bans users, otherwise a soft ban that
        lapses after the soft-ban window. Candidate and restriction records are
        dropped whether or not the ban call succeeded.
        """
        chat_id = policy.chat_id
        until = None if policy.ban_users else self._clock() + self._soft_ban
        kicked = True
        try:
            await self._platform.kick_member(chat_id, user_id, until)
            logger.info("member_kicked", chat_id=chat_id, user_id=user_id, permanent=until is None)
        except Exception as exc:  # pylint: disable=broad-except
            kicked = False
            report("kick_failed", exc, chat_id=chat_id, user_id=user_id)

        removed = await self._registry.remove_candidates(chat_id, [user_id])
        await self._registry.remove_restricted(chat_id, [user_id])
        candidate = candidate or (removed[0] if removed else None)

        if candidate is not None:
            entry_message_id = entry_message_id or candidate.entry_message_id
        if policy.delete_entry_on_kick and entry_message_id is not None:
            await self.delete_message(chat_id, entry_message_id, reason="entry_on_kick")
        if candidate is not None and candidate.challenge_message_id is not None:
            await self.delete_message(chat_id, candidate.challenge_message_id, reason="challenge_on_kick")
        return kicked

    async def kick_candidates(self, policy: ChatPolicy, candidates: Iterable[Candidate]) -> int:
        kicked = 0
        for candidate in candidates:
            try:
                if await self.kick(policy, candidate.user_id, candidate=candidate):
                    kicked += 1
            except Exception as exc:  # pylint: disable=broad-except
                report("kick_candidate_failed", exc, chat_id=policy.chat_id, user_id=candidate.user_id)
        return kicked

    async def restrict(self, chat_id: int, user_id: int) -> bool:
        """Limit a member to text messages for the restriction window, unless they already carry custom limits."""
        try:
            current = await self._platform.get_member_permissions(chat_id, user_id)
            if not current.is_default():
                logger.info("restriction_skipped", chat_id=chat_id, user_id=user_id, reason="custom_permissions")
                return False
            await self._platform.restrict_member(
                chat_id,
                user_id,
                TEXT_ONLY,
                until=self._clock() + self._restriction_ttl,
            )
        except Exception as exc:  # pylint: disable=broad-except
            report("restrict_failed", exc, chat_id=chat_id, user_id=user_id)
            return False
        logger.info("member_restricted", chat_id=chat_id, user_id=user_id)
        return True

    async def purge_user_messages(self, chat_id: int, user_id: int) -> int:
        if self._messages is None:
            return 0
        message_ids = await self._messages.pop_user_messages(chat_id, user_id)
        deleted = 0
        for message_id in message_ids:
            if await self.delete_message(chat_id, message_id, reason="purge_on_join"):
                deleted += 1
        if message_ids:
            logger.info("user_messages_purged", chat_id=chat_id, user_id=user_id, deleted=deleted, total=len(message_ids))
        return deleted
