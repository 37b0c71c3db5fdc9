from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

import structlog

from ..models import Candidate, RestrictedUser
from ..storage.base import CandidateRepository
from ..utils.concurrency import KeyedLocks

logger = structlog.get_logger(__name__)


class CandidateRegistry:
    """
    Pending candidates and restricted-user bookkeeping, keyed by (chat_id, user_id).

    The registry is the single source of truth for both record kinds. Every
    mutation runs under the owning chat's lock and is written through to the
    repository, so different chats never contend and a record can only be
    removed once.
    """

    def __init__(self, repository: CandidateRepository) -> None:
        self._repository = repository
        self._candidates: defaultdict[int, dict[int, Candidate]] = defaultdict(dict)
        self._restricted: defaultdict[int, dict[int, RestrictedUser]] = defaultdict(dict)
        self._locks = KeyedLocks()

    async def bootstrap(self) -> None:
        candidates = await self._repository.list_candidates()
        restricted = await self._repository.list_restricted()
        self._candidates.clear()
        self._restricted.clear()
        for candidate in candidates:
            self._candidates[candidate.chat_id][candidate.user_id] = candidate
        for user in restricted:
            self._restricted[user.chat_id][user.user_id] = user
        logger.info("candidate_registry_bootstrapped", candidates=len(candidates), restricted=len(restricted))

    async def add_candidates(self, chat_id: int, candidates: Iterable[Candidate]) -> list[Candidate]:
        """Insert `candidates`; returns the pending records they replaced (a user who joined again)."""
        # Later entries for the same user win, so a batch never stores two records per user.
        batch = {candidate.user_id: candidate for candidate in candidates if candidate.chat_id == chat_id}
        if not batch:
            return []
        async with self._locks(chat_id):
            pending = self._candidates[chat_id]
            displaced = [pending[user_id] for user_id in batch if user_id in pending]
            await self._repository.add_candidates(batch.values())
            pending.update(batch)
        logger.info("candidates_added", chat_id=chat_id, user_ids=sorted(batch), replaced=len(displaced))
        return displaced

    async def remove_candidates(self, chat_id: int, user_ids: Iterable[int]) -> list[Candidate]:
        """Remove and return the candidates that were still pending; already-gone ids are ignored."""
        wanted = set(user_ids)
        async with self._locks(chat_id):
            pending = self._candidates.get(chat_id, {})
            removed = [pending[user_id] for user_id in wanted if user_id in pending]
            if not removed:
                return []
            await self._repository.remove_candidates(chat_id, [c.user_id for c in removed])
            for candidate in removed:
                pending.pop(candidate.user_id, None)
            if not pending:
                self._candidates.pop(chat_id, None)
        logger.info("candidates_removed", chat_id=chat_id, user_ids=sorted(c.user_id for c in removed))
        return removed

    async def remove_candidate(self, chat_id: int, user_id: int) -> Optional[Candidate]:
        removed = await self.remove_candidates(chat_id, [user_id])
        return removed[0] if removed else None

    async def claim_expired(self, chat_id: int, cutoff: datetime) -> list[Candidate]:
        """Atomically remove and return candidates created at or before `cutoff`."""
        async with self._locks(chat_id):
            pending = self._candidates.get(chat_id, {})
            expired = [c for c in pending.values() if c.created_at <= cutoff]
            if not expired:
                return []
            await self._repository.remove_candidates(chat_id, [c.user_id for c in expired])
            for candidate in expired:
                pending.pop(candidate.user_id, None)
            if not pending:
                self._candidates.pop(chat_id, None)
        logger.info("candidates_claimed_expired", chat_id=chat_id, count=len(expired))
        return expired

    def get_candidate(self, chat_id: int, user_id: int) -> Optional[Candidate]:
        return self._candidates.get(chat_id, {}).get(user_id)

    def candidates_for(self, chat_id: int) -> list[Candidate]:
        return list(self._candidates.get(chat_id, {}).values())

    def chats_with_candidates(self) -> list[int]:
        return [chat_id for chat_id, pending in self._candidates.items() if pending]

    async def add_restricted(self, chat_id: int, users: Iterable[RestrictedUser]) -> None:
        batch = {user.user_id: user for user in users if user.chat_id == chat_id}
        if not batch:
            return
        async with self._locks(chat_id):
            await self._repository.add_restricted(batch.values())
            self._restricted[chat_id].update(batch)
        logger.info("restricted_users_added", chat_id=chat_id, user_ids=sorted(batch))

    async def remove_restricted(self, chat_id: int, user_ids: Iterable[int]) -> list[RestrictedUser]:
        wanted = set(user_ids)
        async with self._locks(chat_id):
            records = self._restricted.get(chat_id, {})
            removed = [records[user_id] for user_id in wanted if user_id in records]
            if not removed:
                return []
            await self._repository.remove_restricted(chat_id, [r.user_id for r in removed])
            for record in removed:
                records.pop(record.user_id, None)
            if not records:
                self._restricted.pop(chat_id, None)
        logger.info("restricted_users_removed", chat_id=chat_id, user_ids=sorted(r.user_id for r in removed))
        return removed

    async def clear_restricted(self, chat_id: int) -> list[RestrictedUser]:
        return await self.remove_restricted(chat_id, list(self._restricted.get(chat_id, {})))

    def restricted_for(self, chat_id: int) -> list[RestrictedUser]:
        return list(self._restricted.get(chat_id, {}).values())

    def chats_with_restricted(self) -> list[int]:
        return [chat_id for chat_id, records in self._restricted.items() if records]
