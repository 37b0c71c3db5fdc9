from __future__ import annotations

import abc
from datetime import datetime
from typing import Iterable, Optional

from ..models import Candidate, ChatPolicy, RestrictedUser


class PolicyRepository(abc.ABC):
    @abc.abstractmethod
    async def get_policy(self, chat_id: int) -> Optional[ChatPolicy]:
        ...

    @abc.abstractmethod
    async def upsert_policy(self, policy: ChatPolicy) -> None:
        ...


class CandidateRepository(abc.ABC):
    @abc.abstractmethod
    async def list_candidates(self) -> list[Candidate]:
        ...

    @abc.abstractmethod
    async def add_candidates(self, candidates: Iterable[Candidate]) -> None:
        ...

    @abc.abstractmethod
    async def remove_candidates(self, chat_id: int, user_ids: Iterable[int]) -> None:
        ...

    @abc.abstractmethod
    async def list_restricted(self) -> list[RestrictedUser]:
        ...

    @abc.abstractmethod
    async def add_restricted(self, users: Iterable[RestrictedUser]) -> None:
        ...

    @abc.abstractmethod
    async def remove_restricted(self, chat_id: int, user_ids: Iterable[int]) -> None:
        ...


class MessageRepository(abc.ABC):
    @abc.abstractmethod
    async def record_message(self, chat_id: int, user_id: int, message_id: int, sent_at: datetime) -> None:
        ...

    @abc.abstractmethod
    async def pop_user_messages(self, chat_id: int, user_id: int) -> list[int]:
        ...

    @abc.abstractmethod
    async def prune_messages(self, older_than: datetime) -> int:
        ...


class StorageGateway(PolicyRepository, CandidateRepository, MessageRepository, abc.ABC):
    """Combined repository interface for convenience."""

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        ...
