from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable

import structlog

from ..utils.concurrency import wait_for_event

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class _Hold:
    count: int = 0
    released: asyncio.Event = field(default_factory=asyncio.Event)


class AdmissionGuard:
    """
    Process-wide set of (chat_id, user_id) pairs whose admission is in flight.

    A pair is held from the moment a join event starts until its candidate
    records are persisted (or the admission fails). Holds are reference
    counted so overlapping join events for the same user release correctly.
    """

    def __init__(self) -> None:
        self._holds: dict[tuple[int, int], _Hold] = {}

    @asynccontextmanager
    async def hold(self, chat_id: int, user_ids: Iterable[int]) -> AsyncIterator[None]:
        keys = [(chat_id, user_id) for user_id in set(user_ids)]
        for key in keys:
            self._holds.setdefault(key, _Hold()).count += 1
        logger.debug("admission_guard_acquired", chat_id=chat_id, user_ids=[key[1] for key in keys])
        try:
            yield
        finally:
            for key in keys:
                hold = self._holds.get(key)
                if hold is None:
                    continue
                hold.count -= 1
                if hold.count <= 0:
                    self._holds.pop(key, None)
                    hold.released.set()
            logger.debug("admission_guard_released", chat_id=chat_id, user_ids=[key[1] for key in keys])

    def is_held(self, chat_id: int, user_id: int) -> bool:
        return (chat_id, user_id) in self._holds

    async def wait_released(self, chat_id: int, user_id: int, timeout: float) -> bool:
        """Return True once the pair is free, False if it is still held after `timeout` seconds."""
        hold = self._holds.get((chat_id, user_id))
        if hold is None:
            return True
        return await wait_for_event(hold.released, timeout)
