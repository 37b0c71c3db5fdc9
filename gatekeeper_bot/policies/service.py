from __future__ import annotations

import dataclasses
from typing import Mapping, Optional

import structlog

from ..models import CaptchaType, ChatPolicy, GatekeeperError
from ..registry.candidates import CandidateRegistry
from ..storage.base import PolicyRepository
from ..utils.concurrency import KeyedLocks

logger = structlog.get_logger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
NULL_VALUES = {"", "none", "null", "off"}

EDITABLE_FIELDS = tuple(f.name for f in dataclasses.fields(ChatPolicy) if f.name != "chat_id")


class PolicyValueError(GatekeeperError):
    pass


def parse_policy_value(name: str, raw: str):
    raw = raw.strip()
    lowered = raw.lower()
    if name == "captcha_type":
        try:
            return CaptchaType(lowered)
        except ValueError as exc:
            raise PolicyValueError(
                f"captcha_type must be one of {', '.join(kind.value for kind in CaptchaType)}"
            ) from exc
    if name == "time_given":
        try:
            value = int(raw)
        except ValueError as exc:
            raise PolicyValueError(f"{name} must be an integer number of seconds") from exc
        if value <= 0:
            raise PolicyValueError(f"{name} must be positive")
        return value
    if name == "delete_greeting_time":
        if lowered in NULL_VALUES:
            return None
        try:
            value = int(raw)
        except ValueError as exc:
            raise PolicyValueError(f"{name} must be an integer number of seconds or 'off'") from exc
        return value if value > 0 else None
    if name in {"greeting_message", "captcha_message"}:
        return None if lowered in {"none", "null"} or not raw else raw
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise PolicyValueError(f"{name} must be true or false")


def apply_policy_changes(policy: ChatPolicy, changes: Mapping[str, str]) -> ChatPolicy:
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise PolicyValueError(f"Unknown setting(s): {', '.join(unknown)}")
    parsed = {name: parse_policy_value(name, raw) for name, raw in changes.items()}
    return dataclasses.replace(policy, **parsed)


class ChatPolicyService:
    """Read-through cache in front of the policy repository."""

    def __init__(self, repository: PolicyRepository, registry: Optional[CandidateRegistry] = None) -> None:
        self._repository = repository
        self._registry = registry
        self._cache: dict[int, ChatPolicy] = {}
        self._locks = KeyedLocks()

    async def get_policy(self, chat_id: int) -> ChatPolicy:
        cached = self._cache.get(chat_id)
        if cached is not None:
            return cached
        async with self._locks(chat_id):
            return await self._load(chat_id)

    async def update_policy(self, chat_id: int, changes: Mapping[str, str]) -> ChatPolicy:
        async with self._locks(chat_id):
            current = await self._load(chat_id)
            updated = apply_policy_changes(current, changes)
            await self._repository.upsert_policy(updated)
            self._cache[chat_id] = updated
        logger.info("policy_updated", chat_id=chat_id, fields=sorted(changes))
        if current.restrict and not updated.restrict and self._registry is not None:
            await self._registry.clear_restricted(chat_id)
        return updated

    async def _load(self, chat_id: int) -> ChatPolicy:
        # Caller holds the chat lock.
        if chat_id not in self._cache:
            self._cache[chat_id] = await self._repository.get_policy(chat_id) or ChatPolicy(chat_id=chat_id)
        return self._cache[chat_id]
