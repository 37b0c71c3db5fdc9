from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from gatekeeper_bot.adapters.base import ChatPlatform, ReputationChecker
from gatekeeper_bot.challenges.generator import ChallengeGenerator
from gatekeeper_bot.models import (
    Candidate,
    CaptchaType,
    ChatPolicy,
    ChatUser,
    MemberPermissions,
    RestrictedUser,
)
from gatekeeper_bot.moderation.actions import ModerationActions
from gatekeeper_bot.policies.service import ChatPolicyService
from gatekeeper_bot.registry.candidates import CandidateRegistry
from gatekeeper_bot.storage.base import StorageGateway

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_user(user_id: int = 10, *, is_bot: bool = False, username: Optional[str] = "tester", first_name: str = "Test") -> ChatUser:
    return ChatUser(id=user_id, is_bot=is_bot, username=username, first_name=first_name)


def make_policy(chat_id: int = 100, **overrides) -> ChatPolicy:
    return ChatPolicy(chat_id=chat_id, **overrides)


def make_candidate(
    *,
    chat_id: int = 100,
    user_id: int = 10,
    created_at: Optional[datetime] = None,
    kind: CaptchaType = CaptchaType.DIGITS,
    answer: Optional[str] = "7",
    challenge_message_id: Optional[int] = 501,
    entry_message_id: Optional[int] = 500,
) -> Candidate:
    return Candidate(
        chat_id=chat_id,
        user_id=user_id,
        created_at=created_at or NOW,
        challenge_kind=kind,
        expected_answer=answer,
        challenge_message_id=challenge_message_id,
        entry_message_id=entry_message_id,
    )


class PlatformError(Exception):
    pass


class FakePlatform(ChatPlatform):
    """Records every call; `fail` holds operation names that should raise."""

    def __init__(self, *, bot_id: int = 1, admins: Iterable[int] = (), title: str = "Test Chat") -> None:
        self.bot_id = bot_id
        self.admins = set(admins)
        self.title = title
        self.fail: set[str] = set()
        self.permissions: dict[tuple[int, int], MemberPermissions] = {}
        self.sent: list[dict] = []
        self.deleted: list[tuple[int, int]] = []
        self.kicked: list[tuple[int, int, Optional[datetime]]] = []
        self.restricted: list[tuple[int, int, MemberPermissions, datetime]] = []
        self.callback_answers: list[tuple[str, Optional[str]]] = []
        self._next_message_id = 1000

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise PlatformError(f"{operation} failed")

    def _message_id(self) -> int:
        self._next_message_id += 1
        return self._next_message_id

    async def get_bot_id(self) -> int:
        return self.bot_id

    async def send_message(self, chat_id, text, *, button=None):
        self._check("send_message")
        message_id = self._message_id()
        self.sent.append({"chat_id": chat_id, "text": text, "button": button, "message_id": message_id})
        return message_id

    async def send_photo(self, chat_id, photo, caption):
        self._check("send_photo")
        message_id = self._message_id()
        self.sent.append({"chat_id": chat_id, "text": caption, "photo": photo, "message_id": message_id})
        return message_id

    async def delete_message(self, chat_id, message_id):
        self._check("delete_message")
        self.deleted.append((chat_id, message_id))

    async def kick_member(self, chat_id, user_id, until):
        self._check("kick_member")
        self.kicked.append((chat_id, user_id, until))

    async def restrict_member(self, chat_id, user_id, permissions, until):
        self._check("restrict_member")
        self.restricted.append((chat_id, user_id, permissions, until))

    async def get_member_permissions(self, chat_id, user_id):
        self._check("get_member_permissions")
        return self.permissions.get((chat_id, user_id), MemberPermissions())

    async def get_administrator_ids(self, chat_id):
        self._check("get_administrator_ids")
        return set(self.admins)

    async def answer_callback(self, callback_id, text=None):
        self._check("answer_callback")
        self.callback_answers.append((callback_id, text))

    async def get_chat_title(self, chat_id):
        return self.title


class StubReputation(ReputationChecker):
    def __init__(self, banned: Iterable[int] = (), *, error: Optional[Exception] = None) -> None:
        self.banned = set(banned)
        self.error = error
        self.checked: list[int] = []

    async def is_banned(self, user_id: int) -> bool:
        self.checked.append(user_id)
        if self.error is not None:
            raise self.error
        return user_id in self.banned


class InMemoryStorage(StorageGateway):
    def __init__(self) -> None:
        self.policies: dict[int, ChatPolicy] = {}
        self.candidates: dict[tuple[int, int], Candidate] = {}
        self.restricted: dict[tuple[int, int], RestrictedUser] = {}
        self.messages: dict[tuple[int, int], tuple[int, datetime]] = {}

    async def connect(self) -> None:  # pragma: no cover - noop
        return None

    async def disconnect(self) -> None:  # pragma: no cover - noop
        return None

    async def get_policy(self, chat_id):
        return self.policies.get(chat_id)

    async def upsert_policy(self, policy):
        self.policies[policy.chat_id] = policy

    async def list_candidates(self):
        return list(self.candidates.values())

    async def add_candidates(self, candidates):
        for candidate in candidates:
            self.candidates[(candidate.chat_id, candidate.user_id)] = candidate

    async def remove_candidates(self, chat_id, user_ids):
        for user_id in user_ids:
            self.candidates.pop((chat_id, user_id), None)

    async def list_restricted(self):
        return list(self.restricted.values())

    async def add_restricted(self, users):
        for user in users:
            self.restricted[(user.chat_id, user.user_id)] = user

    async def remove_restricted(self, chat_id, user_ids):
        for user_id in user_ids:
            self.restricted.pop((chat_id, user_id), None)

    async def record_message(self, chat_id, user_id, message_id, sent_at):
        self.messages.setdefault((chat_id, message_id), (user_id, sent_at))

    async def pop_user_messages(self, chat_id, user_id):
        found = [key for key, (owner, _) in self.messages.items() if key[0] == chat_id and owner == user_id]
        for key in found:
            del self.messages[key]
        return [message_id for _, message_id in found]

    async def prune_messages(self, older_than):
        stale = [key for key, (_, sent_at) in self.messages.items() if sent_at < older_than]
        for key in stale:
            del self.messages[key]
        return len(stale)


def make_generator(seed: int = 7) -> ChallengeGenerator:
    return ChallengeGenerator(rng=random.Random(seed))


class Harness:
    """Registry, policy service and moderation actions wired over in-memory fakes."""

    def __init__(self, *, admins: Iterable[int] = (), clock: Optional[FrozenClock] = None) -> None:
        self.clock = clock or FrozenClock()
        self.storage = InMemoryStorage()
        self.platform = FakePlatform(admins=admins)
        self.registry = CandidateRegistry(self.storage)
        self.policies = ChatPolicyService(self.storage, self.registry)
        self.actions = ModerationActions(
            self.platform,
            self.registry,
            self.storage,
            soft_ban_seconds=45,
            restriction_ttl=timedelta(hours=24),
            clock=self.clock,
        )

    def set_policy(self, chat_id: int = 100, **overrides) -> ChatPolicy:
        policy = make_policy(chat_id, **overrides)
        self.storage.policies[chat_id] = policy
        return policy
