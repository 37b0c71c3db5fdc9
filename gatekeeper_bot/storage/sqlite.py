from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite
import structlog

from ..models import Candidate, CaptchaType, ChatPolicy, RestrictedUser
from .base import StorageGateway

logger = structlog.get_logger(__name__)


CREATE_POLICIES = """
CREATE TABLE IF NOT EXISTS chat_policies (
    chat_id INTEGER PRIMARY KEY,
    captcha_type TEXT NOT NULL,
    strict INTEGER NOT NULL,
    restrict_users INTEGER NOT NULL,
    ban_users INTEGER NOT NULL,
    time_given INTEGER NOT NULL,
    under_attack INTEGER NOT NULL,
    delete_entry_messages INTEGER NOT NULL,
    delete_entry_on_kick INTEGER NOT NULL,
    greets_users INTEGER NOT NULL,
    greeting_message TEXT,
    delete_greeting_time INTEGER,
    captcha_message TEXT
)
"""


CREATE_CANDIDATES = """
CREATE TABLE IF NOT EXISTS candidates (
    chat_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    challenge_kind TEXT NOT NULL,
    expected_answer TEXT,
    challenge_message_id INTEGER,
    entry_message_id INTEGER,
    PRIMARY KEY (chat_id, user_id)
)
"""


CREATE_RESTRICTED = """
CREATE TABLE IF NOT EXISTS restricted_users (
    chat_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    restricted_at TEXT NOT NULL,
    PRIMARY KEY (chat_id, user_id)
)
"""


CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS stored_messages (
    chat_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    message_id INTEGER NOT NULL,
    sent_at TEXT NOT NULL,
    PRIMARY KEY (chat_id, message_id)
)
"""


class SQLiteStorage(StorageGateway):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        for statement in (CREATE_POLICIES, CREATE_CANDIDATES, CREATE_RESTRICTED, CREATE_MESSAGES):
            await self._conn.execute(statement)
        await self._conn.execute(
            "CREATE INDEX IF NOT EXISTS stored_messages_user ON stored_messages (chat_id, user_id)"
        )
        await self._conn.commit()
        logger.info("sqlite_connected", path=str(self._path))

    async def disconnect(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def get_policy(self, chat_id: int) -> Optional[ChatPolicy]:
        assert self._conn
        cursor = await self._conn.execute("SELECT * FROM chat_policies WHERE chat_id = ?", (chat_id,))
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return ChatPolicy(
            chat_id=row["chat_id"],
            captcha_type=CaptchaType(row["captcha_type"]),
            strict=bool(row["strict"]),
            restrict=bool(row["restrict_users"]),
            ban_users=bool(row["ban_users"]),
            time_given=row["time_given"],
            under_attack=bool(row["under_attack"]),
            delete_entry_messages=bool(row["delete_entry_messages"]),
            delete_entry_on_kick=bool(row["delete_entry_on_kick"]),
            greets_users=bool(row["greets_users"]),
            greeting_message=row["greeting_message"],
            delete_greeting_time=row["delete_greeting_time"],
            captcha_message=row["captcha_message"],
        )

    async def upsert_policy(self, policy: ChatPolicy) -> None:
        assert self._conn
        await self._conn.execute(
            """
            INSERT INTO chat_policies (
                chat_id, captcha_type, strict, restrict_users, ban_users, time_given,
                under_attack, delete_entry_messages, delete_entry_on_kick, greets_users,
                greeting_message, delete_greeting_time, captcha_message
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(chat_id) DO UPDATE SET
                captcha_type=excluded.captcha_type,
                strict=excluded.strict,
                restrict_users=excluded.restrict_users,
                ban_users=excluded.ban_users,
                time_given=excluded.time_given,
                under_attack=excluded.under_attack,
                delete_entry_messages=excluded.delete_entry_messages,
                delete_entry_on_kick=excluded.delete_entry_on_kick,
                greets_users=excluded.greets_users,
                greeting_message=excluded.greeting_message,
                delete_greeting_time=excluded.delete_greeting_time,
                captcha_message=excluded.captcha_message
            """,
            (
                policy.chat_id,
                policy.captcha_type.value,
                int(policy.strict),
                int(policy.restrict),
                int(policy.ban_users),
                policy.time_given,
                int(policy.under_attack),
                int(policy.delete_entry_messages),
                int(policy.delete_entry_on_kick),
                int(policy.greets_users),
                policy.greeting_message,
                policy.delete_greeting_time,
                policy.captcha_message,
            ),
        )
        await self._conn.commit()
        logger.info("sqlite_upsert_policy", chat_id=policy.chat_id)

    async def list_candidates(self) -> list[Candidate]:
        assert self._conn
        cursor = await self._conn.execute("SELECT * FROM candidates")
        rows = await cursor.fetchall()
        await cursor.close()
        return [
            Candidate(
                chat_id=row["chat_id"],
                user_id=row["user_id"],
                created_at=datetime.fromisoformat(row["created_at"]),
                challenge_kind=CaptchaType(row["challenge_kind"]),
                expected_answer=row["expected_answer"],
                challenge_message_id=row["challenge_message_id"],
                entry_message_id=row["entry_message_id"],
            )
            for row in rows
        ]

    async def add_candidates(self, candidates: Iterable[Candidate]) -> None:
        assert self._conn
        entries = [
            (
                candidate.chat_id,
                candidate.user_id,
                candidate.created_at.isoformat(),
                candidate.challenge_kind.value,
                candidate.expected_answer,
                candidate.challenge_message_id,
                candidate.entry_message_id,
            )
            for candidate in candidates
        ]
        if not entries:
            return
        await self._conn.executemany(
            """
            INSERT OR REPLACE INTO candidates (
                chat_id, user_id, created_at, challenge_kind, expected_answer,
                challenge_message_id, entry_message_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            entries,
        )
        await self._conn.commit()
        logger.debug("sqlite_add_candidates", count=len(entries))

    async def remove_candidates(self, chat_id: int, user_ids: Iterable[int]) -> None:
        await self._delete_pairs("candidates", chat_id, user_ids)

    async def list_restricted(self) -> list[RestrictedUser]:
        assert self._conn
        cursor = await self._conn.execute("SELECT * FROM restricted_users")
        rows = await cursor.fetchall()
        await cursor.close()
        return [
            RestrictedUser(
                chat_id=row["chat_id"],
                user_id=row["user_id"],
                restricted_at=datetime.fromisoformat(row["restricted_at"]),
            )
            for row in rows
        ]

    async def add_restricted(self, users: Iterable[RestrictedUser]) -> None:
        assert self._conn
        entries = [(user.chat_id, user.user_id, user.restricted_at.isoformat()) for user in users]
        if not entries:
            return
        await self._conn.executemany(
            "INSERT OR REPLACE INTO restricted_users (chat_id, user_id, restricted_at) VALUES (?, ?, ?)",
            entries,
        )
        await self._conn.commit()
        logger.debug("sqlite_add_restricted", count=len(entries))

    async def remove_restricted(self, chat_id: int, user_ids: Iterable[int]) -> None:
        await self._delete_pairs("restricted_users", chat_id, user_ids)

    async def record_message(self, chat_id: int, user_id: int, message_id: int, sent_at: datetime) -> None:
        assert self._conn
        await self._conn.execute(
            "INSERT OR IGNORE INTO stored_messages (chat_id, user_id, message_id, sent_at) VALUES (?, ?, ?, ?)",
            (chat_id, user_id, message_id, sent_at.isoformat()),
        )
        await self._conn.commit()

    async def pop_user_messages(self, chat_id: int, user_id: int) -> list[int]:
        assert self._conn
        cursor = await self._conn.execute(
            "SELECT message_id FROM stored_messages WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        await self._conn.execute(
            "DELETE FROM stored_messages WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        await self._conn.commit()
        return [row["message_id"] for row in rows]

    async def prune_messages(self, older_than: datetime) -> int:
        assert self._conn
        cursor = await self._conn.execute(
            "DELETE FROM stored_messages WHERE sent_at < ?",
            (older_than.isoformat(),),
        )
        removed = cursor.rowcount
        await cursor.close()
        await self._conn.commit()
        if removed:
            logger.info("sqlite_prune_messages", count=removed)
        return removed

    async def _delete_pairs(self, table: str, chat_id: int, user_ids: Iterable[int]) -> None:
        assert self._conn
        entries = [(chat_id, user_id) for user_id in user_ids]
        if not entries:
            return
        await self._conn.executemany(
            f"DELETE FROM {table} WHERE chat_id = ? AND user_id = ?",
            entries,
        )
        await self._conn.commit()
