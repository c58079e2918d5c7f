from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

import aiosqlite

from ..records import AffinityRecord
from .utils import _sqlite_memory_connection, now_ms


def _user_label(user: Mapping[str, Any] | None) -> str | None:
    if not user:
        return None
    for field in ("name", "username"):
        value = user.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class MemoryFriendsMixin:
    async def increment_love(
        self,
        user_id: str,
        amount: float,
        user: Mapping[str, Any] | None = None,
    ) -> float:
        """Add ``amount`` to the user's affinity, creating the record at 0 when absent."""
        stamp = now_ms()
        user_json = json.dumps(dict(user), ensure_ascii=False) if user else None
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO friends (user_id, love, name, user_json, created_at, updated_at)
                VALUES (?, 0, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (str(user_id), _user_label(user), user_json, stamp, stamp),
            )
            await db.execute(
                """
                UPDATE friends SET
                    love = love + ?,
                    name = COALESCE(?, name),
                    user_json = COALESCE(?, user_json),
                    updated_at = ?
                WHERE user_id = ?
                """,
                (float(amount), _user_label(user), user_json, stamp, str(user_id)),
            )
            async with db.execute("SELECT love FROM friends WHERE user_id = ?", (str(user_id),)) as cursor:
                row = await cursor.fetchone()
            await db.commit()
        return float(row[0]) if row else float(amount)

    async def get_friend(self, user_id: str) -> Optional[AffinityRecord]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, love, name, user_json, created_at, updated_at
                FROM friends
                WHERE user_id = ?
                """,
                (str(user_id),),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        user: Dict[str, Any] | None = None
        if row["user_json"]:
            user = json.loads(row["user_json"])
        return AffinityRecord(
            user_id=str(row["user_id"]),
            love=float(row["love"]),
            name=row["name"],
            user=user,
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )
