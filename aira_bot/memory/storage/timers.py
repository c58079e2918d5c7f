from __future__ import annotations

import uuid
from typing import Any, List

import aiosqlite

from ..records import DeferredCallback
from .utils import _sqlite_memory_connection, decode_payload, encode_payload, now_ms


def _row_to_timer(row: aiosqlite.Row) -> DeferredCallback:
    return DeferredCallback(
        id=str(row["timer_id"]),
        module=str(row["module"]),
        inserted_at=int(row["inserted_at"]),
        delay=int(row["delay_ms"]),
        data=decode_payload(row["data_json"]),
    )


class MemoryTimersMixin:
    async def insert_timer(
        self,
        *,
        module: str,
        delay_ms: int,
        data: Any = None,
        inserted_at: int | None = None,
    ) -> DeferredCallback:
        timer = DeferredCallback(
            id=uuid.uuid4().hex,
            module=module,
            inserted_at=now_ms() if inserted_at is None else int(inserted_at),
            delay=max(0, int(delay_ms)),
            data=data,
        )
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO timers (timer_id, module, inserted_at, delay_ms, data_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                (timer.id, timer.module, timer.inserted_at, timer.delay, encode_payload(data)),
            )
            await db.commit()
        return timer

    async def list_timers(self, module: str | None = None) -> List[DeferredCallback]:
        query = "SELECT timer_id, module, inserted_at, delay_ms, data_json FROM timers"
        params: tuple[Any, ...] = ()
        if module is not None:
            query += " WHERE module = ?"
            params = (module,)
        query += " ORDER BY seq ASC"
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_timer(row) for row in rows]

    async def list_expired_timers(self, now: int) -> List[DeferredCallback]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT timer_id, module, inserted_at, delay_ms, data_json
                FROM timers
                WHERE ? - (inserted_at + delay_ms) >= 0
                ORDER BY seq ASC
                """,
                (int(now),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_timer(row) for row in rows]

    async def claim_timer(self, timer_id: str) -> bool:
        """Delete the timer row; only the caller that actually removed it may fire it."""
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute("DELETE FROM timers WHERE timer_id = ?", (timer_id,))
            claimed = int(cursor.rowcount or 0) == 1
            await db.commit()
        return claimed
