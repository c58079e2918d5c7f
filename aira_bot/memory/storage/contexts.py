from __future__ import annotations

from typing import Any, List, Optional

import aiosqlite

from ..records import ConversationContext
from .utils import _sqlite_memory_connection, decode_payload, encode_payload, now_ms


def _row_to_context(row: aiosqlite.Row) -> ConversationContext:
    return ConversationContext(
        row_id=int(row["row_id"]),
        is_dm=bool(row["is_dm"]),
        target_id=str(row["target_id"]),
        module=str(row["module"]),
        key=row["context_key"],
        data=decode_payload(row["data_json"]),
        created_at=int(row["created_at"]),
    )


class MemoryContextsMixin:
    async def insert_context(
        self,
        *,
        module: str,
        key: str | None,
        is_dm: bool,
        target_id: str,
        data: Any = None,
    ) -> int:
        # No de-duplication: a second subscription for the same target is kept
        # and lookups resolve to the oldest row.
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO contexts (is_dm, target_id, module, context_key, data_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (1 if is_dm else 0, str(target_id), module, key, encode_payload(data), now_ms()),
            )
            row_id = int(cursor.lastrowid or 0)
            await db.commit()
        return row_id

    async def find_context(self, is_dm: bool, target_id: str) -> Optional[ConversationContext]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT row_id, is_dm, target_id, module, context_key, data_json, created_at
                FROM contexts
                WHERE is_dm = ? AND target_id = ?
                ORDER BY row_id ASC
                LIMIT 1
                """,
                (1 if is_dm else 0, str(target_id)),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_context(row)

    async def list_contexts(self, module: str | None = None) -> List[ConversationContext]:
        query = """
            SELECT row_id, is_dm, target_id, module, context_key, data_json, created_at
            FROM contexts
        """
        params: tuple[Any, ...] = ()
        if module is not None:
            query += " WHERE module = ?"
            params = (module,)
        query += " ORDER BY row_id ASC"
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_context(row) for row in rows]

    async def remove_contexts(self, module: str, key: str | None) -> int:
        """Remove every context owned by ``module`` under ``key``, whatever its target."""
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM contexts WHERE module = ? AND context_key IS ?",
                (module, key),
            )
            removed = int(cursor.rowcount or 0)
            await db.commit()
        return removed
