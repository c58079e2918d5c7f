from __future__ import annotations

import os
from pathlib import Path

import aiosqlite

from .utils import _sqlite_memory_connection


class MemorySchemaMixin:
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _allow_destructive_reset_on_mismatch() -> bool:
        raw = os.getenv("AIRA_MEMORY_RESET_ON_SCHEMA_MISMATCH", "")
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}

    async def _has_user_tables(self, db: aiosqlite.Connection) -> bool:
        async with db.execute(
            """
            SELECT 1
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            LIMIT 1
            """
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row)

    async def init(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            has_tables = await self._has_user_tables(db)

            if version > self.SCHEMA_VERSION:
                if has_tables and self._allow_destructive_reset_on_mismatch():
                    await self._reset_schema(db)
                    await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                    await db.commit()
                    return
                raise RuntimeError(
                    "SQLite schema version mismatch detected (memory is newer than this bot build). "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                    "Set AIRA_MEMORY_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                )

            await self._create_schema(db)
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")

            await db.commit()

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        for table in ("contexts", "timers", "friends", "meta", "module_data"):
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS contexts (
                row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                is_dm INTEGER NOT NULL,
                target_id TEXT NOT NULL,
                module TEXT NOT NULL,
                context_key TEXT,
                data_json TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_contexts_key
            ON contexts(context_key);

            CREATE INDEX IF NOT EXISTS idx_contexts_target
            ON contexts(is_dm, target_id);

            CREATE TABLE IF NOT EXISTS timers (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                timer_id TEXT NOT NULL UNIQUE,
                module TEXT NOT NULL,
                inserted_at INTEGER NOT NULL,
                delay_ms INTEGER NOT NULL,
                data_json TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_timers_module
            ON timers(module);

            CREATE TABLE IF NOT EXISTS friends (
                user_id TEXT PRIMARY KEY,
                love REAL NOT NULL DEFAULT 0,
                name TEXT,
                user_json TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS meta (
                meta_key TEXT PRIMARY KEY,
                value_json TEXT
            );

            CREATE TABLE IF NOT EXISTS module_data (
                row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                module TEXT NOT NULL,
                data_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_module_data_module
            ON module_data(module);
            """
        )
