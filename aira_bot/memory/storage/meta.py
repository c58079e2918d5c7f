from __future__ import annotations

import json
from typing import Dict

from ..records import MetaValue, ProcessMeta
from .utils import _sqlite_memory_connection, now_ms

LAST_WAKING_AT = "last_waking_at"


def _check_scalar(name: str, value: object) -> MetaValue:
    if value is None or isinstance(value, (str, int, float)):
        return value  # type: ignore[return-value]
    raise TypeError(f"Meta field {name!r} must be a scalar, got {type(value).__name__}")


class MemoryMetaMixin:
    async def get_meta(self) -> ProcessMeta:
        """Return the process meta record, creating it with ``last_waking_at = now``."""
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                "INSERT INTO meta (meta_key, value_json) VALUES (?, ?) ON CONFLICT(meta_key) DO NOTHING",
                (LAST_WAKING_AT, json.dumps(now_ms())),
            )
            async with db.execute("SELECT meta_key, value_json FROM meta") as cursor:
                rows = await cursor.fetchall()
            await db.commit()

        values: Dict[str, MetaValue] = {}
        for key, raw in rows:
            values[str(key)] = json.loads(raw) if raw is not None else None
        last_waking_at = int(values.pop(LAST_WAKING_AT) or 0)
        return ProcessMeta(last_waking_at=last_waking_at, extra=values)

    async def set_meta(self, **fields: MetaValue) -> None:
        if not fields:
            return
        rows = [(name, json.dumps(_check_scalar(name, value))) for name, value in fields.items()]
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.executemany(
                """
                INSERT INTO meta (meta_key, value_json) VALUES (?, ?)
                ON CONFLICT(meta_key) DO UPDATE SET value_json = excluded.value_json
                """,
                rows,
            )
            await db.commit()
