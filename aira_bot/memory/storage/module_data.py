from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional

import aiosqlite

from ..records import ModuleDataRecord
from .utils import _sqlite_memory_connection


def _matches(data: Mapping[str, Any], match: Mapping[str, Any]) -> bool:
    return all(data.get(name) == value for name, value in match.items())


class MemoryModuleDataMixin:
    """Free-form JSON documents that belong to a single module."""

    async def insert_module_data(self, module: str, data: Mapping[str, Any]) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "INSERT INTO module_data (module, data_json) VALUES (?, ?)",
                (module, json.dumps(dict(data), ensure_ascii=False)),
            )
            row_id = int(cursor.lastrowid or 0)
            await db.commit()
        return row_id

    async def find_module_data(
        self,
        module: str,
        match: Optional[Mapping[str, Any]] = None,
    ) -> List[ModuleDataRecord]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT row_id, module, data_json FROM module_data WHERE module = ? ORDER BY row_id ASC",
                (module,),
            ) as cursor:
                rows = await cursor.fetchall()

        records: List[ModuleDataRecord] = []
        for row in rows:
            data: Dict[str, Any] = json.loads(row["data_json"])
            if match and not _matches(data, match):
                continue
            records.append(ModuleDataRecord(row_id=int(row["row_id"]), module=str(row["module"]), data=data))
        return records

    async def update_module_data(self, row_id: int, data: Mapping[str, Any]) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE module_data SET data_json = ? WHERE row_id = ?",
                (json.dumps(dict(data), ensure_ascii=False), int(row_id)),
            )
            updated = int(cursor.rowcount or 0) == 1
            await db.commit()
        return updated

    async def remove_module_data(self, row_id: int) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute("DELETE FROM module_data WHERE row_id = ?", (int(row_id),))
            removed = int(cursor.rowcount or 0) == 1
            await db.commit()
        return removed
