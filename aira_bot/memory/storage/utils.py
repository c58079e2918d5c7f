from __future__ import annotations

import json
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite


def now_ms() -> int:
    return int(time.time() * 1000)


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("AIRA_MEMORY_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_memory_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA foreign_keys=ON")
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


def encode_payload(value: Any) -> str | None:
    """Serialize an opaque module payload. ``None`` is stored as SQL NULL."""
    if value is None:
        return None
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise TypeError(f"Payload must be JSON serializable: {exc}") from exc


def decode_payload(raw: str | None) -> Any:
    if raw is None:
        return None
    return json.loads(raw)
